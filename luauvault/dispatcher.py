"""Luau source for the instruction dispatcher of the generated virtual machine.

Two variants exist: a linear ``if``/``elseif`` chain inside ``executeProto``,
and an indirect one where every opcode has its own handler in a ``DISPATCH``
table. Both expect an ``OPCODES`` table to be defined before them.

The Luau text is assembled from a small tree of lines and blocks so that the
handler bodies are described once and rendered for either variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence, Union

_INDENT = "    "
_RUNTIME_FAULT = '"barredluau runtime fault"'
_FAULT = f"error({_RUNTIME_FAULT})"
_HANDLER_SIGNATURE = "function(frame, instruction, prototypes)"

# Opcodes whose handler writes ``b <op> c`` into register ``a``.
_BINARY_OPERATORS: tuple[tuple[str, str], ...] = (
    ("Add", "+"),
    ("Sub", "-"),
    ("Mul", "*"),
    ("Div", "/"),
    ("Mod", "%"),
    ("Pow", "^"),
    ("Eq", "=="),
    ("Lt", "<"),
    ("Le", "<="),
)

# Operand tags read by ``readOperand`` and the expression each one yields.
_OPERAND_READS: tuple[tuple[int, str], ...] = (
    (0, "nil"),
    (1, "frame.registers[operand.value + 1].value"),
    (2, "frame.proto.constants[operand.value + 1]"),
    (3, "operand.value"),
    (5, "frame.upvalues[operand.value + 1].value"),
    (6, "operand.value ~= 0"),
)


@dataclass(frozen=True)
class _Block:
    """A Luau construct: one or more headed clauses followed by a closer."""

    clauses: tuple[tuple[str, tuple["_Node", ...]], ...]
    closer: str = "end"


_Node = Union[str, _Block]


def _do(header: str, body: Sequence[_Node], closer: str = "end") -> _Block:
    return _Block(((header, tuple(body)),), closer)


def _cond(*clauses: tuple[str, Sequence[_Node]]) -> _Block:
    return _Block(tuple((header, tuple(body)) for header, body in clauses))


def _chain(conditions: Sequence[tuple[str, Sequence[_Node]]]) -> list[tuple[str, Sequence[_Node]]]:
    """Turn ``(condition, body)`` pairs into ``if``/``elseif`` clauses."""
    return [
        (f"{'if' if position == 0 else 'elseif'} {condition} then", body)
        for position, (condition, body) in enumerate(conditions)
    ]


def _render(nodes: Sequence[_Node], depth: int = 0) -> Iterator[str]:
    pad = _INDENT * depth
    for node in nodes:
        if isinstance(node, str):
            yield pad + node if node else ""
            continue
        for header, body in node.clauses:
            yield pad + header
            yield from _render(body, depth + 1)
        yield pad + node.closer


def _value(slot: str) -> str:
    return f"instruction.{slot}.value"


def _read(slot: str) -> str:
    return f"readOperand(frame, instruction.{slot})"


def _register(index: str) -> str:
    return f"frame.registers[{index}].value"


def _store(expr: str, slot: str = "a") -> str:
    return f"writeRegister(frame, {_value(slot)}, {expr})"


def _constant(proto_ref: str, slot: str) -> str:
    return f"{proto_ref}.constants[{_value(slot)} + 1]"


def _read_operand_function() -> _Block:
    reads = _chain([(f"tag == {tag}", [f"return {expr}"]) for tag, expr in _OPERAND_READS])
    return _do(
        "local function readOperand(frame, operand)",
        ["local tag = operand.tag", _cond(*reads), "return nil"],
    )


def _write_register_function() -> _Block:
    return _do(
        "local function writeRegister(frame, registerIndex, value)",
        [f"{_register('registerIndex + 1')} = value"],
    )


def _capture_closure_function() -> _Block:
    lookups = _do(
        "for index, name in ipairs(proto.upvalues) do",
        [
            "local cell = frame.namedLocals[name]",
            _cond(("if cell == nil then", ["cell = frame.upvalueMap[name]"])),
            _cond(("if cell == nil then", ["cell = { value = frame.env[name] }"])),
            "captured[index] = cell",
            "upvalueMap[name] = cell",
        ],
    )
    call = "executeProto(proto, prototypes, frame.env, captured, upvalueMap, { ... })"
    return _do(
        "local function captureClosure(frame, proto, prototypes)",
        [
            "local captured = {}",
            "local upvalueMap = {}",
            lookups,
            "",
            _do("return function(...)", [f"return {call}"]),
        ],
    )


def _call_body(spread: bool) -> list[_Node]:
    body: list[_Node] = [
        f"local base = {_value('a')}",
        f"local callee = {_register('base + 1')}",
    ]
    if spread:
        body.append(f"local fixedCount = {_value('b')}")
    upper = "fixedCount" if spread else _value("b")
    body += [
        "local argsBuffer = {}",
        _do(
            f"for argIndex = 1, {upper} do",
            [f"argsBuffer[argIndex] = {_register('base + argIndex + 1')}"],
        ),
    ]
    if spread:
        body += [
            f"local spread = {_register('base + fixedCount + 2')} or {{}}",
            "local offset = #argsBuffer",
            _do(
                "for spreadIndex = 1, #spread do",
                ["argsBuffer[offset + spreadIndex] = spread[spreadIndex]"],
            ),
        ]
    body.append(_store("callee(table.unpack(argsBuffer))", "c"))
    return body


def _return_body(indirect: bool) -> list[_Node]:
    first = _register(f"{_value('a')} + 1")
    gather = _do(
        "for resultIndex = 1, count do",
        [f"results[resultIndex] = {_register(_value('a') + ' + resultIndex')}"],
    )
    if indirect:
        none_case: list[_Node] = ["frame.returnState = { count = 0 }"]
        one_case: list[_Node] = [
            _do("frame.returnState = {", ["count = 1,", f"values = {{ {first} }},"], closer="}")
        ]
        many_tail = "frame.returnState = { count = count, values = results }"
    else:
        none_case = ["return nil"]
        one_case = [f"return {first}"]
        many_tail = "return table.unpack(results)"
    body: list[_Node] = [
        f"local count = {_value('b')}",
        _cond(
            ("if count == 0 then", none_case),
            ("elseif count == 1 then", one_case),
            ("else", ["local results = {}", gather, many_tail]),
        ),
    ]
    if indirect:
        body.append("return true")
    return body


def _return_spread_body(indirect: bool) -> list[_Node]:
    spread = f"{_register(_value('a') + ' + 1')} or {{}}"
    if indirect:
        return [
            _do("frame.returnState = {", ["count = -1,", f"values = {spread},"], closer="}"),
            "return true",
        ]
    return [f"local spread = {spread}", "return table.unpack(spread)"]


def _handlers(
    proto_ref: str, env_ref: str, indirect: bool
) -> list[tuple[tuple[str, ...], list[_Node]]]:
    """Opcode names with the body that executes them, in dispatch order."""
    jump = f"frame.pc += {_value('b')}"
    handlers: list[tuple[tuple[str, ...], list[_Node]]] = [
        (("LoadNil",), [_store("nil")]),
        (("LoadBool",), [_store(f"{_value('b')} ~= 0")]),
        (("LoadNumber", "LoadString"), [_store(_constant(proto_ref, "b"))]),
        (("Move",), [_store(_read("b"))]),
        (
            ("GetGlobal",),
            [f"local name = {_constant(proto_ref, 'b')}", _store(f"{env_ref}[name]")],
        ),
        (
            ("SetGlobal",),
            [f"local name = {_constant(proto_ref, 'a')}", f"{env_ref}[name] = {_read('b')}"],
        ),
        (("NewTable",), [_store("{}")]),
        (
            ("GetTable",),
            [f"local tbl = {_read('b')}", f"local key = {_read('c')}", _store("tbl[key]")],
        ),
        (
            ("SetTable",),
            [f"local tbl = {_read('a')}", f"local key = {_read('b')}", f"tbl[key] = {_read('c')}"],
        ),
        (("Call",), _call_body(spread=False)),
        (("CallSpread",), _call_body(spread=True)),
        (("Return",), _return_body(indirect)),
        (("ReturnSpread",), _return_spread_body(indirect)),
        (("Jump",), [jump]),
        (("JumpIf",), [_cond((f"if {_read('a')} then", [jump]))]),
        (("JumpIfNot",), [_cond((f"if not {_read('a')} then", [jump]))]),
        (
            ("Closure",),
            [
                f"local child = prototypes[{_value('b')} + 1]",
                _store("captureClosure(frame, child, prototypes)"),
            ],
        ),
        (("GetUpvalue",), [_store(f"frame.upvalues[{_value('b')} + 1].value")]),
        (("SetUpvalue",), [f"frame.upvalues[{_value('a')} + 1].value = {_read('b')}"]),
        (("Concat",), [_store(f"tostring({_read('b')}) .. tostring({_read('c')})")]),
    ]
    handlers += [
        ((name,), [_store(f"{_read('b')} {op} {_read('c')}")]) for name, op in _BINARY_OPERATORS
    ]
    handlers += [
        (("Len",), [_store(f"#{_read('b')}")]),
        (("Not",), [_store(f"not {_read('b')}")]),
    ]
    return handlers


def _vararg_packing() -> _Block:
    target = "frame.registers[proto.varargRegister + 1]"
    return _cond(
        (
            f"if proto.isVararg and proto.varargRegister ~= nil and {target} then",
            [
                "local packed = {}",
                "local base = #proto.params",
                _do(
                    "for index = base + 1, #(args or {}) do",
                    ["packed[#packed + 1] = args[index]"],
                ),
                f"{target}.value = packed",
            ],
        )
    )


def _linear_dispatch() -> list[_Node]:
    branches = _chain(
        [
            (" or ".join(f"op == OPCODES.{name}" for name in names), body)
            for names, body in _handlers("proto", "env", indirect=False)
        ]
    )
    branches.append(("else", [_FAULT]))
    return ["local op = instruction.op", _cond(*branches)]


def _indirect_dispatch() -> list[_Node]:
    results = _cond(
        ("if state == nil or state.count == 0 then", ["return nil"]),
        ("elseif state.count == -1 then", ["return table.unpack(state.values)"]),
        ("elseif state.count == 1 then", ["return state.values[1]"]),
        ("else", ["return table.unpack(state.values)"]),
    )
    return [
        "local handler = DISPATCH[instruction.op]",
        _cond(("if handler == nil then", [_FAULT])),
        "local shouldReturn = handler(frame, instruction, prototypes)",
        _cond(("if shouldReturn then", ["local state = frame.returnState", results])),
    ]


def _dispatch_table() -> list[_Node]:
    nodes: list[_Node] = ["local DISPATCH = {}", ""]
    for names, body in _handlers("frame.proto", "frame.env", indirect=True):
        for name in names:
            nodes += [_do(f"DISPATCH[OPCODES.{name}] = {_HANDLER_SIGNATURE}", body), ""]
    return nodes


def _execute_proto(indirect: bool) -> _Block:
    fields = [
        "proto = proto,",
        "env = env,",
        "upvalues = upvalues or {},",
        "upvalueMap = upvalueMap or {},",
        "namedLocals = {},",
        "registers = {},",
    ]
    if indirect:
        fields.append("returnState = nil,")
    fields.append("pc = 1,")

    body: list[_Node] = [
        _do("local frame = {", fields, closer="}"),
        "",
        _do("for index = 1, proto.maxRegisters do", ["frame.registers[index] = { value = nil }"]),
        "",
        _do(
            "for index, value in ipairs(args or {}) do",
            [_cond(("if frame.registers[index] then", ["frame.registers[index].value = value"]))],
        ),
    ]
    if indirect:
        body.append(_vararg_packing())
    body += [
        "",
        _do(
            "for index, name in ipairs(proto.localNames) do",
            [
                _cond(
                    (
                        "if name ~= false and name ~= nil and frame.registers[index] then",
                        ["frame.namedLocals[name] = frame.registers[index]"],
                    )
                )
            ],
        ),
        "",
        _do(
            "while true do",
            [
                "local instruction = proto.instructions[frame.pc]",
                "frame.pc += 1",
                _cond(("if instruction == nil then", ["return nil"])),
                "",
                *(_indirect_dispatch() if indirect else _linear_dispatch()),
            ],
        ),
    ]
    return _do(
        "executeProto = function(proto, prototypes, env, upvalues, upvalueMap, args)", body
    )


def _dispatcher(indirect: bool) -> str:
    nodes: list[_Node] = [
        "",
        "local executeProto",
        "",
        _read_operand_function(),
        "",
        _write_register_function(),
        "",
        _capture_closure_function(),
        "",
    ]
    if indirect:
        nodes += _dispatch_table()
    nodes.append(_execute_proto(indirect))
    return "\n".join(_render(nodes)) + "\n"


def emit_dispatcher(use_handler_indirection: bool) -> str:
    """Return the Luau dispatcher, table-driven if ``use_handler_indirection``."""
    return _dispatcher(bool(use_handler_indirection))