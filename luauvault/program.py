"""In-memory model of a compiled program: opcodes, operands, prototypes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union

ConstantValue = Union[None, bool, float, str]

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class Opcode(IntEnum):
    """Instructions understood by the generated virtual machine."""

    LoadNil = 0
    LoadBool = 1
    LoadNumber = 2
    LoadString = 3
    Move = 4
    GetGlobal = 5
    SetGlobal = 6
    NewTable = 7
    GetTable = 8
    SetTable = 9
    Call = 10
    CallSpread = 11
    Return = 12
    ReturnSpread = 13
    Jump = 14
    JumpIf = 15
    JumpIfNot = 16
    Closure = 17
    GetUpvalue = 18
    SetUpvalue = 19
    Concat = 20
    Add = 21
    Sub = 22
    Mul = 23
    Div = 24
    Mod = 25
    Pow = 26
    Eq = 27
    Lt = 28
    Le = 29
    Len = 30
    Not = 31


class OperandKind(IntEnum):
    """Operand kinds; the value is the tag written to a blob."""

    NONE = 0
    REGISTER = 1
    CONSTANT = 2
    IMMEDIATE = 3
    PROTOTYPE = 4
    UPVALUE = 5
    BOOLEAN = 6


def _check_range(what: str, value: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ValueError(f"{what} {value} is outside the range {low}..{high}")
    return value


@dataclass(frozen=True)
class Operand:
    """One instruction operand: a kind and the value that goes with it."""

    kind: OperandKind = OperandKind.NONE
    value: int | bool = 0

    @classmethod
    def none(cls) -> Operand:
        return cls(OperandKind.NONE, 0)

    @classmethod
    def register(cls, index: int) -> Operand:
        return cls(OperandKind.REGISTER, _check_range("Register", index, 0, _U16_MAX))

    @classmethod
    def constant(cls, index: int) -> Operand:
        return cls(OperandKind.CONSTANT, _check_range("Constant", index, 0, _U32_MAX))

    @classmethod
    def immediate(cls, value: int) -> Operand:
        return cls(OperandKind.IMMEDIATE, _check_range("Immediate", value, _I32_MIN, _I32_MAX))

    @classmethod
    def prototype(cls, index: int) -> Operand:
        return cls(OperandKind.PROTOTYPE, _check_range("Prototype", index, 0, _U32_MAX))

    @classmethod
    def upvalue(cls, index: int) -> Operand:
        return cls(OperandKind.UPVALUE, _check_range("Upvalue", index, 0, _U16_MAX))

    @classmethod
    def boolean(cls, value: bool) -> Operand:
        return cls(OperandKind.BOOLEAN, bool(value))


@dataclass(frozen=True)
class Instruction:
    """An opcode with up to three operands."""

    opcode: Opcode
    a: Operand = field(default_factory=Operand.none)
    b: Operand = field(default_factory=Operand.none)
    c: Operand = field(default_factory=Operand.none)


@dataclass
class FunctionProto:
    """A compiled function body and the metadata the VM needs to run it."""

    name: str | None = None
    parameters: list[str] = field(default_factory=list)
    is_vararg: bool = False
    vararg_register: int | None = None
    max_registers: int = 0
    upvalues: list[str] = field(default_factory=list)
    constants: list[ConstantValue] = field(default_factory=list)
    instructions: list[Instruction] = field(default_factory=list)
    child_prototypes: list[int] = field(default_factory=list)
    local_names: list[str | None] = field(default_factory=list)
    return_arity: int = 0


@dataclass
class ProgramBlob:
    """A whole program: header fields plus every function prototype."""

    magic: bytes = b"BRLU"
    version: int = 1
    feature_flags: int = 0
    entry_prototype: int = 0
    prototypes: list[FunctionProto] = field(default_factory=list)
    checksum: int = 0

    def __post_init__(self) -> None:
        self.magic = bytes(self.magic)
        if len(self.magic) != 4:
            raise ValueError("Program magic must be exactly 4 bytes")