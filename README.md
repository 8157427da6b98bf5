# luauvault

`luauvault` provides the building blocks for packing a compiled program into a
Luau script: a model of the program (opcodes, operands, instructions, function
prototypes), a compact binary blob format sealed with an FNV-1a checksum, a
keyed multi-round encoder that turns bytes into text over a custom alphabet,
and the Luau source of a small register-based virtual machine dispatcher that
interprets such programs.

It has no dependencies outside the standard library and supports Python 3.10
and later.

## Modules

| Module | What it provides |
| --- | --- |
| `luauvault.checksum` | `fnv1a32(data)` and `seal_metadata(header, payload, feature_flags)` |
| `luauvault.encoder` | `EncoderKey`, `EncoderConfig`, `encode(data, key, cfg)`, `decode(text, key, cfg)` |
| `luauvault.program` | The program model: `Opcode`, `OperandKind`, `Operand`, `Instruction`, `FunctionProto`, `ProgramBlob` |
| `luauvault.blob` | `BlobWriter`, `BlobReader`, `serialize_program`, `deserialize_program`, `checksum_of` |
| `luauvault.dispatcher` | `emit_dispatcher(use_handler_indirection)`: the Luau interpreter loop |
| `luauvault.errors` | `CompileError` and its subclasses |

## Encoding a payload

```python
from luauvault.encoder import EncoderConfig, EncoderKey, decode, encode

cfg = EncoderConfig()
key = EncoderKey(seed=0x12345678, nonce=0x87654321)

text = encode(b"local value = 1337", key, cfg)
assert decode(text, key, cfg) == b"local value = 1337"
```

The payload is first framed with its length (and, if `include_checksum` is
set, its FNV-1a checksum), optionally interleaved, and then each of `rounds`
rounds permutes the bytes, applies a keyed add-and-xor stream and a
substitution table. The result is written as pairs of digits from the
configured alphabet, split into chunks of `chunk_size` bytes by `:`. A
different key gives different text.

`EncoderConfig` defaults: `rounds=3`, a 64-character alphabet
(`A-Z`, `a-z`, `0-9`, `+`, `/`), `chunk_size=32`, `include_checksum=True`,
`interleave=True`. The `cfg` argument may be omitted to use these defaults.

## Checksums

```python
from luauvault.checksum import fnv1a32, seal_metadata

fnv1a32(b"")                     # 0x811C9DC5
seal_metadata(b"BRLU", b"...", 0xA5)
```

`seal_metadata` hashes the header, the payload and the little-endian feature
flags together; it is the footer written at the end of every program blob.

## Serializing programs

```python
from luauvault.blob import deserialize_program, serialize_program
from luauvault.program import FunctionProto, Instruction, Opcode, Operand, ProgramBlob

program = ProgramBlob(
    feature_flags=0xA5,
    prototypes=[
        FunctionProto(
            name="main",
            max_registers=1,
            constants=[4.0],
            instructions=[
                Instruction(Opcode.LoadNumber, Operand.register(0), Operand.constant(0)),
                Instruction(Opcode.Return, Operand.register(0), Operand.immediate(1)),
            ],
            return_arity=1,
        )
    ],
)

data = serialize_program(program)
assert deserialize_program(data).prototypes == program.prototypes
```

`serialize_program(program, registry)` writes a `ProgramBlob` and appends its
checksum; `deserialize_program(data, registry)` checks the footer first and
then reads the program back. The optional registry maps each `Opcode` to the
16-bit number stored in the blob; without it, each opcode's own value is used.
Constants are `None`, `bool`, numbers (stored as 64-bit floats) or `str`.

Operands are built with the `Operand` constructors, which check their ranges
and raise `ValueError` (or `TypeError` for non-integers):

```python
Operand.none()
Operand.register(0)      # 0..65535
Operand.constant(1)      # 0..2**32-1
Operand.immediate(-5)    # signed 32-bit
Operand.prototype(2)
Operand.upvalue(0)       # 0..65535
Operand.boolean(True)
```

`BlobWriter` and `BlobReader` expose the primitive reads and writes used by
the format: little-endian `u8`, `u16`, `u32`, `i32`, `f64`, LEB128-style
`var_u32`, raw bytes and length-prefixed UTF-8 strings.

## The Luau dispatcher

`emit_dispatcher(False)` returns the Luau source of `executeProto` with a
linear `if`/`elseif` chain over opcodes; `emit_dispatcher(True)` returns a
table-driven variant with one handler per opcode in a `DISPATCH` table, which
also packs extra arguments into the vararg register. Both define
`readOperand`, `writeRegister` and `captureClosure`, and both expect an
`OPCODES` table mapping opcode names to their encoded numbers to be defined
before them. An unknown opcode raises `"barredluau runtime fault"` in Luau.

## What this package does not do

It does not compile Luau source into a `ProgramBlob`, and it does not assemble
a complete runnable Luau script: there is no Luau code here for decoding the
encoded text or reading the blob at run time, no generation of the `OPCODES`
table, no identifier renaming or minification, and no command-line tool. The
dispatcher is a fragment to be placed in such a script by the caller.

## Errors

Every failure in decoding or deserializing raises a subclass of
`luauvault.errors.CompileError`:

- `ConfigError`: an unusable encoder configuration (fewer than 16 symbols,
  duplicate characters, or the `:` separator in the alphabet);
- `DecodeError`: encoded text that cannot be turned back into bytes;
- `DeserializeError`: a truncated or malformed program blob, an unknown tag or
  an unknown opcode;
- `IntegrityError`: a checksum that does not match.

## Running the tests

```
pip install -e ".[test]"
pytest
```