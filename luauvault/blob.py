"""Binary serialization of program blobs, sealed with an FNV-1a checksum."""

from __future__ import annotations

import struct
from collections.abc import Mapping

from luauvault.checksum import fnv1a32, seal_metadata
from luauvault.errors import DeserializeError, IntegrityError
from luauvault.program import (
    FunctionProto,
    Instruction,
    Opcode,
    Operand,
    OperandKind,
    ProgramBlob,
)

_NO_REGISTER = 0xFFFF
_U32_MAX = 0xFFFFFFFF

_CONST_NIL = 0
_CONST_BOOL = 1
_CONST_NUMBER = 2
_CONST_STRING = 3


def _encoding_table(registry: Mapping[Opcode, int] | None) -> Mapping[Opcode, int]:
    if registry is None:
        return {opcode: int(opcode) for opcode in Opcode}
    return registry


class BlobReader:
    """Sequential little-endian reader over a byte buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._cursor = 0

    def read_bytes(self, count: int) -> bytes:
        end = self._cursor + count
        if count < 0 or end > len(self._data):
            raise DeserializeError("Unexpected end of blob while reading bytes")
        chunk = self._data[self._cursor:end]
        self._cursor = end
        return chunk

    def read_u8(self) -> int:
        if self._cursor >= len(self._data):
            raise DeserializeError("Unexpected end of blob")
        value = self._data[self._cursor]
        self._cursor += 1
        return value

    def read_u16(self) -> int:
        return int.from_bytes(self.read_bytes(2), "little")

    def read_u32(self) -> int:
        return int.from_bytes(self.read_bytes(4), "little")

    def read_i32(self) -> int:
        return int.from_bytes(self.read_bytes(4), "little", signed=True)

    def read_f64(self) -> float:
        (value,) = struct.unpack("<d", self.read_bytes(8))
        return value

    def read_var_u32(self) -> int:
        value = 0
        shift = 0
        while True:
            byte = self.read_u8()
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return value & _U32_MAX
            shift += 7
            if shift > 28:
                raise DeserializeError("Invalid varint encoding")

    def read_string(self) -> str:
        raw = self.read_bytes(self.read_var_u32())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as error:
            raise DeserializeError(f"String payload was not valid UTF-8: {error}") from None

    def _read_optional_string(self) -> str | None:
        return self.read_string() if self.read_u8() else None

    def _read_operand(self) -> Operand:
        tag = self.read_u8()
        if tag == OperandKind.NONE:
            return Operand.none()
        if tag == OperandKind.REGISTER:
            return Operand.register(self.read_var_u32() & 0xFFFF)
        if tag == OperandKind.CONSTANT:
            return Operand.constant(self.read_var_u32())
        if tag == OperandKind.IMMEDIATE:
            return Operand.immediate(self.read_i32())
        if tag == OperandKind.PROTOTYPE:
            return Operand.prototype(self.read_var_u32())
        if tag == OperandKind.UPVALUE:
            return Operand.upvalue(self.read_var_u32() & 0xFFFF)
        if tag == OperandKind.BOOLEAN:
            return Operand.boolean(self.read_u8() != 0)
        raise DeserializeError(f"Unknown operand tag `{tag}`")

    def _read_constant(self):
        tag = self.read_u8()
        if tag == _CONST_NIL:
            return None
        if tag == _CONST_BOOL:
            return self.read_u8() != 0
        if tag == _CONST_NUMBER:
            return self.read_f64()
        if tag == _CONST_STRING:
            return self.read_string()
        raise DeserializeError(f"Unknown constant tag `{tag}`")

    def _read_prototype(self, decoding: Mapping[int, Opcode]) -> FunctionProto:
        name = self._read_optional_string()
        parameters = [self.read_string() for _ in range(self.read_var_u32())]
        is_vararg = self.read_u8() != 0
        vararg_register = self.read_u16()
        max_registers = self.read_u16()
        return_arity = self.read_u8()
        upvalues = [self.read_string() for _ in range(self.read_var_u32())]
        children = [self.read_var_u32() for _ in range(self.read_var_u32())]
        local_names = [self._read_optional_string() for _ in range(self.read_var_u32())]
        constants = [self._read_constant() for _ in range(self.read_var_u32())]
        instructions = [self._read_instruction(decoding) for _ in range(self.read_var_u32())]
        return FunctionProto(
            name=name,
            parameters=parameters,
            is_vararg=is_vararg,
            vararg_register=None if vararg_register == _NO_REGISTER else vararg_register,
            max_registers=max_registers,
            upvalues=upvalues,
            constants=constants,
            instructions=instructions,
            child_prototypes=children,
            local_names=local_names,
            return_arity=return_arity,
        )

    def _read_instruction(self, decoding: Mapping[int, Opcode]) -> Instruction:
        code = self.read_u16()
        try:
            opcode = decoding[code]
        except KeyError:
            raise DeserializeError(f"Unknown opcode `{code}`") from None
        a = self._read_operand()
        b = self._read_operand()
        c = self._read_operand()
        return Instruction(opcode, a, b, c)


class BlobWriter:
    """Append-only little-endian byte writer."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def to_bytes(self) -> bytes:
        return bytes(self._buffer)

    def write_u8(self, value: int) -> None:
        self._buffer += value.to_bytes(1, "little")

    def write_u16(self, value: int) -> None:
        self._buffer += value.to_bytes(2, "little")

    def write_u32(self, value: int) -> None:
        self._buffer += value.to_bytes(4, "little")

    def write_i32(self, value: int) -> None:
        self._buffer += value.to_bytes(4, "little", signed=True)

    def write_f64(self, value: float) -> None:
        self._buffer += struct.pack("<d", value)

    def write_bytes(self, data: bytes) -> None:
        self._buffer += data

    def write_var_u32(self, value: int) -> None:
        if not 0 <= value <= _U32_MAX:
            raise ValueError(f"Varint value {value} does not fit in 32 bits")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self.write_u8(byte | 0x80)
            else:
                self.write_u8(byte)
                return

    def write_string(self, value: str) -> None:
        raw = value.encode("utf-8")
        self.write_var_u32(len(raw))
        self.write_bytes(raw)

    def _write_optional_string(self, value: str | None) -> None:
        self.write_u8(value is not None)
        if value is not None:
            self.write_string(value)

    def _write_operand(self, operand: Operand) -> None:
        kind = operand.kind
        self.write_u8(int(kind))
        if kind in (OperandKind.REGISTER, OperandKind.CONSTANT,
                    OperandKind.PROTOTYPE, OperandKind.UPVALUE):
            self.write_var_u32(int(operand.value))
        elif kind is OperandKind.IMMEDIATE:
            self.write_i32(int(operand.value))
        elif kind is OperandKind.BOOLEAN:
            self.write_u8(1 if operand.value else 0)

    def _write_constant(self, value) -> None:
        if value is None:
            self.write_u8(_CONST_NIL)
        elif isinstance(value, bool):
            self.write_u8(_CONST_BOOL)
            self.write_u8(int(value))
        elif isinstance(value, (int, float)):
            self.write_u8(_CONST_NUMBER)
            self.write_f64(float(value))
        elif isinstance(value, str):
            self.write_u8(_CONST_STRING)
            self.write_string(value)
        else:
            raise TypeError(f"Unsupported constant value {value!r}")

    def _write_prototype(self, proto: FunctionProto, encoding: Mapping[Opcode, int]) -> None:
        self._write_optional_string(proto.name)
        self.write_var_u32(len(proto.parameters))
        for parameter in proto.parameters:
            self.write_string(parameter)
        self.write_u8(int(proto.is_vararg))
        self.write_u16(_NO_REGISTER if proto.vararg_register is None else proto.vararg_register)
        self.write_u16(proto.max_registers)
        self.write_u8(proto.return_arity)
        self.write_var_u32(len(proto.upvalues))
        for upvalue in proto.upvalues:
            self.write_string(upvalue)
        self.write_var_u32(len(proto.child_prototypes))
        for child in proto.child_prototypes:
            self.write_var_u32(child)
        self.write_var_u32(len(proto.local_names))
        for local_name in proto.local_names:
            self._write_optional_string(local_name)
        self.write_var_u32(len(proto.constants))
        for constant in proto.constants:
            self._write_constant(constant)
        self.write_var_u32(len(proto.instructions))
        for instruction in proto.instructions:
            self.write_u16(encoding[instruction.opcode])
            self._write_operand(instruction.a)
            self._write_operand(instruction.b)
            self._write_operand(instruction.c)


def serialize_program(program: ProgramBlob, registry: Mapping[Opcode, int] | None = None) -> bytes:
    """Serialize ``program``; opcodes are encoded through ``registry``."""
    encoding = _encoding_table(registry)
    writer = BlobWriter()
    writer.write_bytes(program.magic)
    writer.write_u16(program.version)
    writer.write_u32(program.feature_flags)
    writer.write_var_u32(program.entry_prototype)
    writer.write_var_u32(len(program.prototypes))
    for proto in program.prototypes:
        writer._write_prototype(proto, encoding)
    body = writer.to_bytes()
    writer.write_u32(seal_metadata(program.magic, body[4:], program.feature_flags))
    return writer.to_bytes()


def deserialize_program(data: bytes, registry: Mapping[Opcode, int] | None = None) -> ProgramBlob:
    """Verify the checksum footer of ``data`` and read the program it holds."""
    data = bytes(data)
    if len(data) < 10:
        raise DeserializeError("Blob is too short to contain a valid header")
    payload_len = len(data) - 4
    expected = int.from_bytes(data[payload_len:], "little")
    header_flags = int.from_bytes(data[6:10], "little")
    if expected != seal_metadata(data[:4], data[4:payload_len], header_flags):
        raise IntegrityError("Program blob checksum validation failed")

    decoding = {code: opcode for opcode, code in _encoding_table(registry).items()}
    reader = BlobReader(data[:payload_len])
    magic = reader.read_bytes(4)
    version = reader.read_u16()
    feature_flags = reader.read_u32()
    entry_prototype = reader.read_var_u32()
    prototypes = [reader._read_prototype(decoding) for _ in range(reader.read_var_u32())]
    return ProgramBlob(
        magic=magic,
        version=version,
        feature_flags=feature_flags,
        entry_prototype=entry_prototype,
        prototypes=prototypes,
        checksum=expected,
    )


def checksum_of(data: bytes) -> int:
    """Return the FNV-1a checksum of ``data``."""
    return fnv1a32(data)