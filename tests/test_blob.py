import struct

import pytest

from luauvault.blob import (
    BlobReader,
    BlobWriter,
    checksum_of,
    deserialize_program,
    serialize_program,
)
from luauvault.checksum import fnv1a32, seal_metadata
from luauvault.errors import DeserializeError, IntegrityError
from luauvault.program import FunctionProto, Instruction, Opcode, Operand, ProgramBlob


def _sample_program():
    return ProgramBlob(
        feature_flags=0xA5,
        entry_prototype=0,
        prototypes=[
            FunctionProto(
                name="main",
                parameters=["arg"],
                is_vararg=False,
                vararg_register=None,
                max_registers=2,
                upvalues=["captured"],
                constants=[4.0, "hi"],
                instructions=[
                    Instruction(Opcode.LoadNumber, Operand.register(0), Operand.constant(0)),
                    Instruction(Opcode.Return, Operand.register(0), Operand.immediate(1)),
                ],
                child_prototypes=[],
                local_names=["arg", "tmp"],
                return_arity=1,
            )
        ],
    )


def _seal(body: bytes) -> bytes:
    flags = int.from_bytes(body[6:10], "little")
    return body + struct.pack("<I", seal_metadata(body[:4], body[4:], flags))


def _single_proto_prefix() -> BlobWriter:
    writer = BlobWriter()
    writer.write_bytes(b"BRLU")
    writer.write_u16(1)
    writer.write_u32(0)
    writer.write_var_u32(0)
    writer.write_var_u32(1)
    writer.write_u8(0)
    writer.write_var_u32(0)
    writer.write_u8(0)
    writer.write_u16(0xFFFF)
    writer.write_u16(0)
    writer.write_u8(0)
    writer.write_var_u32(0)
    writer.write_var_u32(0)
    writer.write_var_u32(0)
    return writer


def test_serializer_roundtrips_program_blob():
    program = _sample_program()
    data = serialize_program(program, None)
    decoded = deserialize_program(data, None)
    assert decoded.feature_flags == program.feature_flags
    assert decoded.prototypes == program.prototypes


def test_serialized_blob_layout():
    program = _sample_program()
    data = serialize_program(program)
    assert data[:4] == b"BRLU"
    footer = int.from_bytes(data[-4:], "little")
    assert footer == seal_metadata(data[:4], data[4:-4], 0xA5)
    assert deserialize_program(data).checksum == footer


def test_roundtrip_with_all_constant_and_operand_kinds():
    program = ProgramBlob(
        version=7,
        entry_prototype=1,
        prototypes=[
            FunctionProto(child_prototypes=[1]),
            FunctionProto(
                name=None,
                parameters=["a", "ß"],
                is_vararg=True,
                vararg_register=5,
                max_registers=300,
                constants=[None, True, False, -2.5, "text"],
                instructions=[
                    Instruction(Opcode.Closure, Operand.register(1), Operand.prototype(0)),
                    Instruction(Opcode.GetUpvalue, Operand.register(2), Operand.upvalue(3)),
                    Instruction(Opcode.LoadBool, Operand.register(0), Operand.boolean(True)),
                    Instruction(Opcode.Jump, Operand.none(), Operand.immediate(-4)),
                ],
                local_names=[None, "x"],
                return_arity=255,
            ),
        ],
    )
    decoded = deserialize_program(serialize_program(program))
    assert decoded == ProgramBlob(**{**decoded.__dict__, "checksum": decoded.checksum})
    assert decoded.prototypes == program.prototypes
    assert decoded.version == 7
    assert decoded.entry_prototype == 1


def test_custom_registry_roundtrip():
    registry = {opcode: 100 + int(opcode) * 3 for opcode in Opcode}
    program = _sample_program()
    data = serialize_program(program, registry)
    assert deserialize_program(data, registry).prototypes == program.prototypes
    with pytest.raises(DeserializeError):
        deserialize_program(data, None)


def test_tampered_blob_fails_integrity():
    data = bytearray(serialize_program(_sample_program()))
    data[12] ^= 0xFF
    with pytest.raises(IntegrityError):
        deserialize_program(bytes(data))


def test_short_blob_is_rejected():
    with pytest.raises(DeserializeError):
        deserialize_program(b"BRLU\x01\x00")


def test_unknown_constant_tag_is_rejected():
    writer = _single_proto_prefix()
    writer.write_var_u32(1)
    writer.write_u8(9)
    with pytest.raises(DeserializeError, match="constant tag"):
        deserialize_program(_seal(writer.to_bytes()))


def test_unknown_operand_tag_is_rejected():
    writer = _single_proto_prefix()
    writer.write_var_u32(0)
    writer.write_var_u32(1)
    writer.write_u16(int(Opcode.Move))
    writer.write_u8(7)
    with pytest.raises(DeserializeError, match="operand tag"):
        deserialize_program(_seal(writer.to_bytes()))


def test_var_u32_wire_bytes():
    writer = BlobWriter()
    writer.write_var_u32(300)
    writer.write_var_u32(0)
    assert writer.to_bytes() == b"\xac\x02\x00"


def test_fixed_width_wire_bytes():
    writer = BlobWriter()
    writer.write_u16(0x1234)
    writer.write_u32(0xDEADBEEF)
    writer.write_i32(-1)
    assert writer.to_bytes() == b"\x34\x12\xef\xbe\xad\xde\xff\xff\xff\xff"


@pytest.mark.parametrize("value", [0, 1, 127, 128, 16384, 0xFFFFFFFF])
def test_var_u32_roundtrip(value):
    writer = BlobWriter()
    writer.write_var_u32(value)
    assert BlobReader(writer.to_bytes()).read_var_u32() == value


def test_var_u32_rejects_out_of_range():
    with pytest.raises(ValueError):
        BlobWriter().write_var_u32(-1)


def test_reader_roundtrips_primitives():
    writer = BlobWriter()
    writer.write_u8(200)
    writer.write_u16(65535)
    writer.write_u32(123456789)
    writer.write_i32(-123)
    writer.write_f64(3.25)
    writer.write_string("héllo")
    reader = BlobReader(writer.to_bytes())
    assert reader.read_u8() == 200
    assert reader.read_u16() == 65535
    assert reader.read_u32() == 123456789
    assert reader.read_i32() == -123
    assert reader.read_f64() == 3.25
    assert reader.read_string() == "héllo"
    with pytest.raises(DeserializeError):
        reader.read_u8()


def test_reader_rejects_overlong_varint():
    with pytest.raises(DeserializeError, match="varint"):
        BlobReader(b"\xff\xff\xff\xff\xff\x01").read_var_u32()


def test_reader_rejects_truncated_bytes():
    reader = BlobReader(b"\x01\x02")
    with pytest.raises(DeserializeError):
        reader.read_u32()


def test_reader_rejects_invalid_utf8():
    with pytest.raises(DeserializeError, match="UTF-8"):
        BlobReader(b"\x02\xff\xfe").read_string()


def test_checksum_of_matches_fnv():
    assert checksum_of(b"") == 0x811C9DC5
    assert checksum_of(b"payload") == fnv1a32(b"payload")