"""Tests for the register value encoders and decoders."""

import pytest

from modbusmaster import conversion
from modbusmaster.conversion import BIG_ENDIAN, LITTLE_ENDIAN


def test_encode_byte():
    assert conversion.encode_byte(0xAB) == b'\xab'
    with pytest.raises(ValueError):
        conversion.encode_byte(256)


def test_encode_int16_msb_first():
    assert conversion.encode_int16(1000) == bytes([0x03, 0xE8])


def test_encode_int16_negative_is_twos_complement():
    assert conversion.encode_int16(-1) == bytes([0xFF, 0xFF])
    assert conversion.encode_int16(-32768) == bytes([0x80, 0x00])


def test_encode_int16_out_of_range():
    with pytest.raises(ValueError):
        conversion.encode_int16(65536)
    with pytest.raises(ValueError):
        conversion.encode_int16(-32769)


def test_encode_int32_little_endian_is_low_word_first():
    assert conversion.encode_int32(0x12345678, LITTLE_ENDIAN) == bytes([0x56, 0x78, 0x12, 0x34])


def test_encode_int32_big_endian_is_high_word_first():
    assert conversion.encode_int32(0x12345678, BIG_ENDIAN) == bytes([0x12, 0x34, 0x56, 0x78])


def test_encode_int32_negative():
    assert conversion.encode_int32(-2, BIG_ENDIAN) == bytes([0xFF, 0xFF, 0xFF, 0xFE])


def test_encode_float32():
    # 1.0 is 0x3F800000 in IEEE-754 single precision
    assert conversion.encode_float32(1.0, BIG_ENDIAN) == bytes([0x3F, 0x80, 0x00, 0x00])
    assert conversion.encode_float32(1.0, LITTLE_ENDIAN) == bytes([0x00, 0x00, 0x3F, 0x80])


def test_decode_16_bit():
    assert conversion.decode_uint16(b'\xff\xfe') == 65534
    assert conversion.decode_int16(b'\xff\xfe') == -2
    assert conversion.decode_byte(b'\x07') == 7


def test_decode_int32():
    assert conversion.decode_int32(bytes([0x56, 0x78, 0x12, 0x34]), LITTLE_ENDIAN) == 0x12345678
    assert conversion.decode_int32(bytes([0xFF, 0xFF, 0xFF, 0xFE]), BIG_ENDIAN) == -2
    assert conversion.decode_int32(bytes([0xFF, 0xFF, 0xFF, 0xFE]), BIG_ENDIAN, signed=False) == 0xFFFFFFFE


def test_decode_float32():
    assert conversion.decode_float32(bytes([0x00, 0x00, 0xC0, 0x20]), LITTLE_ENDIAN) == -2.5


def test_registers_to_words():
    assert conversion.registers_to_words(bytes([0x00, 0x2A, 0xFF, 0xFF])) == [42, 65535]
    with pytest.raises(ValueError):
        conversion.registers_to_words(b'\x01\x02\x03')
