"""Tests for the Modbus-RTU CRC-16 calculation."""

from modbusmaster.transport import getcrc


def test_crc16_write_registers_request():
    """Golden vector: CRC of 01 10 00 00 00 01 is sent as 01 C9 (low byte first)."""
    assert getcrc(bytes.fromhex('011000000001')) == bytes([0x01, 0xC9])


def test_crc16_read_register_request():
    """Well known read holding register request 01 03 00 00 00 01 ends in 84 0A."""
    assert getcrc(bytes.fromhex('010300000001')) == bytes([0x84, 0x0A])


def test_crc16_accepts_list():
    assert getcrc([0x01, 0x03, 0x00, 0x00, 0x00, 0x01]) == bytes([0x84, 0x0A])


def test_crc16_empty():
    """CRC of no data is just the initial value."""
    assert getcrc(b'') == bytes([0xFF, 0xFF])


def test_crc16_of_message_with_crc_is_zero():
    """Running the CRC over a message plus its own CRC gives zero."""
    message = bytes.fromhex('010302002a')
    assert getcrc(message + getcrc(message)) == bytes([0x00, 0x00])
