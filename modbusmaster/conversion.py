"""
Conversion functions between Python values and the raw bytes carried in Modbus register packets.

All 16-bit values are sent MSB first (network byte order). The 32-bit types (DINT and REAL) occupy two registers, and
the order of those two registers depends on the device:

    LITTLE_ENDIAN (0) - low word first, eg 0x12345678 is sent as 56 78 12 34
    BIG_ENDIAN (1)    - high word first, eg 0x12345678 is sent as 12 34 56 78

Within each register the bytes are always MSB first.
"""

import struct

LITTLE_ENDIAN = 0
BIG_ENDIAN = 1

ENDIANNESS = {'little': LITTLE_ENDIAN,
              'big': BIG_ENDIAN}


def _swap_words(data, endianness):
    """
    Given four bytes in big-endian order, return them in the register order for the given endianness.

    :param data: bytes() object of length 4, MSB first
    :param endianness: LITTLE_ENDIAN or BIG_ENDIAN
    :return: bytes() object of length 4
    """
    if endianness == BIG_ENDIAN:
        return data
    return data[2:4] + data[0:2]


def encode_byte(value):
    """
    Encode an unsigned 8-bit value.

    :param value: integer 0-255
    :return: bytes() object of length 1
    """
    if not 0 <= value <= 0xFF:
        raise ValueError('Byte value out of range: %s' % value)
    return bytes([value])


def encode_int16(value):
    """
    Encode a 16-bit value into one register. Negative values are sent as two's complement, so anything
    from -32768 to 65535 is accepted.

    :param value: integer -32768 to 65535
    :return: bytes() object of length 2, MSB first
    """
    if not -0x8000 <= value <= 0xFFFF:
        raise ValueError('16-bit value out of range: %s' % value)
    return struct.pack('>H', value & 0xFFFF)


def encode_int32(value, endianness=LITTLE_ENDIAN):
    """
    Encode a 32-bit value (DINT) into two registers.

    :param value: integer -2147483648 to 4294967295
    :param endianness: LITTLE_ENDIAN (low word first) or BIG_ENDIAN (high word first)
    :return: bytes() object of length 4
    """
    if not -0x80000000 <= value <= 0xFFFFFFFF:
        raise ValueError('32-bit value out of range: %s' % value)
    return _swap_words(struct.pack('>I', value & 0xFFFFFFFF), endianness)


def encode_float32(value, endianness=LITTLE_ENDIAN):
    """
    Encode an IEEE-754 single precision float (REAL) into two registers.

    :param value: float
    :param endianness: LITTLE_ENDIAN (low word first) or BIG_ENDIAN (high word first)
    :return: bytes() object of length 4
    """
    return _swap_words(struct.pack('>f', value), endianness)


def decode_byte(data):
    return data[0]


def decode_uint16(data):
    """
    :param data: two bytes, MSB first
    :return: integer 0-65535
    """
    return struct.unpack('>H', bytes(data[:2]))[0]


def decode_int16(data):
    """
    :param data: two bytes, MSB first
    :return: integer -32768 to 32767
    """
    return struct.unpack('>h', bytes(data[:2]))[0]


def decode_int32(data, endianness=LITTLE_ENDIAN, signed=True):
    """
    Decode two registers (four bytes) into a 32-bit integer.

    :param data: four bytes, in register order
    :param endianness: LITTLE_ENDIAN (low word first) or BIG_ENDIAN (high word first)
    :param signed: If False, return an unsigned value 0-4294967295
    :return: integer
    """
    fmt = '>i' if signed else '>I'
    return struct.unpack(fmt, _swap_words(bytes(data[:4]), endianness))[0]


def decode_float32(data, endianness=LITTLE_ENDIAN):
    """
    Decode two registers (four bytes) into a float.

    :param data: four bytes, in register order
    :param endianness: LITTLE_ENDIAN (low word first) or BIG_ENDIAN (high word first)
    :return: float
    """
    return struct.unpack('>f', _swap_words(bytes(data[:4]), endianness))[0]


def registers_to_words(data):
    """
    Split the raw register bytes returned by a register read into a list of unsigned 16-bit values.

    :param data: bytes() object with an even number of bytes
    :return: list of integers, each 0-65535
    """
    if len(data) % 2:
        raise ValueError('Odd number of bytes to convert: %d' % len(data))
    return [decode_uint16(data[i:i + 2]) for i in range(0, len(data), 2)]
