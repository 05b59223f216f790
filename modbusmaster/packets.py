"""
Packet builders and parsers for the ten supported Modbus function codes.

Every builder returns a complete MBAP framed packet (bytes), ready to hand to transport.Connection.send():

    Offset  Size  Field
    0       2     transaction ID
    2       2     protocol ID (always 0)
    4       2     length (unit ID + function code + data, in bytes)
    6       1     unit ID
    7       1     function code (high bit set in a reply means an exception)
    8..     var   function specific data

Replies are decoded into an ADU tuple by decode_adu(), and checked for Modbus exception replies by
check_response_code() before any data is extracted.
"""

from collections import namedtuple
import struct

from modbusmaster import conversion
from modbusmaster import transport

READ_COILS = 0x01
READ_INPUT_DISCRETES = 0x02
READ_MULTIPLE_REGISTERS = 0x03
READ_MULTIPLE_INPUT_REGISTERS = 0x04
WRITE_SINGLE_COIL = 0x05
WRITE_SINGLE_REGISTER = 0x06
WRITE_MULTIPLE_COILS = 0x0F
WRITE_MULTIPLE_REGISTERS = 0x10
MASK_WRITE_REGISTER = 0x16
READ_WRITE_REGISTERS = 0x17

# Quantity limits from the Modbus application protocol, chosen so that every request and reply fits in one 256 byte
# serial frame (and so that each byte count fits in its single byte field).
MAX_READ_BITS = 2000
MAX_READ_REGISTERS = 125
MAX_WRITE_BITS = 1968
MAX_WRITE_REGISTERS = 123
MAX_RW_WRITE_REGISTERS = 121

COIL_ON = 0xFF00
COIL_OFF = 0x0000

# Exception codes returned by the remote device, with the high bit set on the function code
EXCEPTION_CODES = {0x01: 'ILLEGAL FUNCTION',
                   0x02: 'ILLEGAL DATA ADDRESS',
                   0x03: 'ILLEGAL DATA VALUE',
                   0x04: 'SLAVE DEVICE FAILURE',
                   0x05: 'ACKNOWLEDGE',
                   0x06: 'SLAVE DEVICE BUSY',
                   0x08: 'MEMORY PARITY ERROR',
                   0x0A: 'GATEWAY PATH UNAVAILABLE',
                   0x0B: 'GATEWAY TARGET DEVICE FAILED TO RESPOND'}
UNDEFINED_FAILURE = 'UNDEFINED FAILURE CODE'

# Register data types for multiple register writes
INT = 'INT'     # 16-bit integer, one register
DINT = 'DINT'   # 32-bit integer, two registers
REAL = 'REAL'   # 32-bit float, two registers
DATA_TYPES = (INT, DINT, REAL)


class ModbusException(ValueError):
    """
    The remote device replied with a Modbus exception packet, reporting a problem with the request contents.

    Attributes: code (the numeric exception code), label (eg 'ILLEGAL DATA ADDRESS'), unit_id and function_code
    (the function code from the reply, with the high bit set).
    """
    def __init__(self, code, unit_id=None, function_code=None):
        self.code = code
        self.label = EXCEPTION_CODES.get(code, UNDEFINED_FAILURE)
        self.unit_id = unit_id
        self.function_code = function_code
        ValueError.__init__(self, 'Modbus response error code: %d (%s)' % (code, self.label))


class ResponseError(IOError):
    """No usable reply - nothing received, a bad RTU CRC, or a reply too short to parse."""


ADU = namedtuple('ADU', ['transaction_id', 'protocol_id', 'length', 'unit_id', 'function_code', 'body'])


class RegisterValue(namedtuple('RegisterValue', ['value', 'dtype'])):
    """
    A value to write to one or two registers, tagged with its data type (INT, DINT or REAL). Any other data type
    (including None) is treated as INT.
    """
    __slots__ = ()

    def __new__(cls, value, dtype=INT):
        if dtype not in DATA_TYPES:
            dtype = INT
        return super(RegisterValue, cls).__new__(cls, value, dtype)

    @property
    def width(self):
        """Number of bytes this value occupies in a packet."""
        return 2 if self.dtype == INT else 4

    def encode(self, endianness=conversion.LITTLE_ENDIAN):
        if self.dtype == DINT:
            return conversion.encode_int32(int(self.value), endianness)
        elif self.dtype == REAL:
            return conversion.encode_float32(float(self.value), endianness)
        return conversion.encode_int16(int(self.value))


def register_values(data, data_types=None):
    """
    Convert a list of values to write, and an optional parallel list of data type names, into a list of
    RegisterValue tuples. Items in 'data' that are already RegisterValue tuples are passed through unchanged.

    :param data: List of integers/floats, or RegisterValue tuples
    :param data_types: Optional list of 'INT', 'DINT' or 'REAL' strings, one for each item in data
    :return: List of RegisterValue tuples
    """
    if data_types is None:
        data_types = []
    if len(data_types) > len(data):
        raise ValueError('More data types (%d) than values (%d)' % (len(data_types), len(data)))
    result = []
    for i, value in enumerate(data):
        if isinstance(value, RegisterValue):
            result.append(value)
        elif i < len(data_types):
            result.append(RegisterValue(value, data_types[i]))
        else:
            result.append(RegisterValue(value))
    return result


###################################
# Validation helpers
#

def _check_unit(unit_id):
    if not 0 <= unit_id <= 0xFF:
        raise ValueError('Unit ID must be 0-255, not %s' % unit_id)


def _check_reference(reference):
    if not 0 <= reference <= 0xFFFF:
        raise ValueError('Reference must be 0-65535, not %s' % reference)


def _check_quantity(quantity, maximum):
    if not 1 <= quantity <= maximum:
        raise ValueError('Quantity must be 1-%d, not %s' % (maximum, quantity))


def _check_word(value, name):
    if not 0 <= value <= 0xFFFF:
        raise ValueError('%s must be 0-65535, not %s' % (name, value))


def _frame(unit_id, body, transaction_id=None):
    """
    Prepend an MBAP header and unit ID to the given function code and data.

    :param unit_id: Modbus unit ID, 0-255
    :param body: bytes() object starting with the function code
    :param transaction_id: Transaction ID to use, or None for a random one
    :return: bytes() object containing the full packet
    """
    if transaction_id is None:
        transaction_id = transport.random_transaction_id()
    return transport.mbap_header(transaction_id, len(body) + 1) + conversion.encode_byte(unit_id) + body


def _encode_registers(registers, endianness):
    return b''.join([register.encode(endianness) for register in registers])


def pack_bits(bits):
    """
    Pack a list of booleans into bytes, eight per byte, with the first value in the least significant bit of the
    first byte.

    :param bits: list of booleans
    :return: bytes() object of length (len(bits) + 7) // 8
    """
    data = bytearray((len(bits) + 7) // 8)
    for i, bit in enumerate(bits):
        if bit:
            data[i // 8] |= 1 << (i % 8)
    return bytes(data)


def unpack_bits(data, quantity):
    """
    Unpack bytes into a list of booleans, least significant bit first, discarding any bits after 'quantity'.
    """
    bits = [bool((byte >> i) & 0x01) for byte in data for i in range(8)]
    return bits[:quantity]


###################################
# Packet builders
#

def _build_read(function_code, unit_id, reference, quantity, maximum, transaction_id):
    _check_unit(unit_id)
    _check_reference(reference)
    _check_quantity(quantity, maximum)
    body = struct.pack('>BHH', function_code, reference, quantity)
    return _frame(unit_id, body, transaction_id)


def build_read_coils(unit_id, reference, quantity, transaction_id=None):
    """FC 1 - read 'quantity' coils starting at 'reference'."""
    return _build_read(READ_COILS, unit_id, reference, quantity, MAX_READ_BITS, transaction_id)


def build_read_input_discretes(unit_id, reference, quantity, transaction_id=None):
    """FC 2 - read 'quantity' discrete inputs starting at 'reference'."""
    return _build_read(READ_INPUT_DISCRETES, unit_id, reference, quantity, MAX_READ_BITS, transaction_id)


def build_read_registers(unit_id, reference, quantity, transaction_id=None):
    """FC 3 - read 'quantity' holding registers starting at 'reference'."""
    return _build_read(READ_MULTIPLE_REGISTERS, unit_id, reference, quantity, MAX_READ_REGISTERS, transaction_id)


def build_read_input_registers(unit_id, reference, quantity, transaction_id=None):
    """FC 4 - read 'quantity' input registers starting at 'reference'."""
    return _build_read(READ_MULTIPLE_INPUT_REGISTERS, unit_id, reference, quantity, MAX_READ_REGISTERS,
                       transaction_id)


def build_write_single_coil(unit_id, reference, value, transaction_id=None):
    """
    FC 5 - turn a single coil on or off.

    :param unit_id: Modbus unit ID, 0-255
    :param reference: Coil address, 0-65535
    :param value: True to turn the coil on (sent as 0xFF00), False to turn it off (0x0000)
    :param transaction_id: Transaction ID to use, or None for a random one
    :return: bytes() object containing the full packet
    """
    _check_unit(unit_id)
    _check_reference(reference)
    body = struct.pack('>BHH', WRITE_SINGLE_COIL, reference, COIL_ON if value else COIL_OFF)
    return _frame(unit_id, body, transaction_id)


def build_write_single_register(unit_id, reference, value, transaction_id=None):
    """
    FC 6 - write one 16-bit register. Negative values (down to -32768) are sent as two's complement.
    """
    _check_unit(unit_id)
    _check_reference(reference)
    body = struct.pack('>BH', WRITE_SINGLE_REGISTER, reference) + conversion.encode_int16(value)
    return _frame(unit_id, body, transaction_id)


def build_write_multiple_coils(unit_id, reference, coils, transaction_id=None):
    """
    FC 15 - write a list of coils, starting at 'reference'.

    :param unit_id: Modbus unit ID, 0-255
    :param reference: Address of the first coil, 0-65535
    :param coils: List of booleans, one per coil
    :param transaction_id: Transaction ID to use, or None for a random one
    :return: bytes() object containing the full packet
    """
    _check_unit(unit_id)
    _check_reference(reference)
    _check_quantity(len(coils), MAX_WRITE_BITS)
    data = pack_bits(coils)
    body = struct.pack('>BHHB', WRITE_MULTIPLE_COILS, reference, len(coils), len(data)) + data
    return _frame(unit_id, body, transaction_id)


def build_write_multiple_registers(unit_id, reference, registers, endianness=conversion.LITTLE_ENDIAN,
                                   transaction_id=None):
    """
    FC 16 - write a list of values to consecutive registers, starting at 'reference'.

    The word count and byte count fields are calculated from the encoded data, because DINT and REAL values take
    two registers each.

    :param unit_id: Modbus unit ID, 0-255
    :param reference: Address of the first register, 0-65535
    :param registers: List of RegisterValue tuples
    :param endianness: Register order for DINT and REAL values - conversion.LITTLE_ENDIAN or conversion.BIG_ENDIAN
    :param transaction_id: Transaction ID to use, or None for a random one
    :return: bytes() object containing the full packet
    """
    _check_unit(unit_id)
    _check_reference(reference)
    data = _encode_registers(registers, endianness)
    _check_quantity(len(data) // 2, MAX_WRITE_REGISTERS)
    body = struct.pack('>BHHB', WRITE_MULTIPLE_REGISTERS, reference, len(data) // 2, len(data)) + data
    return _frame(unit_id, body, transaction_id)


def build_mask_write_register(unit_id, reference, and_mask, or_mask, transaction_id=None):
    """
    FC 22 - modify individual bits in one register. The device sets the register to:

        (current contents AND and_mask) OR (or_mask AND (NOT and_mask))
    """
    _check_unit(unit_id)
    _check_reference(reference)
    _check_word(and_mask, 'AND mask')
    _check_word(or_mask, 'OR mask')
    body = struct.pack('>BHHH', MASK_WRITE_REGISTER, reference, and_mask, or_mask)
    return _frame(unit_id, body, transaction_id)


def build_read_write_registers(unit_id, reference_read, quantity, reference_write, registers,
                               endianness=conversion.LITTLE_ENDIAN, transaction_id=None):
    """
    FC 23 - write a list of values to consecutive registers starting at 'reference_write', then read 'quantity'
    registers starting at 'reference_read', in one transaction.

    :param unit_id: Modbus unit ID, 0-255
    :param reference_read: Address of the first register to read, 0-65535
    :param quantity: Number of registers to read
    :param reference_write: Address of the first register to write, 0-65535
    :param registers: List of RegisterValue tuples to write
    :param endianness: Register order for DINT and REAL values
    :param transaction_id: Transaction ID to use, or None for a random one
    :return: bytes() object containing the full packet
    """
    _check_unit(unit_id)
    _check_reference(reference_read)
    _check_reference(reference_write)
    _check_quantity(quantity, MAX_READ_REGISTERS)
    data = _encode_registers(registers, endianness)
    _check_quantity(len(data) // 2, MAX_RW_WRITE_REGISTERS)
    body = struct.pack('>BHHHHB', READ_WRITE_REGISTERS, reference_read, quantity,
                       reference_write, len(data) // 2, len(data)) + data
    return _frame(unit_id, body, transaction_id)


###################################
# Reply parsers
#

def decode_adu(packet):
    """
    Split an MBAP framed packet into its named fields.

    :param packet: bytes() object
    :return: ADU tuple
    :raises ResponseError: if the packet is empty or too short to contain a function code
    """
    if not packet:
        raise ResponseError('No data received')
    if len(packet) < 8:
        raise ResponseError('Reply too short (%d bytes): %s' % (len(packet), packet.hex()))
    transaction_id, protocol_id, length, unit_id, function_code = struct.unpack_from('>HHHBB', packet)
    return ADU(transaction_id, protocol_id, length, unit_id, function_code, bytes(packet[8:]))


def check_response_code(packet):
    """
    Check the function code in a reply, and raise ModbusException if the remote device sent an exception reply.

    :param packet: bytes() object containing an MBAP framed reply
    :return: The decoded ADU tuple, if the reply was not an exception
    :raises ModbusException: if the high bit of the function code was set
    """
    adu = decode_adu(packet)
    if adu.function_code & 0x80:
        if adu.body:
            code = adu.body[0]
        else:
            code = 0
        raise ModbusException(code, unit_id=adu.unit_id, function_code=adu.function_code)
    return adu


def parse_register_bytes(packet):
    """
    Return the data bytes from a read reply (FC 3, 4 and 23), using the byte count that follows the function code.

    :param packet: bytes() object containing an MBAP framed reply
    :return: bytes() object with the raw register contents, two bytes per register, MSB first
    """
    adu = check_response_code(packet)
    if not adu.body:
        raise ResponseError('Reply has no byte count: %s' % packet.hex())
    byte_count = adu.body[0]
    data = adu.body[1:1 + byte_count]
    if len(data) < byte_count:
        raise ResponseError('Reply truncated, expected %d data bytes, got %d' % (byte_count, len(data)))
    return data


def parse_bits(packet, quantity):
    """
    Return the coil or discrete input values from a FC 1 or FC 2 reply.

    :param packet: bytes() object containing an MBAP framed reply
    :param quantity: Number of values requested - extra bits in the last byte are dropped
    :return: list of 'quantity' booleans
    :raises ResponseError: if the reply holds fewer than 'quantity' bits
    """
    data = parse_register_bytes(packet)
    if len(data) * 8 < quantity:
        raise ResponseError('Reply too short, %d bits requested, %d received' % (quantity, len(data) * 8))
    return unpack_bits(data, quantity)


def parse_write_response(packet):
    """
    Check a reply to any of the write functions (FC 5, 6, 15, 16 and 22). Only the exception bit is checked, the
    echoed address and values are not compared with the request.

    :return: True
    """
    check_response_code(packet)
    return True


def packet_hex(packet):
    """
    Return a packet as a hex string, for logging.
    """
    if packet is None:
        return 'Packet: None'
    return 'Packet: %s' % bytes(packet).hex()
