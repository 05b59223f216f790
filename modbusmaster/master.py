#!/usr/bin/env python

"""The ModbusMaster class, with one method for each supported Modbus function:

        FC  1: read_coils()
        FC  2: read_input_discretes()
        FC  3: read_multiple_registers()
        FC  4: read_multiple_input_registers()
        FC  5: write_single_coil()
        FC  6: write_single_register()
        FC 15: write_multiple_coils()
        FC 16: write_multiple_registers()
        FC 22: mask_write_register()
        FC 23: read_write_registers()

   and the aliases fc1() ... fc23().

   Each method sends one request and waits for the reply. If the connection isn't already open, it's opened before
   the request, and closed again afterwards (unless keep_alive is True). To keep one connection open for several
   requests, call connect() first, or use the master as a context manager:

        with ModbusMaster('192.168.1.10', protocol='TCP') as mb:
            mb.write_single_register(1, 12288, 42)
            data = mb.read_multiple_registers(1, 12288, 2)
"""

import logging

from modbusmaster import conversion
from modbusmaster import packets
from modbusmaster import transport


class ModbusMaster(object):
    """
    Modbus master for a single remote device (or a single gateway, with several devices behind it addressed by
    unit ID).

    Diagnostic messages go to the logger passed in, and are also kept in the .status list for this instance. Call
    str() on the instance to get them all as one string.
    """
    def __init__(self, host, protocol=transport.UDP, port=502, client='', client_port=502, timeout=5,
                 endianness=conversion.LITTLE_ENDIAN, request_delay=0.0, keep_alive=False, transaction_id=None,
                 logger=None):
        """
        :param host: Hostname (or IP address as a string) of the remote device, eg '192.168.1.1'
        :param protocol: One of 'TCP', 'UDP' or 'RTU_TCP'
        :param port: Port number on the remote device
        :param client: Local address to bind to, or an empty string to let the OS choose
        :param client_port: Local port to bind to, used only if client is given
        :param timeout: Connect and reply timeout, in seconds
        :param endianness: Register order for DINT and REAL values - conversion.LITTLE_ENDIAN or
                           conversion.BIG_ENDIAN
        :param request_delay: Minimum time in seconds between requests, needed for some older controllers
        :param keep_alive: If True, a connection opened by any request is left open for the next one
        :param transaction_id: Function returning a new 16-bit transaction ID for each request. Defaults to a random ID.
        :param logger: logging.Logger instance to use for all diagnostic messages
        """
        if logger is None:
            logger = logging.getLogger('modbusmaster')
        self.logger = logger
        if transaction_id is None:
            transaction_id = transport.random_transaction_id
        self.transaction_id = transaction_id
        self.endianness = endianness
        self.keep_alive = keep_alive
        self.status = []
        self.conn = transport.Connection(host=host, port=port, protocol=protocol, client=client,
                                         client_port=client_port, timeout=timeout, request_delay=request_delay,
                                         transaction_id=transaction_id, logger=logger.getChild('T'))

    def __str__(self):
        return '\n'.join(self.status)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.disconnect()

    @property
    def connected(self):
        return self.conn.connected

    @property
    def request_delay(self):
        return self.conn.request_delay

    @request_delay.setter
    def request_delay(self, value):
        self.conn.request_delay = value

    def _log(self, message, level=logging.DEBUG):
        self.status.append(message)
        self.logger.log(level, message)

    def connect(self):
        """
        Open the connection to the remote device. It stays open until disconnect() is called.
        """
        if self.conn.connected:
            self._log('Already connected to %s:%d' % (self.conn.host, self.conn.port))
            return
        self.conn.connect()
        self._log('Connected')

    def disconnect(self):
        """
        Close the connection. Safe to call when not connected.
        """
        if self.conn.connected:
            self.conn.disconnect()
            self._log('Disconnected')

    def _transaction(self, name, packet, parser):
        """
        Send one request packet and parse the reply, opening and closing the connection around it if it wasn't
        already open.

        :param name: Method name, for the log
        :param packet: MBAP framed request packet
        :param parser: Function that takes the reply packet and returns the result
        :return: Whatever the parser returns
        :raises ResponseError: if the transport returned no data (eg, bad RTU CRC)
        """
        self._log('%s: START' % name)
        already_connected = self.conn.connected
        try:
            if not already_connected:
                self.connect()
            self._log(packets.packet_hex(packet))
            self.conn.send(packet)
            reply = self.conn.receive()
            self._log(packets.packet_hex(reply))
            if reply is None:
                raise packets.ResponseError('No valid reply from %s:%d to %s' % (self.conn.host, self.conn.port, name))
            result = parser(reply)
        except Exception as e:
            self._log('%s: FAILED - %s' % (name, e), level=logging.ERROR)
            raise
        finally:
            if not (already_connected or self.keep_alive):
                self.disconnect()
        self._log('%s: DONE' % name)
        return result

    def read_coils(self, unit_id, reference, quantity):
        """
        Modbus function FC 1 (0x01) - Read Coils

        :param unit_id: Modbus unit ID of the device, 0-255
        :param reference: Address of the first coil, 0-65535
        :param quantity: Number of coils to read, 1-2000
        :return: list of 'quantity' booleans
        """
        packet = packets.build_read_coils(unit_id, reference, quantity, transaction_id=self.transaction_id())
        return self._transaction('read_coils', packet, lambda reply: packets.parse_bits(reply, quantity))

    def read_input_discretes(self, unit_id, reference, quantity):
        """
        Modbus function FC 2 (0x02) - Read Input Discretes

        :return: list of 'quantity' booleans
        """
        packet = packets.build_read_input_discretes(unit_id, reference, quantity, transaction_id=self.transaction_id())
        return self._transaction('read_input_discretes', packet, lambda reply: packets.parse_bits(reply, quantity))

    def read_multiple_registers(self, unit_id, reference, quantity):
        """
        Modbus function FC 3 (0x03) - Read Multiple Registers

        :param unit_id: Modbus unit ID of the device, 0-255
        :param reference: Address of the first register, eg 12288 for MW0 on a WAGO 750-841
        :param quantity: Number of registers to read, 1-125
        :return: bytes() object with the raw register contents, two bytes per register, MSB first. Use the functions
                 in modbusmaster.conversion to turn these into values.
        """
        packet = packets.build_read_registers(unit_id, reference, quantity, transaction_id=self.transaction_id())
        return self._transaction('read_multiple_registers', packet, packets.parse_register_bytes)

    def read_multiple_input_registers(self, unit_id, reference, quantity):
        """
        Modbus function FC 4 (0x04) - Read Multiple Input Registers

        :return: bytes() object with the raw register contents
        """
        packet = packets.build_read_input_registers(unit_id, reference, quantity, transaction_id=self.transaction_id())
        return self._transaction('read_multiple_input_registers', packet, packets.parse_register_bytes)

    def write_single_coil(self, unit_id, reference, value):
        """
        Modbus function FC 5 (0x05) - Write Single Coil

        :param value: True for on, False for off
        :return: True
        """
        packet = packets.build_write_single_coil(unit_id, reference, value, transaction_id=self.transaction_id())
        return self._transaction('write_single_coil', packet, packets.parse_write_response)

    def write_single_register(self, unit_id, reference, value):
        """
        Modbus function FC 6 (0x06) - Write Single Register

        :param value: Integer, -32768 to 65535
        :return: True
        """
        packet = packets.build_write_single_register(unit_id, reference, value, transaction_id=self.transaction_id())
        return self._transaction('write_single_register', packet, packets.parse_write_response)

    def write_multiple_coils(self, unit_id, reference, data):
        """
        Modbus function FC 15 (0x0F) - Write Multiple Coils

        :param data: list of booleans, written to consecutive coils starting at 'reference'
        :return: True
        """
        packet = packets.build_write_multiple_coils(unit_id, reference, data, transaction_id=self.transaction_id())
        return self._transaction('write_multiple_coils', packet, packets.parse_write_response)

    def write_multiple_registers(self, unit_id, reference, data, data_types=None):
        """
        Modbus function FC 16 (0x10) - Write Multiple Registers

        :param unit_id: Modbus unit ID of the device, 0-255
        :param reference: Address of the first register
        :param data: List of values to write - either RegisterValue tuples, or plain numbers with their types given
                     in data_types
        :param data_types: Optional list of 'INT', 'DINT' or 'REAL', one per value. Missing or unknown types mean INT.
        :return: True
        """
        registers = packets.register_values(data, data_types)
        packet = packets.build_write_multiple_registers(unit_id, reference, registers, endianness=self.endianness,
                                                        transaction_id=self.transaction_id())
        return self._transaction('write_multiple_registers', packet, packets.parse_write_response)

    def mask_write_register(self, unit_id, reference, and_mask, or_mask):
        """
        Modbus function FC 22 (0x16) - Mask Write Register

        Result = (Current Contents AND and_mask) OR (or_mask AND (NOT and_mask))

        :return: True
        """
        packet = packets.build_mask_write_register(unit_id, reference, and_mask, or_mask,
                                                   transaction_id=self.transaction_id())
        return self._transaction('mask_write_register', packet, packets.parse_write_response)

    def read_write_registers(self, unit_id, reference_read, quantity, reference_write, data, data_types=None):
        """
        Modbus function FC 23 (0x17) - Read Write Registers

        Writes 'data' starting at 'reference_write', then reads 'quantity' registers starting at 'reference_read'.

        :return: bytes() object with the raw contents of the registers read
        """
        registers = packets.register_values(data, data_types)
        packet = packets.build_read_write_registers(unit_id, reference_read, quantity, reference_write, registers,
                                                    endianness=self.endianness, transaction_id=self.transaction_id())
        return self._transaction('read_write_registers', packet, packets.parse_register_bytes)

    def fc1(self, unit_id, reference, quantity):
        return self.read_coils(unit_id, reference, quantity)

    def fc2(self, unit_id, reference, quantity):
        return self.read_input_discretes(unit_id, reference, quantity)

    def fc3(self, unit_id, reference, quantity):
        return self.read_multiple_registers(unit_id, reference, quantity)

    def fc4(self, unit_id, reference, quantity):
        return self.read_multiple_input_registers(unit_id, reference, quantity)

    def fc5(self, unit_id, reference, value):
        return self.write_single_coil(unit_id, reference, value)

    def fc6(self, unit_id, reference, value):
        return self.write_single_register(unit_id, reference, value)

    def fc15(self, unit_id, reference, data):
        return self.write_multiple_coils(unit_id, reference, data)

    def fc16(self, unit_id, reference, data, data_types=None):
        return self.write_multiple_registers(unit_id, reference, data, data_types)

    def fc22(self, unit_id, reference, and_mask, or_mask):
        return self.mask_write_register(unit_id, reference, and_mask, or_mask)

    def fc23(self, unit_id, reference_read, quantity, reference_write, data, data_types=None):
        return self.read_write_registers(unit_id, reference_read, quantity, reference_write, data, data_types)
