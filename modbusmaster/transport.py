#!/usr/bin/env python

"""Classes to handle the socket connection to a single remote Modbus device, using either Modbus-TCP, Modbus-UDP, or
   Modbus-RTU frames tunnelled over a TCP socket (eg through an ethernet-serial gateway).

   The rest of the code always works with MBAP framed packets (the Modbus-TCP header, followed by the unit ID,
   function code and data). When the protocol is RTU_TCP, the Connection class strips the MBAP header from every
   outgoing packet and appends a CRC, and checks the CRC on every incoming packet and replaces it with a dummy
   MBAP header, so that the packet parsing code doesn't need to know which protocol is in use.
"""

import errno
import logging
import os
import random
import select
import socket
import struct
import time

TCP = 'TCP'
UDP = 'UDP'
RTU_TCP = 'RTU_TCP'
PROTOCOLS = (TCP, UDP, RTU_TCP)

DISCONNECTED = 'DISCONNECTED'
CONNECTING = 'CONNECTING'
CONNECTED = 'CONNECTED'

MBAP_LENGTH = 6          # Transaction ID, protocol ID and length - everything before the unit ID
CONNECT_RETRY_TIME = 0.001   # Sleep between each non-blocking connect attempt. There are timeout/CONNECT_RETRY_TIME attempts.
POLL_INTERVAL = 0.3      # Maximum time for each select() call when waiting for a reply
RTU_SETTLE_TIME = 0.25   # RTU devices behind a gateway are slow, wait this long after a send before polling for a reply
MAX_READ = 2000          # Maximum number of bytes to read from the socket in one call

CONNECT_PENDING = (errno.EINPROGRESS, errno.EALREADY, errno.EWOULDBLOCK)
CONNECT_DONE = (0, errno.EISCONN)


class TransportError(IOError):
    """Any failure in the socket layer - creating, binding, connecting, sending or receiving."""


class BindError(TransportError):
    pass


class ConnectError(TransportError):
    pass


class ConnectTimeout(TransportError):
    pass


class WatchdogTimeout(TransportError):
    pass


def random_transaction_id():
    return random.randint(0, 0xFFFF)


def mbap_header(transaction_id, length):
    """
    Return the first six bytes of a Modbus-TCP packet.

    :param transaction_id: Integer 0-65535
    :param length: Number of bytes following the header (unit ID, function code and data)
    :return: bytes() object of length 6
    """
    return struct.pack('>HHH', transaction_id, 0, length)


class Connection(object):
    """
    Class to handle the socket connection to one remote Modbus device. One instance of this class holds at most one
    socket at a time, and is not thread-safe.

    The connection state (.state) is always one of DISCONNECTED, CONNECTING or CONNECTED. Both connect() and
    disconnect() block until they finish, so callers only ever see DISCONNECTED or CONNECTED.

    Public methods:
        connect()
        disconnect()
        send()
        receive()
    """
    def __init__(self, host, port=502, protocol=TCP, client='', client_port=502, timeout=5, request_delay=0.0,
                 transaction_id=None, logger=None):
        """
        :param host: Hostname (or IP address as a string) of the remote device or gateway
        :param port: Port number on the remote device
        :param protocol: One of 'TCP', 'UDP', or 'RTU_TCP'
        :param client: Local address to bind to before connecting, or an empty string to let the OS choose
        :param client_port: Local port to bind to, used only if client is given
        :param timeout: Time in seconds - sets the connect retry budget, the socket send/receive timeouts, and the
                        watchdog timeout while waiting for a reply
        :param request_delay: Minimum time in seconds between packets sent, needed for some older controllers
        :param transaction_id: Function returning a new 16-bit transaction ID, used for the dummy MBAP header on
                               RTU_TCP replies. Defaults to a random ID.
        :param logger: logging.Logger instance to use for all diagnostic messages
        """
        if protocol not in PROTOCOLS:
            raise ValueError("Unknown socket protocol %r, should be one of %s" % (protocol, ', '.join(PROTOCOLS)))
        self.host = host
        self.port = port
        self.protocol = protocol
        self.client = client
        self.client_port = client_port
        self.timeout = timeout
        self.request_delay = request_delay
        if transaction_id is None:
            transaction_id = random_transaction_id
        self.transaction_id = transaction_id
        if logger is None:
            logger = logging.getLogger('modbusmaster.transport')
        self.logger = logger

        self.sock = None
        self.state = DISCONNECTED
        self.last_request = 0.0   # time.time() of the last packet sent or received, for request_delay

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.disconnect()

    @property
    def connected(self):
        return self.state == CONNECTED

    def connect(self):
        """
        Create a socket and connect it to the remote device.

        The connect is done in non-blocking mode, retrying every millisecond for up to self.timeout seconds. It fails
        immediately if the OS reports any error other than 'in progress', so a refused connection doesn't use up the
        whole timeout.

        :return: None
        :raises BindError: if a local client address was given, and binding to it failed
        :raises ConnectError: if the socket couldn't be created, or the connection was refused
        :raises ConnectTimeout: if the connection wasn't established within self.timeout seconds
        """
        if self.state == CONNECTED:
            return

        self.state = CONNECTING
        if self.protocol == UDP:
            kind = socket.SOCK_DGRAM
        else:
            kind = socket.SOCK_STREAM
        try:
            sock = socket.socket(socket.AF_INET, kind)
        except OSError as e:
            self.state = DISCONNECTED
            raise ConnectError('socket() failed. Reason: %s' % e) from e

        if self.client:
            try:
                sock.bind((self.client, self.client_port))
            except OSError as e:
                sock.close()
                self.state = DISCONNECTED
                raise BindError('bind() to %s:%d failed. Reason: %s' % (self.client, self.client_port, e)) from e
            self.logger.debug('Bound to %s:%d' % (self.client, self.client_port))

        sock.setblocking(False)
        attempts = 0
        max_attempts = max(1, int(self.timeout * 1000))
        while attempts < max_attempts:
            attempts += 1
            try:
                error = sock.connect_ex((self.host, self.port))
            except OSError as e:   # Name lookup failures are raised, not returned
                sock.close()
                self.state = DISCONNECTED
                raise ConnectError('Error connecting to %s:%d: %s' % (self.host, self.port, e)) from e
            if error in CONNECT_DONE:
                sock.settimeout(self.timeout)   # Back to blocking mode, with send/receive timeouts
                self.sock = sock
                self.state = CONNECTED
                self.logger.info('Connected to %s:%d (%s) after %d attempt/s' % (self.host, self.port,
                                                                                 self.protocol, attempts))
                return
            if error not in CONNECT_PENDING:
                sock.close()
                self.state = DISCONNECTED
                raise ConnectError('Error connecting to %s:%d (attempt %d): (%d) %s' % (self.host, self.port, attempts,
                                                                                      error, os_strerror(error)))
            time.sleep(CONNECT_RETRY_TIME)

        sock.close()
        self.state = DISCONNECTED
        raise ConnectTimeout('connect() to %s:%d timed out after %s seconds' % (self.host, self.port, self.timeout))

    def disconnect(self):
        """
        Close the socket, if it's open. Does nothing if we're not connected.
        """
        if self.state != CONNECTED:
            return
        try:
            self.sock.close()
        finally:
            self.sock = None
            self.state = DISCONNECTED
        self.logger.info('Disconnected from %s:%d' % (self.host, self.port))

    def send(self, packet):
        """
        Send an MBAP framed packet to the remote device, waiting first if the last packet was less than
        self.request_delay seconds ago.

        If the protocol is RTU_TCP, the MBAP header is removed and a CRC is appended before sending.

        :param packet: bytes() object containing an MBAP framed packet
        :return: None
        """
        if self.state != CONNECTED:
            raise TransportError('send() called while not connected to %s:%d' % (self.host, self.port))

        elapsed = time.time() - self.last_request
        if elapsed < self.request_delay:
            delay = self.request_delay - elapsed
            self.logger.debug('Request too fast, sleeping for %1.3f seconds' % delay)
            time.sleep(delay)

        if self.protocol == RTU_TCP:
            packet = packet[MBAP_LENGTH:]
            packet = packet + getcrc(packet)

        self.logger.debug('Sending: %s' % packet.hex())
        try:
            self.sock.sendall(packet)
        except OSError as e:
            raise TransportError('send() to %s:%d failed. Reason: %s' % (self.host, self.port, e)) from e
        self.last_request = time.time()

    def receive(self):
        """
        Wait for a reply from the remote device, and return it.

        If the protocol is RTU_TCP, the CRC on the reply is checked and removed, and a dummy MBAP header is added to
        the front.

        :return: bytes() object containing an MBAP framed packet, or None if the remote device closed the connection,
                 or the reply had an invalid CRC.
        :raises WatchdogTimeout: if nothing was received within self.timeout seconds.
        """
        if self.state != CONNECTED:
            raise TransportError('receive() called while not connected to %s:%d' % (self.host, self.port))

        if self.protocol == RTU_TCP:
            time.sleep(RTU_SETTLE_TIME)

        last_access = time.time()
        while True:
            try:
                readable, _, _ = select.select([self.sock], [], [], POLL_INTERVAL)
            except (OSError, ValueError) as e:
                raise TransportError('select() on %s:%d failed. Reason: %s' % (self.host, self.port, e)) from e

            if not readable:
                if (time.time() - last_access) >= self.timeout:
                    self.logger.error('Watchdog time expired [%s sec], no reply from %s:%d' % (self.timeout,
                                                                                             self.host, self.port))
                    raise WatchdogTimeout('Watchdog time expired [%s sec]!!! Connection to %s is not established.' %
                                          (self.timeout, self.host))
                continue

            try:
                data = self.sock.recv(MAX_READ)
            except (BlockingIOError, socket.timeout):
                last_access = time.time()
                continue
            except OSError as e:
                raise TransportError('recv() from %s:%d failed. Reason: %s' % (self.host, self.port, e)) from e
            self.last_request = time.time()
            break

        if not data:
            self.logger.warning('Connection closed by %s:%d, no data received' % (self.host, self.port))
            return None

        self.logger.debug('Received: %s' % data.hex())
        if self.protocol != RTU_TCP:
            return data

        if (len(data) < 3) or (getcrc(data[:-2]) != data[-2:]):
            self.logger.warning('Received CRC and calculated CRC do not match: %s' % data.hex())
            return None
        message = data[:-2]
        return mbap_header(self.transaction_id(), len(message)) + message


###################################
# Utility functions
#

def os_strerror(error):
    try:
        return errno.errorcode[error] + ' - ' + os.strerror(error)
    except (KeyError, ValueError):
        return 'Unknown error'


def getcrc(message=None):
    """
    Calculate and return the Modbus-RTU CRC bytes for 'message'.

    :param message: A bytes() object, or a list of integers each in the range 0-255
    :return: A bytes() object of length two - the low byte of the CRC, followed by the high byte
    """
    crc = 0xFFFF
    for byte in (message or b''):
        crc = crc ^ byte
        for bit in range(8):
            b = crc & 0x0001
            crc = (crc >> 1) & 0x7FFF
            if b:
                crc = crc ^ 0xA001
    return bytes([crc & 0x00FF, (crc >> 8) & 0x00FF])
