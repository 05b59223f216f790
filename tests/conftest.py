"""Shared fixtures - a fake Modbus device listening on localhost."""

import socket
import socketserver
import struct
import threading

import pytest

from modbusmaster.transport import getcrc

CLOSE = object()   # Handler return value that makes the fake device drop the connection


def mbap_reply(request, body):
    """
    Build an MBAP framed reply to 'request', echoing its transaction and unit IDs.

    :param request: bytes() object containing the MBAP framed request packet
    :param body: Function code followed by the reply data
    :return: bytes() object
    """
    return request[:2] + struct.pack('>HH', 0, len(body) + 1) + request[6:7] + body


def rtu_reply(unit_id, body):
    """Build an RTU framed reply - unit ID, function code and data, then the CRC."""
    message = bytes([unit_id]) + body
    return message + getcrc(message)


class _TCPHandler(socketserver.BaseRequestHandler):
    def handle(self):
        device = self.server.device
        device.connections += 1
        while True:
            try:
                data = self.request.recv(2000)
            except OSError:
                return
            if not data:
                return
            device.requests.append(data)
            reply = device.handler(data)
            if reply is CLOSE:
                return
            if reply:
                self.request.sendall(reply)


class _UDPHandler(socketserver.BaseRequestHandler):
    def handle(self):
        device = self.server.device
        data, sock = self.request
        device.requests.append(data)
        reply = device.handler(data)
        if reply and reply is not CLOSE:
            sock.sendto(reply, self.client_address)


class _ThreadingTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False


class FakeDevice(object):
    """
    Stands in for a Modbus device. Records every request in .requests, and answers with handler(request), which
    returns the raw reply bytes, None for no reply, or CLOSE to drop the connection.
    """
    def __init__(self, handler, protocol='TCP'):
        self.handler = handler
        self.requests = []
        self.connections = 0
        if protocol == 'UDP':
            self.server = socketserver.UDPServer(('127.0.0.1', 0), _UDPHandler)
        else:
            self.server = _ThreadingTCPServer(('127.0.0.1', 0), _TCPHandler)
        self.server.device = self
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def port(self):
        return self.server.server_address[1]

    def start(self):
        self.thread.start()
        return self

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def fake_device():
    """Factory - fake_device(handler, protocol='TCP') starts a FakeDevice, and stops it after the test."""
    devices = []

    def start(handler, protocol='TCP'):
        device = FakeDevice(handler, protocol).start()
        devices.append(device)
        return device

    yield start

    for device in devices:
        device.stop()


@pytest.fixture
def free_port():
    """A localhost TCP port with nothing listening on it."""
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
