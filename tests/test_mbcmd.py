"""Tests for the mbcmd command line tool."""

import logging
from unittest import mock

import click
import pytest
from click.testing import CliRunner

import mbcmd
from conftest import mbap_reply
from modbusmaster.packets import DINT, INT, REAL, RegisterValue


@pytest.fixture(autouse=True)
def in_tmp_path(tmp_path, monkeypatch):
    """Run every test in an empty directory, so the log file and any ./modbusmaster.conf stay out of the tree."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_load_config_defaults(tmp_path):
    config = mbcmd.load_config([str(tmp_path / 'missing.conf')])
    assert config == {'host': '127.0.0.1',
                      'port': 502,
                      'protocol': 'TCP',
                      'timeout': 5.0,
                      'endianness': 'little',
                      'request_delay': 0.0,
                      'unit': 1}


def test_load_config_file(tmp_path):
    path = tmp_path / 'modbusmaster.conf'
    path.write_text('[default]\nhost = 10.0.0.5\nport = 5020\nprotocol = rtu_tcp\nendianness = BIG\n'
                    'request_delay = 0.25\nunit = 7\n')
    config = mbcmd.load_config([str(path)])
    assert config['host'] == '10.0.0.5'
    assert config['port'] == 5020
    assert config['protocol'] == 'RTU_TCP'
    assert config['endianness'] == 'big'
    assert config['request_delay'] == 0.25
    assert config['unit'] == 7
    assert config['timeout'] == 5.0


def test_parse_registers():
    assert mbcmd.parse_registers(('42', '0x10', '100000:DINT', '1.5:real', '2:REAL')) == [
        RegisterValue(42, INT), RegisterValue(16, INT), RegisterValue(100000, DINT),
        RegisterValue(1.5, REAL), RegisterValue(2.0, REAL)]


@pytest.mark.parametrize('values', [('1:WORD',), ('abc',), ('1.5',), ('1.5:DINT',)])
def test_parse_registers_rejects_bad_values(values):
    with pytest.raises(click.BadParameter):
        mbcmd.parse_registers(values)


def test_parse_bool():
    assert mbcmd.parse_bool('on') is True
    assert mbcmd.parse_bool('0') is False
    with pytest.raises(click.BadParameter):
        mbcmd.parse_bool('maybe')


def invoke(device, *args):
    return CliRunner().invoke(mbcmd.cli, ['--host', '127.0.0.1', '--port', str(device.port), '--protocol', 'tcp',
                                          '--timeout', '2'] + list(args))


def test_read_registers_command(fake_device):
    device = fake_device(lambda request: mbap_reply(request, bytes([0x03, 0x04, 0x00, 0x2A, 0xFF, 0xFF])))
    result = invoke(device, 'registers', '12288', '2')
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ['12288: 0x002A    42', '12289: 0xFFFF 65535']


def test_read_coils_command(fake_device):
    device = fake_device(lambda request: mbap_reply(request, bytes([0x01, 0x01, 0x05])))
    result = invoke(device, 'coils', '0', '3')
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == ['    0: ON', '    1: OFF', '    2: ON']


def test_exception_reply_exits_with_error(fake_device):
    device = fake_device(lambda request: mbap_reply(request, bytes([0x83, 0x02])))
    result = invoke(device, 'registers', '0', '1')
    assert result.exit_code == 1
    assert 'ILLEGAL DATA ADDRESS' in result.output


def test_write_registers_command(fake_device):
    device = fake_device(lambda request: mbap_reply(request, request[7:12]))
    result = invoke(device, '--unit', '3', 'write-registers', '0', '1000', '70000:DINT')
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == 'OK'
    request = device.requests[0]
    assert request[6] == 3
    assert request[10:13] == bytes([0x00, 0x03, 0x06])
    assert request[13:] == bytes.fromhex('03e8' + '11700001')


def test_write_coils_command(fake_device):
    device = fake_device(lambda request: mbap_reply(request, request[7:12]))
    result = invoke(device, 'write-coils', '0', 'on', 'off', 'on')
    assert result.exit_code == 0, result.output
    assert device.requests[0][7:] == bytes.fromhex('0f0000000301' + '05')


def test_config_file_sets_unit(fake_device, tmp_path):
    device = fake_device(lambda request: mbap_reply(request, request[7:12]))
    path = tmp_path / 'test.conf'
    path.write_text('[default]\nhost = 127.0.0.1\nport = %d\nprotocol = TCP\ntimeout = 2\nunit = 9\n' % device.port)
    result = CliRunner().invoke(mbcmd.cli, ['--config', str(path), 'write-register', '5', '0x2A'])
    assert result.exit_code == 0, result.output
    assert len(device.requests) == 1
    assert device.requests[0][2:] == bytes.fromhex('000000060906' + '0005002a')


def test_bad_coil_value(fake_device):
    device = fake_device(lambda request: None)
    result = invoke(device, 'write-coil', '0', 'maybe')
    assert result.exit_code == 2
    assert device.requests == []


def test_command_line_overrides_config_file(fake_device, tmp_path):
    device = fake_device(lambda request: mbap_reply(request, request[7:12]))
    path = tmp_path / 'test.conf'
    path.write_text('[default]\nhost = 127.0.0.1\nport = %d\nprotocol = UDP\nunit = 9\n' % device.port)
    result = CliRunner().invoke(mbcmd.cli, ['--config', str(path), '--protocol', 'TCP', '--unit', '4',
                                            'write-coil', '3', 'on'])
    assert result.exit_code == 0, result.output
    assert device.requests[0][6:] == bytes.fromhex('04050003ff00')


def test_setup_logging_only_once(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, 'handlers', [])
    with mock.patch('mbcmd.logging.FileHandler') as fh, mock.patch('mbcmd.logging.basicConfig') as basic:
        mbcmd.setup_logging()
        root.handlers.append(logging.NullHandler())   # as installed by basicConfig
        mbcmd.setup_logging(debug=True)
    fh.assert_called_once_with(filename=mbcmd.LOGFILE, mode='w')
    basic.assert_called_once()
