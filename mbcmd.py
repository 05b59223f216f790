#!/usr/bin/env python3

"""
Modbus command tool, to read or write coils and registers on a single remote device from the command line.

Connection settings come from the first of these configuration files found (section [default]), and can be
overridden with command line options:

    /usr/local/etc/modbusmaster.conf
    ~/.modbusmaster.conf
    ./modbusmaster.conf

E.g.
    $ mbcmd --host 192.168.1.10 --protocol TCP registers 12288 4
    $ mbcmd --unit 3 write-registers 12288 42 100000:DINT 1.5:REAL
    $ mbcmd write-coils 0 on off on
"""

from configparser import ConfigParser as conparser
import logging
import os

import click

from modbusmaster import conversion
from modbusmaster import packets
from modbusmaster import transport
from modbusmaster.master import ModbusMaster

LOGFILE = 'mbcmd.log'
CPPATH = ['/usr/local/etc/modbusmaster.conf', os.path.expanduser('~/.modbusmaster.conf'),
          './modbusmaster.conf']

DEFAULTS = {'host': '127.0.0.1',
            'port': 502,
            'protocol': transport.TCP,
            'timeout': 5.0,
            'endianness': 'little',
            'request_delay': 0.0,
            'unit': 1}

ON_WORDS = ('ON', '1', 'TRUE')
OFF_WORDS = ('OFF', '0', 'FALSE')


def load_config(cppath=None):
    """
    Read the connection settings from the configuration file/s, falling back to DEFAULTS for anything not given.

    :param cppath: List of configuration file names to try, defaults to CPPATH
    :return: dict with the same keys as DEFAULTS
    """
    if cppath is None:
        cppath = CPPATH
    CP = conparser(defaults={})
    CPfile = CP.read(cppath)
    if CPfile:
        logging.getLogger('mbcmd').debug('Read configuration from %s' % (CPfile,))

    config = {}
    for key, default in DEFAULTS.items():
        if isinstance(default, bool):
            config[key] = CP.getboolean('default', key, fallback=default)
        elif isinstance(default, int):
            config[key] = CP.getint('default', key, fallback=default)
        elif isinstance(default, float):
            config[key] = CP.getfloat('default', key, fallback=default)
        else:
            config[key] = CP.get('default', key, fallback=default)
    config['protocol'] = config['protocol'].upper()
    config['endianness'] = config['endianness'].lower()
    return config


def setup_logging(debug=False):
    """
    All log messages go to LOGFILE, and INFO and above (or everything, if debug is True) to the console.
    """
    if logging.getLogger().handlers:   # Already configured, eg by an earlier call in the same process
        return
    if debug:
        loglevel = logging.DEBUG
    else:
        loglevel = logging.INFO

    fh = logging.FileHandler(filename=LOGFILE, mode='w')
    fh.setLevel(logging.DEBUG)   # All log messages go to the log file
    sh = logging.StreamHandler()
    sh.setLevel(loglevel)        # Some or all log messages go to the console
    # noinspection PyArgumentList
    logging.basicConfig(handlers=[fh, sh],
                        level=logging.DEBUG,
                        format='%(levelname)s:%(name)s %(created)14.3f - %(message)s')


def parse_number(text):
    """
    Convert a string to an integer (decimal, or hex/octal/binary with a 0x/0o/0b prefix), or failing that, a float.
    """
    try:
        return int(text, 0)
    except ValueError:
        return float(text)


def parse_bool(text):
    if text.upper() in ON_WORDS:
        return True
    elif text.upper() in OFF_WORDS:
        return False
    raise click.BadParameter('Coil value must be on/off, 1/0 or true/false, not "%s"' % text)


def parse_registers(valuelist):
    """
    Take a tuple of strings from the command line, each a number optionally followed by ':INT', ':DINT' or ':REAL',
    and return a list of RegisterValue tuples.

    :param valuelist: Tuple of strings, eg ('42', '100000:DINT', '1.5:REAL')
    :return: List of packets.RegisterValue tuples
    """
    registers = []
    for item in valuelist:
        valuespec, _, dtype = item.partition(':')
        dtype = dtype.upper() or packets.INT
        if dtype not in packets.DATA_TYPES:
            raise click.BadParameter('Unknown data type "%s" in "%s"' % (dtype, item))
        try:
            value = parse_number(valuespec)
        except ValueError:
            raise click.BadParameter('Not a number: "%s"' % valuespec)
        if dtype == packets.REAL:
            value = float(value)
        elif not isinstance(value, int):
            raise click.BadParameter('%s value must be an integer, not "%s"' % (dtype, valuespec))
        registers.append(packets.RegisterValue(value, dtype))
    return registers


def run(ctx, method, *args):
    """
    Call one of the ModbusMaster methods, turning any communications error or Modbus exception into a
    click error message and a non-zero exit code.
    """
    master = ctx.obj['master']
    try:
        return method(ctx.obj['unit'], *args)
    except (IOError, ValueError) as e:
        logging.getLogger('mbcmd').debug('%s failed' % method.__name__, exc_info=True)
        raise click.ClickException(str(e))
    finally:
        master.disconnect()


def print_bits(reference, bits):
    for i, bit in enumerate(bits):
        click.echo('%5d: %s' % (reference + i, {True: 'ON', False: 'OFF'}[bit]))


def print_registers(reference, data):
    for i, word in enumerate(conversion.registers_to_words(data)):
        click.echo('%5d: 0x%04X %5d' % (reference + i, word, word))


@click.group()
@click.option('--host', default=None, help='Hostname or IP address of the device or gateway')
@click.option('--port', default=None, type=int, help='TCP/UDP port number on the device')
@click.option('--protocol', default=None, type=click.Choice(transport.PROTOCOLS, case_sensitive=False),
              help='Framing - TCP, UDP or RTU_TCP')
@click.option('--timeout', default=None, type=float, help='Connect and reply timeout, in seconds')
@click.option('--endianness', default=None, type=click.Choice(sorted(conversion.ENDIANNESS), case_sensitive=False),
              help='Register order for DINT and REAL values')
@click.option('--delay', 'request_delay', default=None, type=float,
              help='Minimum time between requests, in seconds')
@click.option('--unit', default=None, type=click.IntRange(0, 255), help='Modbus unit ID of the device')
@click.option('--config', 'config_file', default=None, type=click.Path(dir_okay=False),
              help='Configuration file to use instead of the default list')
@click.option('--debug', default=False, is_flag=True, help='If given, drop to the DEBUG log level, otherwise use INFO')
@click.pass_context
def cli(ctx, host, port, protocol, timeout, endianness, request_delay, unit, config_file, debug):
    """
    Read or write coils and registers on a remote Modbus device.
    """
    setup_logging(debug=debug)
    if config_file is None:
        config = load_config()
    else:
        config = load_config([config_file])

    overrides = {'host': host,
                 'port': port,
                 'protocol': protocol,
                 'timeout': timeout,
                 'endianness': endianness,
                 'request_delay': request_delay,
                 'unit': unit}
    for key, value in overrides.items():
        if value is not None:
            config[key] = value

    if config['endianness'].lower() not in conversion.ENDIANNESS:
        raise click.BadParameter('Endianness must be little or big, not "%s"' % config['endianness'])
    try:
        master = ModbusMaster(host=config['host'],
                              protocol=config['protocol'].upper(),
                              port=config['port'],
                              timeout=config['timeout'],
                              endianness=conversion.ENDIANNESS[config['endianness'].lower()],
                              request_delay=config['request_delay'],
                              logger=logging.getLogger('MB'))
    except ValueError as e:
        raise click.ClickException(str(e))
    ctx.obj = {'master': master, 'unit': config['unit'], 'config': config}


@cli.command('coils', short_help='Read coils (FC 1)')
@click.argument('reference', type=int)
@click.argument('quantity', type=int)
@click.pass_context
def coils(ctx, reference, quantity):
    """Read QUANTITY coils starting at REFERENCE."""
    print_bits(reference, run(ctx, ctx.obj['master'].read_coils, reference, quantity))


@cli.command('discretes', short_help='Read discrete inputs (FC 2)')
@click.argument('reference', type=int)
@click.argument('quantity', type=int)
@click.pass_context
def discretes(ctx, reference, quantity):
    """Read QUANTITY discrete inputs starting at REFERENCE."""
    print_bits(reference, run(ctx, ctx.obj['master'].read_input_discretes, reference, quantity))


@cli.command('registers', short_help='Read holding registers (FC 3)')
@click.argument('reference', type=int)
@click.argument('quantity', type=int)
@click.pass_context
def registers(ctx, reference, quantity):
    """Read QUANTITY holding registers starting at REFERENCE."""
    print_registers(reference, run(ctx, ctx.obj['master'].read_multiple_registers, reference, quantity))


@cli.command('input-registers', short_help='Read input registers (FC 4)')
@click.argument('reference', type=int)
@click.argument('quantity', type=int)
@click.pass_context
def input_registers(ctx, reference, quantity):
    """Read QUANTITY input registers starting at REFERENCE."""
    print_registers(reference, run(ctx, ctx.obj['master'].read_multiple_input_registers, reference, quantity))


@cli.command('write-coil', short_help='Write a single coil (FC 5)')
@click.argument('reference', type=int)
@click.argument('value')
@click.pass_context
def write_coil(ctx, reference, value):
    """Turn the coil at REFERENCE on or off. VALUE is on/off, 1/0 or true/false."""
    run(ctx, ctx.obj['master'].write_single_coil, reference, parse_bool(value))
    click.echo('OK')


@cli.command('write-register', short_help='Write a single register (FC 6)')
@click.argument('reference', type=int)
@click.argument('value')
@click.pass_context
def write_register(ctx, reference, value):
    """Write VALUE (-32768 to 65535, or 0x hex) to the register at REFERENCE."""
    try:
        value = int(value, 0)
    except ValueError:
        raise click.BadParameter('Register value must be an integer, not "%s"' % value)
    run(ctx, ctx.obj['master'].write_single_register, reference, value)
    click.echo('OK')


@cli.command('write-coils', short_help='Write multiple coils (FC 15)')
@click.argument('reference', type=int)
@click.argument('values', nargs=-1, required=True)
@click.pass_context
def write_coils(ctx, reference, values):
    """
    Write consecutive coils starting at REFERENCE.

    \b
    E.g.
    $ mbcmd write-coils 0 on off on     # turns on coils 0 and 2, and off coil 1
    """
    run(ctx, ctx.obj['master'].write_multiple_coils, reference, [parse_bool(v) for v in values])
    click.echo('OK')


@cli.command('write-registers', short_help='Write multiple registers (FC 16)')
@click.argument('reference', type=int)
@click.argument('values', nargs=-1, required=True)
@click.pass_context
def write_registers(ctx, reference, values):
    """
    Write consecutive registers starting at REFERENCE. Each value is a number, optionally followed by :INT (the
    default), :DINT or :REAL. DINT and REAL values take two registers each.

    \b
    E.g.
    $ mbcmd write-registers 12288 1000 70000:DINT 3.14:REAL
    """
    run(ctx, ctx.obj['master'].write_multiple_registers, reference, parse_registers(values))
    click.echo('OK')


@cli.command('mask-write', short_help='Mask write a register (FC 22)')
@click.argument('reference', type=int)
@click.argument('and_mask')
@click.argument('or_mask')
@click.pass_context
def mask_write(ctx, reference, and_mask, or_mask):
    """
    Modify bits in the register at REFERENCE:  (contents AND AND_MASK) OR (OR_MASK AND (NOT AND_MASK))
    """
    try:
        and_mask, or_mask = int(and_mask, 0), int(or_mask, 0)
    except ValueError:
        raise click.BadParameter('Masks must be integers, eg 0x00F2')
    run(ctx, ctx.obj['master'].mask_write_register, reference, and_mask, or_mask)
    click.echo('OK')


@cli.command('read-write', short_help='Write then read registers (FC 23)')
@click.argument('reference_read', type=int)
@click.argument('quantity', type=int)
@click.argument('reference_write', type=int)
@click.argument('values', nargs=-1, required=True)
@click.pass_context
def read_write(ctx, reference_read, quantity, reference_write, values):
    """
    Write VALUES starting at REFERENCE_WRITE, then read QUANTITY registers starting at REFERENCE_READ.
    """
    data = run(ctx, ctx.obj['master'].read_write_registers, reference_read, quantity, reference_write,
               parse_registers(values))
    print_registers(reference_read, data)


def main():
    cli()


if __name__ == '__main__':
    main()
