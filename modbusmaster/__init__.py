"""
Modbus master library, for talking to a single remote device using Modbus-TCP, Modbus-UDP, or Modbus-RTU frames
tunnelled over a TCP socket.

The contents are:

        transport.py - socket connection handling, RTU CRC framing, and the transport exceptions.

        packets.py - request packet builders and reply parsers for function codes 1, 2, 3, 4, 5, 6, 15, 16, 22 and 23,
        and the ModbusException raised for exception replies.

        master.py - the ModbusMaster class, with one method for each function code.

        conversion.py - helper functions to convert between Python values and raw register bytes.

"""

from modbusmaster.conversion import LITTLE_ENDIAN, BIG_ENDIAN
from modbusmaster.master import ModbusMaster
from modbusmaster.packets import (ModbusException, ResponseError, RegisterValue,
                                  INT, DINT, REAL)
from modbusmaster.transport import (TCP, UDP, RTU_TCP, TransportError, BindError, ConnectError, ConnectTimeout,
                                    WatchdogTimeout)
