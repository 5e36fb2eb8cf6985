import time
from functools import partial
from types import SimpleNamespace

import pytest
import serial

from so_arm_bus.bus_controller import BusConnectionError, ServoBusController
from so_arm_bus.config import BusSettings
from so_arm_bus.feetech import port_handler
from so_arm_bus.feetech.packet_codec import encode_read_position, encode_write_torque_enable
from so_arm_bus.feetech.port_handler import PortHandler, find_serial_ports, open_port
from so_arm_bus.feetech.servo_defs import INST_READ, PKT_ID, PKT_INSTRUCTION
from tests.conftest import make_position_response


class FakeSerial:
    """Stands in for serial.Serial; servos listed in `positions` answer reads."""

    positions = {}
    chunk_size = 3
    instances = []

    def __init__(self, port, baudrate, bytesize, parity, stopbits, timeout):
        self.port = port
        self.baudrate = baudrate
        self.settings = (bytesize, parity, stopbits, timeout)
        self.is_open = True
        self.rx = bytearray()
        self.written = []
        FakeSerial.instances.append(self)

    def reset_input_buffer(self):
        self.rx.clear()

    def write(self, data):
        data = bytes(data)
        self.written.append(data)
        if data[PKT_INSTRUCTION] == INST_READ and data[PKT_ID] in self.positions:
            self.rx.extend(make_position_response(data[PKT_ID], self.positions[data[PKT_ID]]))
        return len(data)

    def read(self, size):
        size = min(size, self.chunk_size)
        chunk = bytes(self.rx[:size])
        del self.rx[:size]
        return chunk

    def close(self):
        self.is_open = False


@pytest.fixture
def fake_serial(monkeypatch):
    FakeSerial.positions = {}
    FakeSerial.instances = []
    monkeypatch.setattr(serial, "Serial", FakeSerial)
    return FakeSerial


def test_open_configures_8n1(fake_serial):
    port = open_port("/dev/ttyUSB0", 1000000)

    assert port.readable
    ser = fake_serial.instances[0]
    assert ser.port == "/dev/ttyUSB0"
    assert ser.baudrate == 1000000
    assert ser.settings == (serial.EIGHTBITS, serial.PARITY_NONE, serial.STOPBITS_ONE, 0)
    assert port.getBaudRate() == 1000000


def test_open_rejects_unsupported_baudrate(fake_serial):
    with pytest.raises(ValueError):
        PortHandler("/dev/ttyUSB0").open(123456)
    assert fake_serial.instances == []


def test_read_collects_full_reply_across_chunks(fake_serial):
    fake_serial.positions = {1: 3000}
    port = open_port("/dev/ttyUSB0")

    assert port.write(encode_read_position(1)) == 8
    assert port.read(8, timeout=0.5) == make_position_response(1, 3000)


def test_read_times_out_with_no_bytes(fake_serial):
    port = open_port("/dev/ttyUSB0")
    port.write(encode_read_position(2))

    start = time.monotonic()
    assert port.read(8, timeout=0.05) == b""
    assert time.monotonic() - start >= 0.05


def test_write_drops_stale_input(fake_serial):
    port = open_port("/dev/ttyUSB0")
    ser = fake_serial.instances[0]
    ser.rx.extend(b"\x01\x02\x03")

    port.write(encode_write_torque_enable(1, False))

    assert ser.rx == bytearray()
    assert ser.written == [encode_write_torque_enable(1, False)]


def test_closed_port_raises_serial_errors(fake_serial):
    port = open_port("/dev/ttyUSB0")
    port.close()

    assert not port.readable
    with pytest.raises(serial.SerialException):
        port.write(encode_read_position(1))
    with pytest.raises(OSError):
        port.read(8, timeout=0.01)
    port.close()


def test_controller_over_pyserial(fake_serial):
    fake_serial.positions = {1: 100, 6: 4000}
    settings = BusSettings(read_timeout=0.02, inter_command_delay=0.0, inter_transaction_delay=0.0)
    controller = ServoBusController(device="/dev/ttyUSB0", settings=settings)

    controller.connect()
    positions = controller.read_all_positions()
    controller.disconnect()

    assert positions == {1: 100, 2: None, 3: None, 4: None, 5: None, 6: 4000}
    ser = fake_serial.instances[0]
    assert not ser.is_open
    assert ser.written[-6:] == [encode_write_torque_enable(i, False) for i in range(1, 7)]


class UnpluggedSerial(FakeSerial):
    """FakeSerial whose adapter can be yanked: termios calls start failing with EIO."""

    unplugged = False
    io_error = OSError

    def reset_input_buffer(self):
        if self.unplugged:
            raise self.io_error(5, "Input/output error")
        super().reset_input_buffer()

    def read(self, size):
        if self.unplugged:
            raise self.io_error(5, "Input/output error")
        return super().read(size)


@pytest.fixture
def unplugged_serial(fake_serial, monkeypatch):
    termios = pytest.importorskip("termios")
    monkeypatch.setattr(UnpluggedSerial, "io_error", termios.error)
    monkeypatch.setattr(serial, "Serial", UnpluggedSerial)
    return fake_serial


def test_unplugged_port_raises_serial_errors(unplugged_serial):
    port = open_port("/dev/ttyUSB0")
    ser = unplugged_serial.instances[0]
    ser.unplugged = True

    with pytest.raises(serial.SerialException) as excinfo:
        port.write(encode_read_position(1))
    assert isinstance(excinfo.value.__cause__, ser.io_error)
    with pytest.raises(serial.SerialException):
        port.read(8, timeout=0.01)


def test_controller_survives_unplugged_adapter(unplugged_serial):
    unplugged_serial.positions = {1: 100}
    settings = BusSettings(read_timeout=0.02, inter_command_delay=0.0, inter_transaction_delay=0.0)
    controller = ServoBusController(device="/dev/ttyUSB0", settings=settings)
    controller.connect()
    assert controller.read_motor_position(1) == 100

    ser = unplugged_serial.instances[0]
    ser.unplugged = True

    assert controller.read_motor_position(1) is None
    assert controller.disconnect() == {i: False for i in range(1, 7)}
    assert not controller.is_connected()
    assert not ser.is_open


def test_controller_surfaces_open_failure(monkeypatch):
    def refuse(*args, **kwargs):
        raise serial.SerialException("could not open port /dev/missing")

    monkeypatch.setattr(serial, "Serial", refuse)
    controller = ServoBusController(stream_factory=partial(open_port, "/dev/missing"))

    with pytest.raises(BusConnectionError):
        controller.connect()
    assert not controller.is_connected()


def test_find_serial_ports(monkeypatch):
    ports = [
        SimpleNamespace(device="/dev/ttyUSB1", vid=0x0403, pid=0x6001, description="FT232R"),
        SimpleNamespace(device="/dev/ttyACM0", vid=0x2341, pid=0x0043, description="Arduino"),
        SimpleNamespace(device="/dev/ttyUSB0", vid=0x1A86, pid=0x7523, description="USB Serial"),
        SimpleNamespace(device="/dev/ttyS0", vid=None, pid=None, description="n/a"),
    ]
    monkeypatch.setattr(port_handler.list_ports, "comports", lambda: ports)

    found = find_serial_ports()
    assert [p["device"] for p in found] == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
    assert [p["chip"] for p in found] == ["CH340", "FTDI"]

    everything = find_serial_ports(known_only=False)
    assert len(everything) == 4
    assert {p["chip"] for p in everything} == {"CH340", "FTDI", "unknown"}
