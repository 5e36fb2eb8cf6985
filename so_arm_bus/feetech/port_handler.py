#!/usr/bin/env python

import time

import serial
from serial.tools import list_ports

from so_arm_bus.feetech.servo_defs import DEFAULT_BAUDRATE, USB_VENDOR_IDS
from so_arm_bus.utils.logging import get_logger

SUPPORTED_BAUDRATES = [4800, 9600, 14400, 19200, 38400, 57600, 115200, 128000, 250000, 500000, 1000000]
IDLE_GAP_CHARS = 20        # quiet time that ends a reply once bytes started
POLL_INTERVAL_S = 0.0001   # 100 µs between empty polls


class PortHandler(object):
    """
    Duplex byte stream over a pyserial port.

    write(data) -> int, read(max_len, timeout) -> bytes, close(). read returns
    b"" if nothing arrives before the deadline.
    """

    def __init__(self, port_name):
        self.is_open = False
        self.baudrate = DEFAULT_BAUDRATE
        self.char_time_us = 0.0
        self.port_name = port_name
        self.ser = None
        self.log = get_logger(__name__)

    def open(self, baudrate=DEFAULT_BAUDRATE):
        if baudrate not in SUPPORTED_BAUDRATES:
            raise ValueError(f"unsupported baudrate: {baudrate}")
        self.baudrate = baudrate
        self.setupPort()
        return self

    def close(self):
        if self.ser is None:
            return
        try:
            self.ser.close()
        finally:
            self.is_open = False
            self.ser = None

    @property
    def readable(self):
        return self.is_open and self.ser is not None and self.ser.is_open

    def getBaudRate(self):
        return self.baudrate

    def write(self, packet):
        if not self.readable:
            raise serial.PortNotOpenError()
        try:
            self.ser.reset_input_buffer()  # drop stale bytes from an earlier reply
            return self.ser.write(packet)
        except serial.SerialException:
            raise
        except Exception as e:
            # termios.error and friends when the adapter disappears
            raise serial.SerialException(f"write failed on {self.port_name}: {e}") from e

    def read(self, max_len, timeout):
        """
        Wait up to `timeout` seconds for the first byte, then keep reading
        until `max_len` bytes or the line stays idle for IDLE_GAP_CHARS.
        """
        if not self.readable:
            raise serial.PortNotOpenError()
        try:
            return self._read(max_len, timeout)
        except serial.SerialException:
            raise
        except Exception as e:
            raise serial.SerialException(f"read failed on {self.port_name}: {e}") from e

    def _read(self, max_len, timeout):
        rxpacket = bytearray()
        start_us = self.getCurrentTime_us()
        deadline_us = start_us + timeout * 1_000_000.0
        idle_gap_us = self.char_time_us * IDLE_GAP_CHARS
        last_byte_us = None

        while len(rxpacket) < max_len:
            chunk = self.ser.read(max_len - len(rxpacket))
            now_us = self.getCurrentTime_us()
            if chunk:
                rxpacket.extend(chunk)
                last_byte_us = now_us
                continue

            if last_byte_us is not None:
                if now_us - last_byte_us > idle_gap_us:
                    break
            elif now_us > deadline_us:
                self.log.debug(f"rx timeout after {(now_us - start_us) / 1000:.1f} ms")
                break

            time.sleep(POLL_INTERVAL_S)

        return bytes(rxpacket)

    def getCurrentTime_us(self):
        # monotonic, microseconds
        return time.monotonic_ns() / 1_000.0

    def setupPort(self):
        if self.is_open:
            self.close()

        self.ser = serial.Serial(
            port=self.port_name,
            baudrate=self.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=0
        )

        self.is_open = True

        self.ser.reset_input_buffer()
        self.char_time_us = 10.0 * 1_000_000 / self.baudrate  # 10 bits/char

        self.log.info(f"port {self.port_name} opened at {self.baudrate} baud")
        return True


def open_port(port_name, baudrate=DEFAULT_BAUDRATE):
    """Stream factory for ServoBusController: returns an opened PortHandler."""
    return PortHandler(port_name).open(baudrate)


def find_serial_ports(known_only=True):
    """List USB-serial adapters, optionally only the chips used on servo driver boards."""
    found = []
    for info in list_ports.comports():
        chip = USB_VENDOR_IDS.get(info.vid)
        if known_only and chip is None:
            continue
        found.append({
            "device": info.device,
            "chip": chip or "unknown",
            "description": info.description,
            "vid": info.vid,
            "pid": info.pid,
        })
    return sorted(found, key=lambda p: p["device"])
