import threading
import time
from functools import partial
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

from so_arm_bus.config import BusSettings
from so_arm_bus.feetech.packet_codec import (
    decode_position_response,
    encode_read_position,
    encode_write_position,
    encode_write_torque_enable,
    format_packet,
    validate_position_response,
)
from so_arm_bus.feetech.port_handler import open_port
from so_arm_bus.feetech.servo_defs import DEFAULT_BAUDRATE, MAX_ID, POSITION_RESPONSE_LEN
from so_arm_bus.utils.logging import get_logger


class BusError(Exception):
    pass


class NotConnectedError(BusError):
    pass


class BusConnectionError(BusError):
    pass


class BusCloseError(BusError):
    """Closing the stream failed. The controller is disconnected regardless."""

    def __init__(self, message, outcomes=None):
        super().__init__(message)
        self.outcomes = outcomes or {}


class ServoBusController:
    """
    Owns one duplex byte stream to a chain of STS servos and runs one
    transaction at a time against it.

    The stream comes from `stream_factory(baud_rate)` and must provide
    write(bytes), read(max_len, timeout) -> bytes, close() and a `readable`
    attribute. Without a factory the controller opens `device` with pyserial.
    """

    def __init__(
        self,
        device: Optional[str] = None,
        baudrate: int = DEFAULT_BAUDRATE,
        settings: Optional[BusSettings] = None,
        stream_factory: Optional[Callable] = None,
    ):
        self.log = get_logger(__name__)
        self.settings = settings or BusSettings()
        self.baudrate = baudrate

        if stream_factory is None:
            if device is None:
                raise ValueError("either device or stream_factory is required")
            stream_factory = partial(open_port, device)
        self.device = device
        self._stream_factory = stream_factory

        self._stream = None
        # One transaction on the wire at a time; reentrant so a sweep can hold it
        self._bus_lock = threading.RLock()

    # ── lifecycle ────────────────────────────────────────────────────────────

    def connect(self, baud_rate: Optional[int] = None) -> None:
        if self._stream is not None:
            raise BusConnectionError("already connected")

        baud_rate = baud_rate or self.baudrate
        try:
            stream = self._stream_factory(baud_rate)
        except Exception as e:
            self.log.error(f"failed to open bus at {baud_rate} baud: {e}")
            raise BusConnectionError(f"failed to open bus: {e}") from e

        self._stream = stream
        self.baudrate = baud_rate
        self.log.info(f"bus connected at {baud_rate} baud")

    def disconnect(self) -> Dict[int, bool]:
        """
        Disable torque on every known motor, then close the stream.

        Returns {motor_id: disable written}. A no-op returning {} when not
        connected. Per-motor failures never stop the sweep; the controller is
        always disconnected afterwards, even if close() raises BusCloseError.
        """
        if self._stream is None:
            return {}

        outcomes = {}
        with self._bus_lock:
            try:
                for motor_id in self.settings.motor_ids:
                    try:
                        outcomes[motor_id] = self._write_packet(
                            encode_write_torque_enable(motor_id, False),
                            f"torque disable for motor {motor_id}",
                        )
                    except Exception as e:
                        self.log.error(f"torque disable for motor {motor_id} failed: {e}")
                        outcomes[motor_id] = False
                    time.sleep(self.settings.inter_command_delay)

                failed = [aid for aid, ok in outcomes.items() if not ok]
                if failed:
                    self.log.warning(f"torque disable failed for motors {failed}")
            finally:
                stream, self._stream = self._stream, None
                try:
                    stream.close()
                except Exception as e:
                    self.log.error(f"error closing bus: {e}")
                    raise BusCloseError(f"error closing bus: {e}", outcomes) from e
                finally:
                    self.log.info("bus disconnected")

        return outcomes

    def is_connected(self) -> bool:
        return self._stream is not None and bool(getattr(self._stream, "readable", True))

    def __enter__(self):
        if self._stream is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    # ── transactions ─────────────────────────────────────────────────────────

    def read_motor_position(self, motor_id: int, timeout: Optional[float] = None) -> Optional[int]:
        """Present position in counts, or None if the motor did not answer in time."""
        stream = self._require_stream()
        self._check_motor_id(motor_id)
        packet = encode_read_position(motor_id)
        timeout = self.settings.read_timeout if timeout is None else timeout

        with self._bus_lock:
            try:
                self._send(stream, packet)
                data = stream.read(POSITION_RESPONSE_LEN, timeout)
            except OSError as e:
                self.log.error(f"failed to read position from motor {motor_id}: {e}")
                return None

        self.log.debug(f"[id:{motor_id:03d}] rx {format_packet(data)}")

        if self.settings.verify_responses and data and not validate_position_response(data, motor_id):
            self.log.warning(f"[id:{motor_id:03d}] discarding invalid response {format_packet(data)}")
            return None

        position = decode_position_response(data)
        if position is None:
            self.log.info(f"no response from motor {motor_id}")
        return position

    def write_motor_position(self, motor_id: int, position: int) -> bool:
        """Send a goal position (clamped to 0-4095). No acknowledgement is awaited."""
        self._require_stream()
        self._check_motor_id(motor_id)
        return self._write_packet(
            encode_write_position(motor_id, position),
            f"position write for motor {motor_id}",
        )

    def set_torque(self, motor_id: int, enabled: bool) -> bool:
        self._require_stream()
        self._check_motor_id(motor_id)
        return self._write_packet(
            encode_write_torque_enable(motor_id, enabled),
            f"torque {'enable' if enabled else 'disable'} for motor {motor_id}",
        )

    def read_all_positions(self) -> Dict[int, Optional[int]]:
        """Read every known motor in ascending id order, one at a time."""
        self._require_stream()
        positions = {}
        with self._bus_lock:
            for motor_id in self.settings.motor_ids:
                positions[motor_id] = self.read_motor_position(motor_id)
                # let the servo finish talking before the next request
                time.sleep(self.settings.inter_transaction_delay)
        return positions

    def scan(self, id_range=range(1, MAX_ID + 1), timeout: float = 0.05) -> List[int]:
        """Return the ids in `id_range` that answer a position read."""
        self._require_stream()
        found = []
        with self._bus_lock:
            with tqdm(id_range, desc="Scanning servos", unit="ID") as pbar:
                for motor_id in pbar:
                    if self.read_motor_position(motor_id, timeout=timeout) is not None:
                        found.append(motor_id)
                        pbar.set_description(f"Found servo ID {motor_id}")
                    time.sleep(self.settings.inter_transaction_delay)
        if found:
            self.log.info(f"found servos: {found}")
        else:
            self.log.info("no servos found")
        return found

    # ── helpers ──────────────────────────────────────────────────────────────

    def _require_stream(self):
        if not self.is_connected():
            raise NotConnectedError("not connected to a serial port")
        return self._stream

    def _check_motor_id(self, motor_id):
        if not 1 <= motor_id <= MAX_ID:
            raise ValueError(f"motor id must be between 1 and {MAX_ID}: {motor_id}")

    def _send(self, stream, packet):
        self.log.debug(f"[id:{packet[2]:03d}] tx {format_packet(packet)}")
        written = stream.write(packet)
        if written is not None and written != len(packet):
            raise OSError(f"short write: {written} of {len(packet)} bytes")

    def _write_packet(self, packet, what) -> bool:
        stream = self._stream
        if stream is None:
            return False
        with self._bus_lock:
            try:
                self._send(stream, packet)
            except OSError as e:
                self.log.error(f"{what} failed: {e}")
                return False
        return True
