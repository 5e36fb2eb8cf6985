import time

import pytest

from so_arm_bus.config import BusSettings
from so_arm_bus.feetech.packet_codec import checksum
from so_arm_bus.feetech.servo_defs import INST_READ, PKT_ID, PKT_INSTRUCTION


def make_position_response(motor_id, position, error=0):
    body = [motor_id, 4, error, position & 0xFF, (position >> 8) & 0xFF]
    return bytes([0xFF, 0xFF] + body + [checksum(body)])


class FakeStream:
    """Scripted duplex stream: answers position reads for the ids in `responses`."""

    def __init__(self, responses=None, fail_write_ids=(), fail_read=False,
                 fail_close=False, latency=0.0):
        self.responses = dict(responses or {})
        self.fail_write_ids = set(fail_write_ids)
        self.fail_read = fail_read
        self.fail_close = fail_close
        self.latency = latency
        self.writes = []
        self.read_calls = []
        self.closed = False
        self.readable = True
        self._pending_id = None

    def write(self, data):
        data = bytes(data)
        if data[PKT_ID] in self.fail_write_ids:
            raise OSError(f"simulated write failure for id {data[PKT_ID]}")
        self.writes.append(data)
        if data[PKT_INSTRUCTION] == INST_READ:
            self._pending_id = data[PKT_ID]
        return len(data)

    def read(self, max_len, timeout):
        motor_id, self._pending_id = self._pending_id, None
        self.read_calls.append((motor_id, max_len, timeout))
        if self.fail_read:
            raise OSError("simulated read failure")

        response = self.responses.get(motor_id)
        if response is None:
            time.sleep(timeout)
            return b""
        if self.latency:
            time.sleep(self.latency)
        return response[:max_len]

    def close(self):
        self.closed = True
        self.readable = False
        if self.fail_close:
            raise OSError("simulated close failure")

    def written_ids(self, instruction=None):
        return [
            w[PKT_ID] for w in self.writes
            if instruction is None or w[PKT_INSTRUCTION] == instruction
        ]


class StreamFactory:
    def __init__(self, stream):
        self.stream = stream
        self.baud_rates = []

    def __call__(self, baud_rate):
        self.baud_rates.append(baud_rate)
        return self.stream


@pytest.fixture
def fast_settings():
    return BusSettings(read_timeout=0.05, inter_command_delay=0.0, inter_transaction_delay=0.0)


@pytest.fixture
def stream():
    return FakeStream()
