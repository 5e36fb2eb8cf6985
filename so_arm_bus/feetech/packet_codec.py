#!/usr/bin/env python
"""
Packet construction and parsing for the STS/SMS servo protocol.

Request  : FF FF ID LEN INST ADDR PARAM... CHK
Response : FF FF ID LEN ERR PARAM... CHK

LEN counts INST/ERR, the parameters and the checksum. CHK is the bitwise
complement of the low byte of the sum of every byte between the header and
the checksum itself. Nothing in this module touches a port.
"""

from typing import Optional, Sequence

from .servo_defs import *


def scs_lobyte(w):
    return w & 0xFF


def scs_hibyte(w):
    return (w >> 8) & 0xFF


def scs_makeword(a, b):
    return (a & 0xFF) | ((b & 0xFF) << 8)


def checksum(body: Sequence[int]) -> int:
    """Checksum over ID..last parameter byte."""
    return ~sum(body) & 0xFF


def verify_checksum(packet: Sequence[int]) -> bool:
    """True if the trailing byte matches the checksum of packet[2:-1]."""
    if len(packet) < 4:
        return False
    return packet[-1] == checksum(packet[2:-1])


def clamp_position(position) -> int:
    return int(max(POSITION_MIN, min(POSITION_MAX, position)))


def position_to_degrees(position: int) -> float:
    return position / POSITION_MAX * 360.0


def degrees_to_position(degrees: float) -> int:
    return clamp_position(round(degrees / 360.0 * POSITION_MAX))


def _build_packet(scs_id: int, instruction: int, address: int, params: Sequence[int]) -> bytes:
    txpacket = [0] * (len(params) + 7)

    txpacket[0:2] = HEADER
    txpacket[PKT_ID] = scs_id
    txpacket[PKT_LENGTH] = len(params) + 3  # INST + ADDR + params + CHK
    txpacket[PKT_INSTRUCTION] = instruction
    txpacket[PKT_PARAMETER0] = address
    txpacket[PKT_PARAMETER0 + 1: PKT_PARAMETER0 + 1 + len(params)] = params

    txpacket[-1] = checksum(txpacket[PKT_ID:-1])
    return bytes(txpacket)


def encode_read_position(motor_id: int) -> bytes:
    """Read 2 bytes of Present Position."""
    return _build_packet(motor_id, INST_READ, SMS_STS_PRESENT_POSITION_L, [2])


def encode_write_position(motor_id: int, position) -> bytes:
    """Write Goal Position. Out-of-range positions are clamped, not rejected."""
    position = clamp_position(position)
    return _build_packet(
        motor_id,
        INST_WRITE,
        SMS_STS_GOAL_POSITION_L,
        [scs_lobyte(position), scs_hibyte(position)],
    )


def encode_write_torque_enable(motor_id: int, enabled: bool) -> bytes:
    return _build_packet(
        motor_id, INST_WRITE, SMS_STS_TORQUE_ENABLE, [1 if enabled else 0]
    )


def decode_position_response(data: Optional[bytes]) -> Optional[int]:
    """
    Extract the position from a status packet answering a position read.

    Returns None for a missing or short (< 8 bytes) response. Only the two
    parameter bytes are looked at; see validate_position_response for the
    stricter check.
    """
    if data is None or len(data) < POSITION_RESPONSE_LEN:
        return None
    return scs_makeword(data[PKT_PARAMETER0], data[PKT_PARAMETER0 + 1])


def validate_position_response(data: Optional[bytes], motor_id: int) -> bool:
    """Header, responder id, declared length and checksum all match."""
    if data is None or len(data) < POSITION_RESPONSE_LEN:
        return False
    if bytes(data[0:2]) != HEADER:
        return False
    if data[PKT_ID] != motor_id:
        return False

    total_length = data[PKT_LENGTH] + 4  # HEADER0 HEADER1 ID LENGTH
    if total_length != POSITION_RESPONSE_LEN or len(data) < total_length:
        return False
    return verify_checksum(data[:total_length])


def format_packet(packet: Optional[bytes]) -> str:
    if not packet:
        return "<empty>"
    return " ".join(f"{b:02X}" for b in packet)
