"""Fixed-offset little-endian layouts of the accounts the relayer reads.

Every decoder checks the buffer length before slicing, so a resized or
foreign account surfaces as a :class:`DecodeError` instead of a short read.
"""

from __future__ import annotations

import struct

from solders.pubkey import Pubkey

from .errors import DecodeError
from .types import U64_MAX, DestinationCounterState, TransferDescriptor, WatchedCounterState

_U64 = struct.Struct("<Q")
_RELAY_PAYLOAD = struct.Struct("<8sQQ")

WATCHED_ACCOUNT_LAYOUT = "watched account"
COUNTER_ACCOUNT_LAYOUT = "counter account"
TRANSFER_DESCRIPTOR_LAYOUT = "transfer descriptor"
RELAY_INSTRUCTION_LAYOUT = "relay instruction"

WATCHED_ACCOUNT_MIN_SIZE = 16
COUNTER_ACCOUNT_MIN_SIZE = 24
TRANSFER_DESCRIPTOR_MIN_SIZE = 87

WATCHED_COUNTER_OFFSET = 8
MIRROR_COUNTER_OFFSET = 8
DESTINATION_COUNTER_OFFSET = 16
DESCRIPTOR_ADDRESS_OFFSET = 40
DESCRIPTOR_AMOUNT_OFFSET = 72

RELAY_TRANSFER_DISCRIMINATOR = bytes([187, 90, 182, 138, 51, 248, 175, 98])
RELAY_INSTRUCTION_SIZE = _RELAY_PAYLOAD.size


def _require_length(data: bytes, *, layout: str, minimum: int) -> None:
    if len(data) < minimum:
        raise DecodeError(layout, expected=minimum, actual=len(data))


def _read_u64(data: bytes, offset: int) -> int:
    return _U64.unpack_from(data, offset)[0]


def decode_watched_counter(data: bytes) -> WatchedCounterState:
    _require_length(data, layout=WATCHED_ACCOUNT_LAYOUT, minimum=WATCHED_ACCOUNT_MIN_SIZE)
    return WatchedCounterState(counter=_read_u64(data, WATCHED_COUNTER_OFFSET))


def decode_counter_account(data: bytes) -> DestinationCounterState:
    _require_length(data, layout=COUNTER_ACCOUNT_LAYOUT, minimum=COUNTER_ACCOUNT_MIN_SIZE)
    return DestinationCounterState(
        source_mirror_counter=_read_u64(data, MIRROR_COUNTER_OFFSET),
        destination_counter=_read_u64(data, DESTINATION_COUNTER_OFFSET),
    )


def decode_transfer_descriptor(data: bytes) -> TransferDescriptor:
    _require_length(data, layout=TRANSFER_DESCRIPTOR_LAYOUT, minimum=TRANSFER_DESCRIPTOR_MIN_SIZE)
    address_bytes = bytes(data[DESCRIPTOR_ADDRESS_OFFSET:DESCRIPTOR_AMOUNT_OFFSET])
    return TransferDescriptor(
        destination_address=Pubkey.from_bytes(address_bytes),
        amount=_read_u64(data, DESCRIPTOR_AMOUNT_OFFSET),
    )


def encode_relay_instruction(amount: int, counter: int) -> bytes:
    for name, value in (("amount", amount), ("counter", counter)):
        if value < 0 or value > U64_MAX:
            raise ValueError(f"{name} must fit in u64, got {value}")
    return _RELAY_PAYLOAD.pack(RELAY_TRANSFER_DISCRIMINATOR, amount, counter)


def decode_relay_instruction(data: bytes) -> tuple[int, int]:
    if len(data) != RELAY_INSTRUCTION_SIZE:
        raise DecodeError(
            RELAY_INSTRUCTION_LAYOUT,
            expected=RELAY_INSTRUCTION_SIZE,
            actual=len(data),
            detail=f"expected exactly {RELAY_INSTRUCTION_SIZE} bytes, got {len(data)}",
        )
    discriminator, amount, counter = _RELAY_PAYLOAD.unpack(data)
    if discriminator != RELAY_TRANSFER_DISCRIMINATOR:
        raise DecodeError(
            RELAY_INSTRUCTION_LAYOUT,
            detail=f"unexpected discriminator {list(discriminator)}",
        )
    return amount, counter
