from __future__ import annotations

import unittest

from solders.pubkey import Pubkey

from relayer.ledger import (
    RELAY_TRANSFER_DISCRIMINATOR,
    DecodeError,
    decode_counter_account,
    decode_relay_instruction,
    decode_transfer_descriptor,
    decode_watched_counter,
    encode_relay_instruction,
)

U64_MAX = (1 << 64) - 1


def _u64(value: int) -> bytes:
    return value.to_bytes(8, "little")


def _descriptor_bytes(destination: Pubkey, amount: int, *, size: int = 87) -> bytes:
    data = bytes(range(40)) + bytes(destination) + _u64(amount)
    return data + bytes(size - len(data))


class AccountLayoutTests(unittest.TestCase):
    def test_watched_counter_reads_bytes_8_to_16(self) -> None:
        data = b"\xff" * 8 + _u64(42) + b"\xee" * 10
        self.assertEqual(decode_watched_counter(data).counter, 42)

    def test_counter_account_reads_both_counters(self) -> None:
        data = bytes(8) + _u64(9) + _u64(7)
        state = decode_counter_account(data)
        self.assertEqual(state.source_mirror_counter, 9)
        self.assertEqual(state.destination_counter, 7)

    def test_transfer_descriptor_reads_address_and_amount(self) -> None:
        destination = Pubkey.new_unique()
        descriptor = decode_transfer_descriptor(_descriptor_bytes(destination, 1000, size=120))
        self.assertEqual(descriptor.destination_address, destination)
        self.assertEqual(descriptor.amount, 1000)

    def test_max_u64_counter_is_decoded_unsigned(self) -> None:
        data = bytes(8) + _u64(U64_MAX)
        self.assertEqual(decode_watched_counter(data).counter, U64_MAX)


class ShortBufferTests(unittest.TestCase):
    def test_watched_account_shorter_than_16_bytes(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode_watched_counter(bytes(15))
        self.assertEqual(ctx.exception.expected, 16)
        self.assertEqual(ctx.exception.actual, 15)
        self.assertIn("expected at least 16 bytes, got 15", str(ctx.exception))

    def test_counter_account_shorter_than_24_bytes(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode_counter_account(bytes(16))
        self.assertEqual((ctx.exception.expected, ctx.exception.actual), (24, 16))
        self.assertEqual(ctx.exception.layout, "counter account")

    def test_descriptor_shorter_than_87_bytes(self) -> None:
        # 80 bytes covers every field but is still below the account size.
        with self.assertRaises(DecodeError) as ctx:
            decode_transfer_descriptor(bytes(80))
        self.assertEqual((ctx.exception.expected, ctx.exception.actual), (87, 80))

    def test_empty_buffer(self) -> None:
        with self.assertRaises(DecodeError):
            decode_watched_counter(b"")


class RelayInstructionTests(unittest.TestCase):
    def test_payload_layout(self) -> None:
        payload = encode_relay_instruction(1000, 5)
        self.assertEqual(len(payload), 24)
        self.assertEqual(payload[:8], bytes([187, 90, 182, 138, 51, 248, 175, 98]))
        self.assertEqual(payload[:8], RELAY_TRANSFER_DISCRIMINATOR)
        self.assertEqual(payload[8:16], _u64(1000))
        self.assertEqual(payload[16:24], _u64(5))

    def test_round_trip_at_boundaries(self) -> None:
        for amount, counter in ((0, 0), (U64_MAX, U64_MAX), (1_500_000_000, 73), (0, U64_MAX)):
            with self.subTest(amount=amount, counter=counter):
                self.assertEqual(
                    decode_relay_instruction(encode_relay_instruction(amount, counter)),
                    (amount, counter),
                )

    def test_out_of_range_values_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            encode_relay_instruction(-1, 0)
        with self.assertRaises(ValueError):
            encode_relay_instruction(0, U64_MAX + 1)

    def test_decode_rejects_wrong_discriminator(self) -> None:
        payload = bytes(8) + _u64(1) + _u64(2)
        with self.assertRaises(DecodeError) as ctx:
            decode_relay_instruction(payload)
        self.assertIn("discriminator", str(ctx.exception))
        self.assertIsNone(ctx.exception.expected)
        self.assertIsNone(ctx.exception.actual)

    def test_decode_rejects_wrong_length(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode_relay_instruction(encode_relay_instruction(1, 2) + b"\x00")
        self.assertEqual((ctx.exception.expected, ctx.exception.actual), (24, 25))


if __name__ == "__main__":
    unittest.main()
