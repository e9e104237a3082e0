from __future__ import annotations

import unittest

from solders.pubkey import Pubkey

from relayer.ledger import AddressDeriver, derive


class AddressDeriverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.program_id = Pubkey.new_unique()
        self.watched = Pubkey.new_unique()
        self.deriver = AddressDeriver(program_id=self.program_id, watched_account=self.watched)

    def test_matches_program_address_of_nonce_seeds(self) -> None:
        expected = Pubkey.find_program_address(
            [b"nonce", bytes(self.watched), (5).to_bytes(8, "little")],
            self.program_id,
        )
        derived = self.deriver.derive(5)
        self.assertEqual((derived.address, derived.bump), expected)

    def test_is_deterministic(self) -> None:
        self.assertEqual(self.deriver.derive(11), derive(self.program_id, self.watched, 11))

    def test_counters_map_to_distinct_addresses(self) -> None:
        addresses = {self.deriver.derive(counter).address for counter in range(8)}
        self.assertEqual(len(addresses), 8)

    def test_result_is_off_curve(self) -> None:
        self.assertFalse(self.deriver.derive(0).address.is_on_curve())

    def test_counter_must_fit_u64(self) -> None:
        with self.assertRaises(ValueError):
            self.deriver.derive(-1)
        with self.assertRaises(ValueError):
            self.deriver.derive(1 << 64)
        self.deriver.derive((1 << 64) - 1)


if __name__ == "__main__":
    unittest.main()
