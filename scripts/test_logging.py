from __future__ import annotations

import json
import logging
import unittest

from relayer.common import sanitize_text
from relayer.runtime.logging import JsonFormatter


class SanitizeTextTests(unittest.TestCase):
    def test_rpc_url_credentials_are_hidden(self) -> None:
        self.assertEqual(
            sanitize_text("POST https://mainnet.helius-rpc.com/?api-key=abc123 failed"),
            "POST https://mainnet.helius-rpc.com/*** failed",
        )
        self.assertEqual(
            sanitize_text("(https://solana.quiknode.pro/deadbeef/)"),
            "(https://solana.quiknode.pro/***)",
        )

    def test_bare_host_is_kept(self) -> None:
        self.assertEqual(sanitize_text("l1=http://127.0.0.1:8899"), "l1=http://127.0.0.1:8899")

    def test_secret_assignments_are_masked(self) -> None:
        self.assertEqual(sanitize_text("token=xyz, rest"), "token=***, rest")


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_become_top_level_keys(self) -> None:
        record = logging.LogRecord("bridge_relayer", logging.INFO, __file__, 1, "relayed", None, None)
        record.event = "relay_transfer_confirmed"
        record.counter = 5
        record.rpc_url = "https://rpc.example/secret-path"

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["event"], "relay_transfer_confirmed")
        self.assertEqual(payload["message"], "relayed")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["counter"], 5)
        self.assertEqual(payload["rpc_url"], "https://rpc.example/***")
        self.assertNotIn("lineno", payload)


if __name__ == "__main__":
    unittest.main()
