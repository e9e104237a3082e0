from __future__ import annotations

import asyncio
import logging
import unittest
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from relayer.ledger import FatalRelayError, LedgerConnectionError, SubmissionError, TickReport
from relayer.runtime import RelayerSettings, bootstrap_dependencies, run_relay_loop


def _settings(**overrides: Any) -> RelayerSettings:
    options: dict[str, Any] = {
        "l1_url": "http://l1",
        "l2_url": "http://l2",
        "watched_account": "watched",
        "wallet_path": "/tmp/id.json",
        "l1_program_id": "l1",
        "l2_program_id": "l2",
        "nonce_account": "nonce",
        "poll_interval_seconds": 0.0,
        "error_backoff_seconds": 0.0,
        "max_error_backoff_seconds": 0.0,
    }
    options.update(overrides)
    return RelayerSettings(**options)


def _report() -> TickReport:
    return TickReport(source_counter=5, mirror_counter=5, destination_counter=5)


def _make_state_store(*, lease: bool = True) -> MagicMock:
    store = MagicMock()
    store.owner_id = "relayer-a"
    store.connect = AsyncMock()
    store.close = AsyncMock()
    store.acquire_lease = AsyncMock(return_value=lease)
    store.refresh_lease = AsyncMock(return_value=True)
    store.get_lease_holder = AsyncMock(return_value="relayer-b")
    store.release_lease = AsyncMock(return_value=True)
    store.record_progress = AsyncMock()
    store.update_heartbeat = AsyncMock()
    return store


class RelayLoopTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.logger = logging.getLogger("test.loop")
        self.stop_event = asyncio.Event()
        self.engine = MagicMock()
        self.engine.phase = "idle"

    def _tick_outcomes(self, *outcomes: Any) -> None:
        """Make run_tick return or raise each outcome in turn, then stop the loop."""
        remaining = list(outcomes)

        async def run_tick(*, before_submit: Any = None) -> TickReport:
            outcome = remaining.pop(0)
            if not remaining:
                self.stop_event.set()
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return await outcome(before_submit)
            return outcome

        self.engine.run_tick = AsyncMock(side_effect=run_tick)

    async def test_connection_error_backs_off_and_continues(self) -> None:
        self._tick_outcomes(
            LedgerConnectionError(method="getAccountInfo", message="down"),
            LedgerConnectionError(method="getAccountInfo", message="down"),
            _report(),
        )

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
        )

        self.assertEqual(self.engine.run_tick.await_count, 3)
        self.assertEqual(self.engine.phase, "idle")

    async def test_submission_error_waits_for_next_tick(self) -> None:
        self._tick_outcomes(SubmissionError(message="rejected", program_error_code=6001), _report())

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
        )

        self.assertEqual(self.engine.run_tick.await_count, 2)

    async def test_unexpected_error_does_not_stop_the_loop(self) -> None:
        self._tick_outcomes(ValueError("bad payload"), _report())

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
        )

        self.assertEqual(self.engine.run_tick.await_count, 2)

    async def test_fatal_error_stops_loop_and_releases_lease(self) -> None:
        store = _make_state_store()
        self._tick_outcomes(FatalRelayError("watched account missing"), _report())

        with self.assertRaises(FatalRelayError):
            await run_relay_loop(
                logger=self.logger,
                stop_event=self.stop_event,
                settings=_settings(),
                engine=self.engine,
                state_store=store,
            )

        self.assertEqual(self.engine.run_tick.await_count, 1)
        store.release_lease.assert_awaited_once()
        store.record_progress.assert_not_awaited()

    async def test_lease_held_elsewhere_skips_tick(self) -> None:
        store = _make_state_store(lease=False)
        self.engine.run_tick = AsyncMock(return_value=_report())

        async def acquire() -> bool:
            self.stop_event.set()
            return False

        store.acquire_lease.side_effect = acquire

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
            state_store=store,
        )

        self.engine.run_tick.assert_not_awaited()
        store.get_lease_holder.assert_awaited_once()
        store.update_heartbeat.assert_awaited_once_with(phase="sleeping")

    async def test_successful_tick_records_progress(self) -> None:
        store = _make_state_store()
        self._tick_outcomes(_report())

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
            state_store=store,
        )

        store.record_progress.assert_awaited_once_with(_report().to_dict())
        store.release_lease.assert_awaited_once()

    async def test_lease_is_refreshed_before_each_submission(self) -> None:
        store = _make_state_store()

        async def batch(before_submit: Any) -> TickReport:
            for counter in (5, 6, 7):
                await before_submit(counter)
            return _report()

        self._tick_outcomes(batch)

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
            state_store=store,
        )

        self.assertEqual(store.refresh_lease.await_count, 3)
        store.record_progress.assert_awaited_once()

    async def test_lease_taken_over_mid_batch_aborts_remaining_counters(self) -> None:
        store = _make_state_store()
        # Another relayer acquires the expired lease after counter 5 is sent.
        store.refresh_lease = AsyncMock(side_effect=[True, False])
        submitted: list[int] = []

        async def batch(before_submit: Any) -> TickReport:
            for counter in (5, 6, 7):
                await before_submit(counter)
                submitted.append(counter)
            return _report()

        self._tick_outcomes(batch, _report())

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
            state_store=store,
        )

        self.assertEqual(submitted, [5])
        self.assertEqual(self.engine.run_tick.await_count, 2)
        store.record_progress.assert_awaited_once()
        store.release_lease.assert_awaited_once()

    async def test_without_store_no_submit_guard_is_installed(self) -> None:
        self.engine.run_tick = AsyncMock(return_value=_report())

        async def stop_after_tick(*, before_submit: Any = None) -> TickReport:
            self.stop_event.set()
            return _report()

        self.engine.run_tick.side_effect = stop_after_tick

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
        )

        self.assertIsNone(self.engine.run_tick.await_args.kwargs["before_submit"])

    async def test_progress_write_failure_is_not_fatal(self) -> None:
        store = _make_state_store()
        store.record_progress.side_effect = ConnectionError("redis down")
        self._tick_outcomes(_report(), _report())

        await run_relay_loop(
            logger=self.logger,
            stop_event=self.stop_event,
            settings=_settings(),
            engine=self.engine,
            state_store=store,
        )

        self.assertEqual(self.engine.run_tick.await_count, 2)


class BootstrapTests(unittest.IsolatedAsyncioTestCase):
    async def test_retries_until_ledgers_are_healthy(self) -> None:
        client = MagicMock()
        client.name = "l1"
        client.connect = AsyncMock()
        client.close = AsyncMock()
        client.healthcheck = AsyncMock(
            side_effect=[LedgerConnectionError(method="getLatestBlockhash", message="down"), None]
        )

        await bootstrap_dependencies(
            logger=logging.getLogger("test.bootstrap"),
            stop_event=asyncio.Event(),
            settings=_settings(),
            ledger_clients=[client],
            state_store=None,
        )

        self.assertEqual(client.healthcheck.await_count, 2)
        client.close.assert_awaited_once()

    async def test_stop_before_bootstrap_raises(self) -> None:
        stop_event = asyncio.Event()
        stop_event.set()

        with self.assertRaises(RuntimeError):
            await bootstrap_dependencies(
                logger=logging.getLogger("test.bootstrap"),
                stop_event=stop_event,
                settings=_settings(),
                ledger_clients=[],
                state_store=_make_state_store(),
            )


if __name__ == "__main__":
    unittest.main()
