from __future__ import annotations

import asyncio
import logging

from relayer.common import compute_backoff_seconds, guarded_call, log_event
from relayer.ledger import (
    FatalRelayError,
    LeaseLostError,
    LedgerClient,
    LedgerConnectionError,
    SubmissionError,
)
from relayer.relay import ReconciliationEngine, SubmitGuard
from relayer.storage import RelayStateStore

from .settings import RelayerSettings


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    settings: RelayerSettings,
    ledger_clients: list[LedgerClient],
    state_store: RelayStateStore | None,
) -> None:
    attempt = 0
    while not stop_event.is_set():
        attempt += 1
        try:
            if state_store is not None:
                await state_store.connect()
            for client in ledger_clients:
                await client.connect()
                await client.healthcheck()
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                attempt=attempt,
                error=str(error),
            )
            for client in ledger_clients:
                await guarded_call(
                    client.close,
                    logger=logger,
                    event="bootstrap_ledger_close_failed",
                    message="Failed to close ledger client during bootstrap retry",
                    ledger=client.name,
                )
            if state_store is not None:
                await guarded_call(
                    state_store.close,
                    logger=logger,
                    event="bootstrap_storage_close_failed",
                    message="Failed to close storage during bootstrap retry",
                )

            await wait_with_stop(
                stop_event,
                compute_backoff_seconds(
                    attempt=attempt,
                    base_seconds=settings.error_backoff_seconds,
                    max_seconds=settings.max_error_backoff_seconds,
                ),
            )

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


def _lease_guard(state_store: RelayStateStore) -> SubmitGuard:
    """Return a hook that re-checks the lease before each counter is submitted."""

    async def ensure_lease(counter: int) -> None:
        if not await state_store.refresh_lease():
            raise LeaseLostError(
                f"Relay lease {state_store.lease_key} is no longer held before counter {counter}"
            )

    return ensure_lease


async def _tick_with_lease(
    *,
    logger: logging.Logger,
    engine: ReconciliationEngine,
    state_store: RelayStateStore | None,
) -> bool:
    """Run one tick if this process holds the lease. Returns False when skipped."""
    if state_store is not None and not await state_store.acquire_lease():
        holder = await guarded_call(
            state_store.get_lease_holder,
            logger=logger,
            event="lease_holder_lookup_failed",
            message="Failed to read relay lease holder",
        )
        log_event(
            logger,
            level="warning",
            event="lease_held_elsewhere",
            message="Another relayer holds the lease for this account; skipping tick",
            lease_holder=holder,
            relayer_id=state_store.owner_id,
        )
        return False

    report = await engine.run_tick(
        before_submit=_lease_guard(state_store) if state_store is not None else None
    )
    if state_store is not None:
        await guarded_call(
            lambda: state_store.record_progress(report.to_dict()),
            logger=logger,
            event="progress_record_failed",
            message="Failed to record relay progress",
        )
    return True


async def run_relay_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    settings: RelayerSettings,
    engine: ReconciliationEngine,
    state_store: RelayStateStore | None = None,
) -> None:
    """Drive the engine until ``stop_event`` is set.

    Connection failures back off exponentially, rejected submissions wait for
    the next regular tick, and :class:`FatalRelayError` ends the loop.
    """
    consecutive_failures = 0

    try:
        while not stop_event.is_set():
            delay_seconds = settings.poll_interval_seconds

            try:
                await _tick_with_lease(logger=logger, engine=engine, state_store=state_store)
                consecutive_failures = 0
            except FatalRelayError as error:
                log_event(
                    logger,
                    level="critical",
                    event="relay_fatal_error",
                    message="Relay loop stopped by a fatal error",
                    error=str(error),
                )
                raise
            except LedgerConnectionError as error:
                consecutive_failures += 1
                delay_seconds = compute_backoff_seconds(
                    attempt=consecutive_failures,
                    base_seconds=settings.error_backoff_seconds,
                    max_seconds=settings.max_error_backoff_seconds,
                )
                log_event(
                    logger,
                    level="warning",
                    event="relay_tick_connection_error",
                    message="Ledger unreachable; backing off before the next tick",
                    method=error.method,
                    consecutive_failures=consecutive_failures,
                    backoff_seconds=round(delay_seconds, 3),
                    error=str(error),
                )
            except LeaseLostError as error:
                consecutive_failures = 0
                log_event(
                    logger,
                    level="warning",
                    event="relay_lease_lost",
                    message="Relay lease lost mid-batch; stopping until it is reacquired",
                    relayer_id=state_store.owner_id if state_store is not None else None,
                    error=str(error),
                )
            except SubmissionError as error:
                consecutive_failures = 0
                log_event(
                    logger,
                    level="error",
                    event="relay_batch_aborted",
                    message="Submission failed; remaining counters wait for the next tick",
                    tx_signature=error.signature,
                    program_error_code=error.program_error_code,
                    error=str(error),
                )
            except Exception as error:
                # Descriptor decode errors and unexpected RPC payloads land here.
                consecutive_failures += 1
                delay_seconds = compute_backoff_seconds(
                    attempt=consecutive_failures,
                    base_seconds=settings.error_backoff_seconds,
                    max_seconds=settings.max_error_backoff_seconds,
                )
                log_event(
                    logger,
                    level="exception",
                    event="relay_tick_failed",
                    message="Relay tick failed",
                    consecutive_failures=consecutive_failures,
                    backoff_seconds=round(delay_seconds, 3),
                    error=str(error),
                )

            engine.phase = "sleeping"
            if state_store is not None:
                await guarded_call(
                    lambda: state_store.update_heartbeat(phase=engine.phase),
                    logger=logger,
                    event="heartbeat_update_failed",
                    message="Failed to update relay heartbeat",
                )
            await wait_with_stop(stop_event, delay_seconds)
            engine.phase = "idle"
    finally:
        if state_store is not None:
            await guarded_call(
                state_store.release_lease,
                logger=logger,
                event="lease_release_failed",
                message="Failed to release relay lease",
            )
