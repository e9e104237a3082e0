from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from dotenv import load_dotenv

from relayer.common import guarded_call, log_event
from relayer.ledger import AddressDeriver, ConfigError, FatalRelayError, LedgerClient, TransactionAssembler
from relayer.relay import ReconciliationEngine
from relayer.runtime import (
    RelayerSettings,
    bootstrap_dependencies,
    load_keypair,
    run_relay_loop,
    setup_logger,
)
from relayer.storage import RelayStateStore, StorageSettings


def _build_ledger_client(
    name: str,
    rpc_url: str,
    settings: RelayerSettings,
    logger: logging.Logger,
) -> LedgerClient:
    return LedgerClient(
        name=name,
        rpc_url=rpc_url,
        logger=logger,
        commitment=settings.commitment,
        timeout_seconds=settings.rpc_timeout_seconds,
        max_attempts=settings.rpc_max_attempts,
        retry_backoff_seconds=settings.rpc_retry_backoff_seconds,
        confirm_timeout_seconds=settings.confirm_timeout_seconds,
        confirm_poll_interval_seconds=settings.confirm_poll_interval_seconds,
    )


async def main() -> int:
    load_dotenv()
    logger = setup_logger()

    try:
        settings = RelayerSettings.load()
        identities = settings.identities()
        signer = load_keypair(settings.wallet_path)
    except ConfigError as error:
        log_event(
            logger,
            level="critical",
            event="startup_config_error",
            message="Failed to load relayer configuration",
            error_type=type(error).__name__,
            error=str(error),
        )
        return 1

    logger = setup_logger(settings.log_level)
    log_event(
        logger,
        level="info",
        event="relayer_configured",
        message="Configuration loaded",
        l1_url=settings.l1_url,
        l2_url=settings.l2_url,
        watched_account=str(identities.watched_account),
        nonce_account=str(identities.nonce_account),
        signer=str(signer.pubkey()),
        poll_interval_seconds=settings.poll_interval_seconds,
    )

    source = _build_ledger_client("l1", settings.l1_url, settings, logger)
    destination = _build_ledger_client("l2", settings.l2_url, settings, logger)
    engine = ReconciliationEngine(
        logger=logger,
        source=source,
        destination=destination,
        deriver=AddressDeriver(
            program_id=identities.l1_program_id,
            watched_account=identities.watched_account,
        ),
        assembler=TransactionAssembler(
            program_id=identities.l2_program_id,
            counter_account=identities.nonce_account,
        ),
        signer=signer,
    )

    storage_settings = StorageSettings.from_env()
    state_store: RelayStateStore | None = None
    if storage_settings.enabled:
        state_store = RelayStateStore(
            storage_settings,
            logger,
            watched_account=str(identities.watched_account),
        )
    else:
        log_event(
            logger,
            level="warning",
            event="lease_disabled",
            message="REDIS_URL is not set; running without a cross-process relay lease",
        )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    exit_code = 0
    try:
        await bootstrap_dependencies(
            logger=logger,
            stop_event=stop_event,
            settings=settings,
            ledger_clients=[source, destination],
            state_store=state_store,
        )
        log_event(logger, level="info", event="relayer_started", message="Starting monitoring")
        await run_relay_loop(
            logger=logger,
            stop_event=stop_event,
            settings=settings,
            engine=engine,
            state_store=state_store,
        )
    except FatalRelayError:
        exit_code = 1
    except RuntimeError as error:
        if not stop_event.is_set():
            raise
        log_event(
            logger,
            level="warning",
            event="bootstrap_interrupted",
            message="Shutdown requested during bootstrap",
            error=str(error),
        )
    finally:
        for client in (source, destination):
            await guarded_call(
                client.close,
                logger=logger,
                event="ledger_close_failed",
                message="Failed to close ledger client",
                ledger=client.name,
            )
        if state_store is not None:
            await guarded_call(
                state_store.close,
                logger=logger,
                event="storage_close_failed",
                message="Failed to close storage",
            )
        log_event(
            logger,
            level="info",
            event="shutdown_completed",
            message="Shutdown completed",
            exit_code=exit_code,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
