from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from relayer.common import log_event
from relayer.ledger import (
    AccountNotFoundError,
    AddressDeriver,
    DecodeError,
    DerivationError,
    DestinationCounterState,
    FatalRelayError,
    RelayPhase,
    RelayProgress,
    RelayResult,
    SubmissionError,
    TickReport,
    TransactionAssembler,
    WatchedCounterState,
    decode_counter_account,
    decode_transfer_descriptor,
    decode_watched_counter,
)

SubmitGuard = Callable[[int], Awaitable[None]]


class AccountReader(Protocol):
    name: str

    async def read_account(self, address: Pubkey) -> bytes:
        ...


class DestinationLedger(AccountReader, Protocol):
    async def fetch_latest_blockhash(self) -> tuple[Hash, int | None]:
        ...

    async def submit(
        self,
        transaction: VersionedTransaction,
        *,
        last_valid_block_height: int | None = None,
    ) -> str:
        ...


def pending_counters(watched: WatchedCounterState, destination: DestinationCounterState) -> range:
    """Counters recorded on the source ledger but not yet mirrored on the destination."""
    start = destination.source_mirror_counter
    return range(start, max(start, watched.counter))


class ReconciliationEngine:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        source: AccountReader,
        destination: DestinationLedger,
        deriver: AddressDeriver,
        assembler: TransactionAssembler,
        signer: Keypair,
    ) -> None:
        self._logger = logger
        self.source = source
        self.destination = destination
        self.deriver = deriver
        self.assembler = assembler
        self._signer = signer
        self.progress = RelayProgress()
        self.phase: RelayPhase = "idle"
        self._tick_lock = asyncio.Lock()

    @property
    def watched_account(self) -> Pubkey:
        return self.deriver.watched_account

    @property
    def counter_account(self) -> Pubkey:
        return self.assembler.counter_account

    async def _read_required_account(self, client: AccountReader, address: Pubkey, *, stage: str) -> bytes:
        try:
            return await client.read_account(address)
        except AccountNotFoundError as error:
            log_event(
                self._logger,
                level="error",
                event="required_account_missing",
                message="Configured account does not exist",
                stage=stage,
                ledger=client.name,
                account=str(address),
            )
            raise FatalRelayError(f"{stage}: {error}") from error
        except Exception as error:
            self._log_stage_failure(stage=stage, error=error)
            raise

    async def fetch_watched_state(self) -> WatchedCounterState:
        self.phase = "fetching_source_counter"
        data = await self._read_required_account(
            self.source,
            self.watched_account,
            stage="fetch_source_counter",
        )
        try:
            return decode_watched_counter(data)
        except DecodeError as error:
            self._log_stage_failure(stage="fetch_source_counter", error=error)
            raise FatalRelayError(str(error)) from error

    async def fetch_counter_state(self) -> DestinationCounterState:
        self.phase = "fetching_destination_counter"
        data = await self._read_required_account(
            self.destination,
            self.counter_account,
            stage="fetch_destination_counter",
        )
        try:
            return decode_counter_account(data)
        except DecodeError as error:
            self._log_stage_failure(stage="fetch_destination_counter", error=error)
            raise FatalRelayError(str(error)) from error

    def _observe_progress(self, counter: int) -> None:
        previous = self.progress.observe(counter)
        if previous is None:
            return
        log_event(
            self._logger,
            level="info",
            event="relay_progress_updated",
            message="Destination counter changed",
            previous_counter=previous,
            current_counter=counter,
        )

    def _log_stage_failure(self, *, stage: str, error: Exception, counter: int | None = None) -> None:
        fields: dict[str, object] = {"stage": stage, "error": str(error)}
        if counter is not None:
            fields["counter"] = counter
        if isinstance(error, SubmissionError):
            fields["program_error_code"] = error.program_error_code
            fields["tx_signature"] = error.signature
        log_event(
            self._logger,
            level="error",
            event="relay_stage_failed",
            message="Relay stage failed",
            **fields,
        )

    async def run_tick(self, *, before_submit: SubmitGuard | None = None) -> TickReport:
        """Reconcile once: relay every pending counter in ascending order.

        The first failure aborts the remaining counters of this tick; the
        next tick recomputes the same pending range from the destination.
        ``before_submit`` is awaited with each counter before its transaction
        is built; raising from it aborts the batch.
        """
        async with self._tick_lock:
            try:
                watched = await self.fetch_watched_state()
                destination = await self.fetch_counter_state()
                self._observe_progress(destination.source_mirror_counter)

                report = TickReport(
                    source_counter=watched.counter,
                    mirror_counter=destination.source_mirror_counter,
                    destination_counter=destination.destination_counter,
                )
                pending = pending_counters(watched, destination)
                if not pending:
                    self.phase = "no_work"
                    log_event(
                        self._logger,
                        level="info",
                        event="relay_no_work",
                        message="Destination is up to date",
                        source_counter=watched.counter,
                        mirror_counter=destination.source_mirror_counter,
                        destination_counter=destination.destination_counter,
                    )
                    return report

                self.phase = "draining"
                log_event(
                    self._logger,
                    level="info",
                    event="relay_batch_started",
                    message="Processing counter change",
                    source_counter=watched.counter,
                    mirror_counter=destination.source_mirror_counter,
                    pending_count=len(pending),
                )
                for counter in pending:
                    report.results.append(await self.relay_counter(counter, before_submit=before_submit))

                log_event(
                    self._logger,
                    level="info",
                    event="relay_batch_completed",
                    message="Pending counters processed",
                    **report.to_dict(),
                )
                return report
            finally:
                self.phase = "idle"

    async def relay_counter(
        self,
        counter: int,
        *,
        before_submit: SubmitGuard | None = None,
    ) -> RelayResult:
        try:
            derived = self.deriver.derive(counter)
        except DerivationError as error:
            self._log_stage_failure(stage="derive_descriptor", error=error, counter=counter)
            raise FatalRelayError(str(error)) from error
        descriptor_address = str(derived.address)

        try:
            data = await self.source.read_account(derived.address)
        except AccountNotFoundError:
            log_event(
                self._logger,
                level="info",
                event="relay_descriptor_missing",
                message="No transfer descriptor for counter; skipping",
                counter=counter,
                descriptor_address=descriptor_address,
            )
            return RelayResult(counter=counter, status="skipped_missing", descriptor_address=descriptor_address)
        except Exception as error:
            self._log_stage_failure(stage="read_descriptor", error=error, counter=counter)
            raise

        try:
            descriptor = decode_transfer_descriptor(data)
        except DecodeError as error:
            self._log_stage_failure(stage="decode_descriptor", error=error, counter=counter)
            raise

        log_event(
            self._logger,
            level="info",
            event="relay_transfer_prepared",
            message="Preparing destination transfer",
            counter=counter,
            amount=descriptor.amount,
            destination_address=str(descriptor.destination_address),
        )

        stage = "pre_submit_check"
        try:
            if before_submit is not None:
                await before_submit(counter)
            stage = "fetch_blockhash"
            blockhash, last_valid_block_height = await self.destination.fetch_latest_blockhash()
            stage = "assemble"
            transaction = self.assembler.assemble(
                amount=descriptor.amount,
                counter=counter,
                destination_address=descriptor.destination_address,
                signer=self._signer,
                recent_blockhash=blockhash,
            )
            stage = "submit"
            signature = await self.destination.submit(
                transaction,
                last_valid_block_height=last_valid_block_height,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._log_stage_failure(stage=stage, error=error, counter=counter)
            raise

        log_event(
            self._logger,
            level="info",
            event="relay_transfer_confirmed",
            message="Destination transfer confirmed",
            counter=counter,
            tx_signature=signature,
        )
        return RelayResult(
            counter=counter,
            status="relayed",
            descriptor_address=descriptor_address,
            tx_signature=signature,
            amount=descriptor.amount,
            destination_address=str(descriptor.destination_address),
        )
