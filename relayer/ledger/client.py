from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Any

import aiohttp
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from relayer.common import log_event, retry_async

from .errors import (
    AccountNotFoundError,
    LedgerConnectionError,
    LedgerRpcError,
    SubmissionError,
)

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}
RETRYABLE_HTTP_STATUSES = {408, 425, 429, 500, 502, 503, 504}


def _to_int(value: Any) -> int | None:
    try:
        if value is None or isinstance(value, bool):
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_program_error_code(err: Any) -> int | None:
    """Return the custom program error code from a ledger transaction error.

    The ledger reports program failures as
    ``{"InstructionError": [index, {"Custom": code}]}``.
    """
    if not isinstance(err, dict):
        return None
    instruction_error = err.get("InstructionError")
    if not isinstance(instruction_error, (list, tuple)) or len(instruction_error) != 2:
        return None
    detail = instruction_error[1]
    if isinstance(detail, dict) and "Custom" in detail:
        return _to_int(detail.get("Custom"))
    return None


def _error_payload_to_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = str(payload.get("message") or "").strip()
        if message:
            return message
    return str(payload)


class LedgerClient:
    """JSON-RPC access to one ledger: account reads and transaction submission."""

    def __init__(
        self,
        *,
        name: str,
        rpc_url: str,
        logger: logging.Logger,
        commitment: str = "confirmed",
        timeout_seconds: float = 15.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        confirm_timeout_seconds: float = 60.0,
        confirm_poll_interval_seconds: float = 1.0,
    ) -> None:
        if commitment not in COMMITMENT_RANK:
            raise ValueError(f"Unsupported commitment: {commitment}")
        self.name = name
        self._rpc_url = rpc_url
        self._logger = logger
        self._commitment = commitment
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._confirm_poll_interval_seconds = max(0.0, confirm_poll_interval_seconds)
        self._http_session: aiohttp.ClientSession | None = None
        self._request_id = 0

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError(f"RPC URL for {self.name} is required.")
        if self._http_session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._http_session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def healthcheck(self) -> None:
        await self.fetch_latest_blockhash()

    async def _post(self, method: str, params: list[Any]) -> Any:
        if self._http_session is None:
            await self.connect()
        if self._http_session is None:
            raise RuntimeError(f"{self.name} RPC HTTP session is not initialized.")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            async with self._http_session.post(self._rpc_url, json=payload) as response:
                status_code = response.status
                raw_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as error:
            raise LedgerConnectionError(
                method=method,
                message=f"{self.name} RPC {method} network error: {error!r}",
            ) from error

        if status_code in RETRYABLE_HTTP_STATUSES:
            raise LedgerConnectionError(
                method=method,
                status=status_code,
                message=f"{self.name} RPC {method} unavailable: status={status_code}",
            )

        try:
            body = json.loads(raw_text) if raw_text else None
        except json.JSONDecodeError as error:
            raise LedgerRpcError(
                method=method,
                status=status_code,
                message=f"{self.name} RPC {method} returned invalid JSON: status={status_code}",
            ) from error

        if status_code >= 400 and not (isinstance(body, dict) and body.get("error")):
            raise LedgerRpcError(
                method=method,
                status=status_code,
                data=body,
                message=f"{self.name} RPC {method} failed: status={status_code} body={body}",
            )

        if not isinstance(body, dict):
            raise LedgerRpcError(
                method=method,
                status=status_code,
                message=f"Invalid {self.name} RPC response for {method}: {body}",
            )

        error_payload = body.get("error")
        if error_payload:
            code = _to_int(error_payload.get("code")) if isinstance(error_payload, dict) else None
            data = error_payload.get("data") if isinstance(error_payload, dict) else None
            raise LedgerRpcError(
                method=method,
                status=status_code,
                code=code,
                data=data,
                message=f"{self.name} RPC error for {method}: {_error_payload_to_message(error_payload)}",
            )

        return body.get("result")

    async def _rpc_call(self, method: str, params: list[Any] | None = None) -> Any:
        return await retry_async(
            lambda: self._post(method, params or []),
            logger=self._logger,
            retry_on=(LedgerConnectionError,),
            max_attempts=self._max_attempts,
            base_backoff_seconds=self._retry_backoff_seconds,
            event="rpc_retry",
            message="RPC call failed with a connection error; retrying",
            ledger=self.name,
            method=method,
        )

    async def read_account(self, address: Pubkey) -> bytes:
        result = await self._rpc_call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        if not isinstance(result, dict):
            raise LedgerRpcError(
                method="getAccountInfo",
                message=f"Unexpected getAccountInfo response: {result}",
            )

        value = result.get("value")
        if value is None:
            raise AccountNotFoundError(str(address))

        data = value.get("data") if isinstance(value, dict) else None
        if not isinstance(data, list) or len(data) != 2 or data[1] != "base64":
            raise LedgerRpcError(
                method="getAccountInfo",
                message=f"Unexpected account data encoding for {address}: {data}",
            )

        try:
            return base64.b64decode(data[0], validate=True)
        except (binascii.Error, ValueError) as error:
            raise LedgerRpcError(
                method="getAccountInfo",
                message=f"Account data for {address} is not valid base64: {error}",
            ) from error

    async def fetch_latest_blockhash(self) -> tuple[Hash, int | None]:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self._commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise LedgerRpcError(
                method="getLatestBlockhash",
                message=f"Unexpected getLatestBlockhash payload: {result}",
            )

        blockhash = str(value.get("blockhash") or "").strip()
        if not blockhash:
            raise LedgerRpcError(
                method="getLatestBlockhash",
                message=f"Missing blockhash in RPC response: {result}",
            )
        last_valid_block_height = _to_int(value.get("lastValidBlockHeight"))
        return Hash.from_string(blockhash), last_valid_block_height

    async def submit(
        self,
        transaction: VersionedTransaction,
        *,
        last_valid_block_height: int | None = None,
    ) -> str:
        """Send ``transaction`` and wait until it reaches the client's commitment.

        Returns the transaction signature. Rejections, on-chain failures and
        expiry raise :class:`SubmissionError`.
        """
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        expected_signature = str(transaction.signatures[0]) if transaction.signatures else None

        try:
            result = await self._rpc_call(
                "sendTransaction",
                [
                    encoded,
                    {
                        "encoding": "base64",
                        "skipPreflight": False,
                        "preflightCommitment": self._commitment,
                    },
                ],
            )
        except LedgerConnectionError:
            raise
        except LedgerRpcError as error:
            data = error.data if isinstance(error.data, dict) else {}
            logs = data.get("logs") if isinstance(data.get("logs"), list) else []
            raise SubmissionError(
                message=f"{self.name} rejected transaction: {error}",
                signature=expected_signature,
                program_error_code=extract_program_error_code(data.get("err")),
                code=error.code,
                data=error.data,
                logs=[str(line) for line in logs],
            ) from error

        signature = str(result or expected_signature or "").strip()
        if not signature:
            raise SubmissionError(message=f"{self.name} sendTransaction returned no signature")

        log_event(
            self._logger,
            level="info",
            event="transaction_sent",
            message="Transaction sent; waiting for confirmation",
            ledger=self.name,
            tx_signature=signature,
        )
        await self._wait_for_confirmation(signature, last_valid_block_height=last_valid_block_height)
        return signature

    async def _wait_for_confirmation(
        self,
        signature: str,
        *,
        last_valid_block_height: int | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout_seconds
        target_rank = COMMITMENT_RANK[self._commitment]

        while True:
            result = await self._rpc_call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            statuses = result.get("value") if isinstance(result, dict) else None
            status = statuses[0] if isinstance(statuses, list) and statuses else None

            if isinstance(status, dict):
                err = status.get("err")
                if err:
                    raise SubmissionError(
                        message=f"{self.name} transaction {signature} failed: {err}",
                        signature=signature,
                        program_error_code=extract_program_error_code(err),
                        data=err,
                    )
                reached = COMMITMENT_RANK.get(str(status.get("confirmationStatus") or ""), -1)
                if reached >= target_rank:
                    return
            elif last_valid_block_height is not None:
                block_height = _to_int(
                    await self._rpc_call("getBlockHeight", [{"commitment": self._commitment}])
                )
                if block_height is not None and block_height > last_valid_block_height:
                    raise SubmissionError(
                        message=(
                            f"{self.name} transaction {signature} expired: block height "
                            f"{block_height} exceeded {last_valid_block_height}"
                        ),
                        signature=signature,
                    )

            if loop.time() >= deadline:
                raise SubmissionError(
                    message=(
                        f"{self.name} transaction {signature} not confirmed within "
                        f"{self._confirm_timeout_seconds}s"
                    ),
                    signature=signature,
                )
            await asyncio.sleep(self._confirm_poll_interval_seconds)
