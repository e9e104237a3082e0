from __future__ import annotations

from typing import Any


class RelayerError(RuntimeError):
    pass


class ConfigError(RelayerError):
    pass


class IdentifierParseError(ConfigError):
    def __init__(self, field: str, value: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid {field} identifier '{value}'{detail}")
        self.field = field
        self.value = value


class KeyLoadError(ConfigError):
    pass


class DerivationError(RelayerError):
    pass


class DecodeError(RelayerError):
    def __init__(
        self,
        layout: str,
        *,
        expected: int | None = None,
        actual: int | None = None,
        detail: str = "",
    ) -> None:
        message = (
            f"Invalid {layout} data length: expected at least {expected} bytes, got {actual}"
            if not detail
            else f"Invalid {layout} data: {detail}"
        )
        super().__init__(message)
        self.layout = layout
        self.expected = expected
        self.actual = actual


class AccountNotFoundError(RelayerError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Account not found: {address}")
        self.address = address


class LedgerRpcError(RelayerError):
    def __init__(
        self,
        *,
        method: str,
        message: str,
        status: int | None = None,
        code: int | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.data = data


class LedgerConnectionError(LedgerRpcError):
    """Transport failure; safe to retry."""


class SubmissionError(LedgerRpcError):
    def __init__(
        self,
        *,
        message: str,
        signature: str | None = None,
        program_error_code: int | None = None,
        code: int | None = None,
        data: Any = None,
        logs: list[str] | None = None,
    ) -> None:
        super().__init__(method="sendTransaction", message=message, code=code, data=data)
        self.signature = signature
        self.program_error_code = program_error_code
        self.logs = logs or []


class FatalRelayError(RelayerError):
    """Raised when the relay loop must stop and the process exit non-zero."""


class LeaseLostError(RelayerError):
    """The relay lease expired or moved to another relayer mid-batch."""
