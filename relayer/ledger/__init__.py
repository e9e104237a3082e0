from .assembler import TransactionAssembler
from .client import LedgerClient, extract_program_error_code
from .codec import (
    RELAY_TRANSFER_DISCRIMINATOR,
    decode_counter_account,
    decode_relay_instruction,
    decode_transfer_descriptor,
    decode_watched_counter,
    encode_relay_instruction,
)
from .derivation import AddressDeriver, derive
from .errors import (
    AccountNotFoundError,
    ConfigError,
    DecodeError,
    DerivationError,
    FatalRelayError,
    IdentifierParseError,
    KeyLoadError,
    LedgerConnectionError,
    LeaseLostError,
    LedgerRpcError,
    RelayerError,
    SubmissionError,
)
from .types import (
    DerivedAddress,
    DestinationCounterState,
    RelayPhase,
    RelayProgress,
    RelayResult,
    TickReport,
    TransferDescriptor,
    WatchedCounterState,
)

__all__ = [
    "AccountNotFoundError",
    "AddressDeriver",
    "ConfigError",
    "DecodeError",
    "DerivationError",
    "DerivedAddress",
    "DestinationCounterState",
    "FatalRelayError",
    "IdentifierParseError",
    "KeyLoadError",
    "LedgerClient",
    "LedgerConnectionError",
    "LeaseLostError",
    "LedgerRpcError",
    "RELAY_TRANSFER_DISCRIMINATOR",
    "RelayPhase",
    "RelayProgress",
    "RelayResult",
    "RelayerError",
    "SubmissionError",
    "TickReport",
    "TransactionAssembler",
    "TransferDescriptor",
    "WatchedCounterState",
    "decode_counter_account",
    "decode_relay_instruction",
    "decode_transfer_descriptor",
    "decode_watched_counter",
    "derive",
    "encode_relay_instruction",
    "extract_program_error_code",
]
