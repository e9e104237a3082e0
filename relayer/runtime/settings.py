from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from relayer.ledger import ConfigError, IdentifierParseError, KeyLoadError

DEFAULT_CONFIG_FILENAME = "config.toml"

# Config-file key -> environment override.
REQUIRED_FIELDS = {
    "l1_url": "RELAYER_L1_URL",
    "l2_url": "RELAYER_L2_URL",
    "watched_account": "RELAYER_WATCHED_ACCOUNT",
    "wallet_path": "RELAYER_WALLET_PATH",
    "l1_program_id": "RELAYER_L1_PROGRAM_ID",
    "l2_program_id": "RELAYER_L2_PROGRAM_ID",
    "nonce_account": "RELAYER_NONCE_ACCOUNT",
}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def normalize_commitment(value: str) -> str:
    commitment = (value or "").strip().lower()
    if commitment in {"processed", "confirmed", "finalized"}:
        return commitment
    return "confirmed"


def expand_home(path: str, environ: Mapping[str, str]) -> str:
    if not path.startswith("~"):
        return path
    home = environ.get("HOME")
    if not home:
        raise ConfigError("Failed to get HOME environment variable")
    return home + path[1:]


def parse_pubkey(field: str, value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value.strip())
    except Exception as error:
        raise IdentifierParseError(field, value, str(error)) from error


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as error:
        raise ConfigError(f"Configuration file {path} is not valid TOML: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read configuration file {path}: {error}") from error


@dataclass(slots=True, frozen=True)
class RelayerIdentities:
    watched_account: Pubkey
    l1_program_id: Pubkey
    l2_program_id: Pubkey
    nonce_account: Pubkey


@dataclass(slots=True)
class RelayerSettings:
    l1_url: str
    l2_url: str
    watched_account: str
    wallet_path: str
    l1_program_id: str
    l2_program_id: str
    nonce_account: str
    poll_interval_seconds: float = 60.0
    error_backoff_seconds: float = 5.0
    max_error_backoff_seconds: float = 300.0
    rpc_timeout_seconds: float = 15.0
    rpc_max_attempts: int = 3
    rpc_retry_backoff_seconds: float = 0.5
    confirm_timeout_seconds: float = 60.0
    confirm_poll_interval_seconds: float = 1.0
    commitment: str = "confirmed"
    log_level: str = "INFO"

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> "RelayerSettings":
        """Build settings from ``config.toml`` and the environment.

        Environment variables take precedence over the file. The file may be
        absent only when every required field is set in the environment.
        """
        env = os.environ if environ is None else environ
        path = Path(config_path or env.get("RELAYER_CONFIG_PATH") or Path.cwd() / DEFAULT_CONFIG_FILENAME)

        file_values: dict[str, Any] = {}
        if path.exists():
            file_values = _read_config_file(path)

        values: dict[str, str] = {}
        missing: list[str] = []
        for key, env_name in REQUIRED_FIELDS.items():
            raw = env.get(env_name)
            if raw is None or not raw.strip():
                raw = file_values.get(key)
            if raw is None or not str(raw).strip():
                missing.append(key)
                continue
            values[key] = str(raw).strip()

        if missing:
            if not path.exists():
                raise ConfigError(f"Configuration file not found: {path}")
            raise ConfigError(f"Missing configuration fields in {path}: {', '.join(missing)}")

        values["wallet_path"] = expand_home(values["wallet_path"], env)

        return cls(
            **values,
            poll_interval_seconds=max(1.0, to_float(env.get("POLL_INTERVAL_SECONDS"), 60.0)),
            error_backoff_seconds=max(0.5, to_float(env.get("ERROR_BACKOFF_SECONDS"), 5.0)),
            max_error_backoff_seconds=max(1.0, to_float(env.get("MAX_ERROR_BACKOFF_SECONDS"), 300.0)),
            rpc_timeout_seconds=max(1.0, to_float(env.get("RPC_TIMEOUT_SECONDS"), 15.0)),
            rpc_max_attempts=max(1, to_int(env.get("RPC_MAX_ATTEMPTS"), 3)),
            rpc_retry_backoff_seconds=max(0.0, to_float(env.get("RPC_RETRY_BACKOFF_SECONDS"), 0.5)),
            confirm_timeout_seconds=max(5.0, to_float(env.get("CONFIRM_TIMEOUT_SECONDS"), 60.0)),
            confirm_poll_interval_seconds=max(
                0.25,
                to_float(env.get("CONFIRM_POLL_INTERVAL_SECONDS"), 1.0),
            ),
            commitment=normalize_commitment(env.get("COMMITMENT", "confirmed")),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )

    def identities(self) -> RelayerIdentities:
        return RelayerIdentities(
            watched_account=parse_pubkey("watched account", self.watched_account),
            l1_program_id=parse_pubkey("L1 program", self.l1_program_id),
            l2_program_id=parse_pubkey("L2 program", self.l2_program_id),
            nonce_account=parse_pubkey("nonce account", self.nonce_account),
        )


def load_keypair(path: str | Path) -> Keypair:
    """Read a signing key: a Solana CLI JSON byte array or a base58 secret."""
    try:
        raw = Path(path).read_text(encoding="utf-8").strip()
    except OSError as error:
        raise KeyLoadError(f"Failed to read keypair file {path}: {error}") from error

    try:
        if raw.startswith("["):
            arr = json.loads(raw)
            if not isinstance(arr, list):
                raise ValueError("keypair JSON must be an integer array")
            return Keypair.from_bytes(bytes(arr))
        return Keypair.from_base58_string(raw)
    except Exception as error:
        raise KeyLoadError(f"Failed to parse keypair file {path}: {error}") from error
