from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from solders.pubkey import Pubkey

U64_MAX = (1 << 64) - 1

RelayPhase = Literal[
    "idle",
    "fetching_source_counter",
    "fetching_destination_counter",
    "no_work",
    "draining",
    "sleeping",
]
RelayStatus = Literal["relayed", "skipped_missing"]


@dataclass(slots=True, frozen=True)
class WatchedCounterState:
    counter: int


@dataclass(slots=True, frozen=True)
class DestinationCounterState:
    source_mirror_counter: int
    destination_counter: int


@dataclass(slots=True, frozen=True)
class TransferDescriptor:
    destination_address: Pubkey
    amount: int


@dataclass(slots=True, frozen=True)
class DerivedAddress:
    address: Pubkey
    bump: int


@dataclass(slots=True)
class RelayProgress:
    last_seen_destination_counter: int | None = None

    def observe(self, counter: int) -> int | None:
        """Store ``counter`` and return the previous value when it changed."""
        previous = self.last_seen_destination_counter
        if previous == counter:
            return None
        self.last_seen_destination_counter = counter
        return previous if previous is not None else 0


@dataclass(slots=True, frozen=True)
class RelayResult:
    counter: int
    status: RelayStatus
    descriptor_address: str
    tx_signature: str | None = None
    amount: int | None = None
    destination_address: str | None = None


@dataclass(slots=True)
class TickReport:
    source_counter: int
    mirror_counter: int
    destination_counter: int
    results: list[RelayResult] = field(default_factory=list)

    @property
    def pending(self) -> range:
        return range(self.mirror_counter, max(self.mirror_counter, self.source_counter))

    def relayed(self) -> list[int]:
        return [result.counter for result in self.results if result.status == "relayed"]

    def skipped(self) -> list[int]:
        return [result.counter for result in self.results if result.status == "skipped_missing"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_counter": self.source_counter,
            "mirror_counter": self.mirror_counter,
            "destination_counter": self.destination_counter,
            "pending_count": len(self.pending),
            "relayed": self.relayed(),
            "skipped": self.skipped(),
            "tx_signatures": [result.tx_signature for result in self.results if result.tx_signature],
        }
