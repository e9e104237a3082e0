from __future__ import annotations

from solders.pubkey import Pubkey

from .errors import DerivationError
from .types import U64_MAX, DerivedAddress

DESCRIPTOR_SEED = b"nonce"


def descriptor_seeds(watched_account: Pubkey, counter: int) -> list[bytes]:
    if counter < 0 or counter > U64_MAX:
        raise ValueError(f"counter must fit in u64, got {counter}")
    return [DESCRIPTOR_SEED, bytes(watched_account), counter.to_bytes(8, "little")]


def derive(program_id: Pubkey, watched_account: Pubkey, counter: int) -> DerivedAddress:
    seeds = descriptor_seeds(watched_account, counter)
    try:
        address, bump = Pubkey.find_program_address(seeds, program_id)
    except Exception as error:
        raise DerivationError(
            f"No program address for counter {counter} under program {program_id}: {error}"
        ) from error
    return DerivedAddress(address=address, bump=bump)


class AddressDeriver:
    """Resolves the per-counter transfer descriptor accounts of one watched account."""

    def __init__(self, *, program_id: Pubkey, watched_account: Pubkey) -> None:
        self.program_id = program_id
        self.watched_account = watched_account

    def derive(self, counter: int) -> DerivedAddress:
        return derive(self.program_id, self.watched_account, counter)
