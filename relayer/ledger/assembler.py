from __future__ import annotations

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction

from .codec import encode_relay_instruction


class TransactionAssembler:
    def __init__(self, *, program_id: Pubkey, counter_account: Pubkey) -> None:
        self.program_id = program_id
        self.counter_account = counter_account

    def build_instruction(
        self,
        *,
        amount: int,
        counter: int,
        destination_address: Pubkey,
        signer_pubkey: Pubkey,
    ) -> Instruction:
        # Account order is part of the destination program's interface.
        accounts = [
            AccountMeta(pubkey=self.counter_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=signer_pubkey, is_signer=True, is_writable=True),
            AccountMeta(pubkey=destination_address, is_signer=False, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        return Instruction(self.program_id, encode_relay_instruction(amount, counter), accounts)

    def assemble(
        self,
        *,
        amount: int,
        counter: int,
        destination_address: Pubkey,
        signer: Keypair,
        recent_blockhash: Hash,
    ) -> VersionedTransaction:
        instruction = self.build_instruction(
            amount=amount,
            counter=counter,
            destination_address=destination_address,
            signer_pubkey=signer.pubkey(),
        )
        message = MessageV0.try_compile(signer.pubkey(), [instruction], [], recent_blockhash)
        return VersionedTransaction(message, [signer])
