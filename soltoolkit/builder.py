"""
Accumulating builder for instruction lists.

    tx = (
        InstructionBuilder.create()
        .add_transfer(sender, recipient, 5_000)
        .add_memo("gm", sender)
        .add_compute_budget(200_000)
        .build()
    )

Compute-budget instructions are always inserted at the front of the list:
the runtime only honours them when they precede every other instruction.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Sequence, Union

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import TransferParams as SplTransferParams
from spl.token.instructions import create_associated_token_account, get_associated_token_address
from spl.token.instructions import transfer as spl_transfer

from .ledger import LedgerClient
from .log import get_logger

if TYPE_CHECKING:
    from .manager import ConnectionManager

logger = get_logger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

# Maximum serialized transaction size accepted by the cluster
PACKET_DATA_SIZE = 1232

# compact-u16 length prefix thresholds
_COMPACT_LOW = 0x7F
_COMPACT_HIGH = 0x3FFF


def compact_header(n: int) -> int:
    """Bytes taken by a compact-u16 length prefix."""
    return 1 if n <= _COMPACT_LOW else 2 if n <= _COMPACT_HIGH else 3


def compact_array_size(n: int, size: int) -> int:
    return compact_header(n) + n * size


@dataclass(frozen=True)
class UnsignedTransaction:
    """Ordered instructions with no blockhash and no fee payer."""

    instructions: tuple[Instruction, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)

    def serialize(self) -> bytes:
        return bytes(Message(list(self.instructions)))

    def estimate_size(self, fee_payer: Pubkey) -> int:
        """Serialized size in bytes once stamped and signed."""
        signers = {fee_payer}
        accounts = {fee_payer}
        instructions_size = 0

        for ix in self.instructions:
            for meta in ix.accounts:
                if meta.is_signer:
                    signers.add(meta.pubkey)
                accounts.add(meta.pubkey)
            accounts.add(ix.program_id)
            instructions_size += (
                1  # program id index
                + compact_array_size(len(ix.accounts), 1)
                + compact_array_size(len(ix.data), 1)
            )

        return (
            compact_array_size(len(signers), 64)  # signatures
            + 3  # message header
            + compact_array_size(len(accounts), 32)
            + 32  # blockhash
            + compact_header(len(self.instructions))
            + instructions_size
        )


class InstructionBuilder:
    def __init__(self):
        self._instructions: list[Instruction] = []

    @classmethod
    def create(cls) -> "InstructionBuilder":
        return cls()

    def __len__(self) -> int:
        return len(self._instructions)

    def add_transfer(self, sender: Pubkey, recipient: Pubkey, lamports: int) -> "InstructionBuilder":
        ix = transfer(TransferParams(from_pubkey=sender, to_pubkey=recipient, lamports=lamports))
        return self.add_raw(ix)

    def add_spl_transfer(
        self,
        source: Pubkey,
        dest: Pubkey,
        owner: Pubkey,
        amount: int,
        signers: Sequence[Pubkey] = (),
    ) -> "InstructionBuilder":
        ix = spl_transfer(
            SplTransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                dest=dest,
                owner=owner,
                amount=amount,
                signers=list(signers),
            )
        )
        return self.add_raw(ix)

    def add_memo(self, memo: str, signer: Pubkey) -> "InstructionBuilder":
        ix = Instruction(
            program_id=MEMO_PROGRAM_ID,
            data=memo.encode("utf-8"),
            accounts=[AccountMeta(pubkey=signer, is_signer=True, is_writable=True)],
        )
        return self.add_raw(ix)

    def add_compute_budget(self, units: int, micro_lamports: Optional[int] = None) -> "InstructionBuilder":
        """Prepend a compute-unit limit, and a unit price when given."""
        budget = [set_compute_unit_limit(units)]
        if micro_lamports is not None:
            budget.append(set_compute_unit_price(micro_lamports))
        self._instructions[:0] = budget
        self._log_count()
        return self

    async def add_create_account_if_missing(
        self,
        ledger: Union[LedgerClient, "ConnectionManager"],
        mint: Pubkey,
        owner: Pubkey,
        payer: Pubkey,
    ) -> "InstructionBuilder":
        """Append an associated token account creation if the account does not exist yet."""
        client = ledger.get_cached() if hasattr(ledger, "get_cached") else ledger
        associated = get_associated_token_address(owner, mint)
        info = await client.get_account_info(associated)
        if info is None:
            self.add_raw(create_associated_token_account(payer, owner, mint))
        else:
            logger.debug("Token account %s already exists", associated)
        return self

    def add_raw(self, instructions: Union[Instruction, Iterable[Instruction]]) -> "InstructionBuilder":
        if isinstance(instructions, Instruction):
            self._instructions.append(instructions)
        else:
            self._instructions.extend(instructions)
        self._log_count()
        return self

    def reset(self) -> "InstructionBuilder":
        self._instructions = []
        logger.debug("resetting builder")
        return self

    def build(self) -> UnsignedTransaction:
        self._log_count()
        return UnsignedTransaction(tuple(self._instructions))

    def _log_count(self) -> None:
        logger.debug("instruction count: %d", len(self._instructions))

