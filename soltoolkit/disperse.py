"""
Spread lamports from one sender to many recipients.

Transfers are packed into as few transactions as the batch size and the
packet size limit allow. Each batch then runs through its own pipeline
execution, so every transaction gets its own blockhash; batches run
concurrently and in no particular order.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .builder import PACKET_DATA_SIZE, InstructionBuilder, UnsignedTransaction
from .errors import ConfigurationError, ToolkitError
from .log import get_logger
from .pipeline import TransactionPipeline, Wallet

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 18


@dataclass(frozen=True)
class Transfer:
    recipient: Pubkey
    lamports: int


@dataclass(frozen=True)
class DispatchResult:
    batch: int
    transfers: int
    signature: Optional[Signature] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Disperse:
    def __init__(
        self,
        sender: Pubkey,
        transfers: Sequence[Transfer],
        memo: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if not transfers:
            raise ConfigurationError("transfers must not be empty")
        if batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        self.sender = sender
        self.transfers = list(transfers)
        self.memo = memo
        self.batch_size = batch_size
        logger.debug("Disperse of %d transfers from %s", len(self.transfers), sender)

    @classmethod
    def fixed_amount(
        cls,
        sender: Pubkey,
        recipients: Sequence[Pubkey],
        lamports: int,
        **kwargs,
    ) -> "Disperse":
        if not recipients:
            raise ConfigurationError("recipients must be defined if a fixed amount is used")
        return cls(sender, [Transfer(recipient, lamports) for recipient in recipients], **kwargs)

    def batches(self) -> list[UnsignedTransaction]:
        """Pack transfers into transactions, closing each with the memo if one is set."""
        transactions: list[UnsignedTransaction] = []
        builder = InstructionBuilder.create()
        pending = 0

        for transfer in self.transfers:
            if pending and (pending >= self.batch_size or not self._fits(builder, transfer)):
                transactions.append(self._close(builder))
                builder.reset()
                pending = 0
            builder.add_transfer(self.sender, transfer.recipient, transfer.lamports)
            pending += 1

        transactions.append(self._close(builder))
        logger.debug("Created %d transactions for %d transfers", len(transactions), len(self.transfers))
        return transactions

    async def dispatch(
        self,
        pipeline: TransactionPipeline,
        signers: Optional[Sequence[Keypair]] = None,
        wallet: Optional[Wallet] = None,
        race: bool = False,
        concurrency: int = 8,
    ) -> list[DispatchResult]:
        """Execute every batch; failures are collected, not raised."""
        semaphore = asyncio.Semaphore(concurrency)
        batches = self.batches()

        async def run(index: int, tx: UnsignedTransaction) -> DispatchResult:
            transfers = len(tx) - (1 if self.memo else 0)
            async with semaphore:
                try:
                    signature = await pipeline.execute(
                        tx,
                        signers=signers,
                        wallet=wallet,
                        fee_payer=self.sender,
                        race=race,
                    )
                except ToolkitError as e:
                    logger.warning("Batch %d failed: %s", index, e)
                    return DispatchResult(index, transfers, error=e)
            logger.info("Batch %d confirmed: %s", index, signature)
            return DispatchResult(index, transfers, signature=signature)

        return list(await asyncio.gather(*(run(i, tx) for i, tx in enumerate(batches))))

    def _fits(self, builder: InstructionBuilder, transfer: Transfer) -> bool:
        trial = InstructionBuilder.create().add_raw(builder.build().instructions)
        trial.add_transfer(self.sender, transfer.recipient, transfer.lamports)
        if self.memo:
            trial.add_memo(self.memo, self.sender)
        return trial.build().estimate_size(self.sender) <= PACKET_DATA_SIZE

    def _close(self, builder: InstructionBuilder) -> UnsignedTransaction:
        if self.memo:
            builder.add_memo(self.memo, self.sender)
        return builder.build()
