"""
Stamp, sign, submit and confirm transactions.

Each transaction moves through

    unstamped -> stamped -> signed -> submitted -> confirmed | failed

and every stage checks both the state and the transaction kind:

* legacy / versioned: built from an UnsignedTransaction, compiled into a
  ``Message`` or ``MessageV0`` when stamped;
* compiled: a solders ``Transaction`` / ``VersionedTransaction`` handed in
  already signed, so it can only be submitted;
* serialized: raw wire bytes, submit-only as well.

Retries distinguish two kinds of failure. A TransportError (including
OperationTimeout) is retried up to ``max_retries`` failed attempts, then
SubmissionExhausted is raised. A non-null error in the confirmation result
means the ledger rejected the transaction: LedgerRejection is raised at once
and nothing is resent.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence, TypeVar, Union

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from .builder import UnsignedTransaction
from .concurrency import first_success, race_timer
from .config import COMMITMENT_RANK
from .errors import (
    ConfigurationError,
    EmptyInstructionList,
    InvalidTransactionState,
    LedgerRejection,
    MissingFeePayer,
    SigningError,
    SubmissionExhausted,
    TransportError,
)
from .ledger import Confirmation
from .log import get_logger
from .manager import ConnectionManager

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionKind(str, Enum):
    LEGACY = "legacy"
    VERSIONED = "versioned"
    SERIALIZED = "serialized"


class TransactionState(str, Enum):
    UNSTAMPED = "unstamped"
    STAMPED = "stamped"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Wallet(Protocol):
    """External wallet. Either call may return None when the user declines."""

    async def sign_transaction(
        self, tx: Union[Transaction, VersionedTransaction]
    ) -> Optional[Union[Transaction, VersionedTransaction]]: ...

    async def sign_all_transactions(
        self, txs: list[Union[Transaction, VersionedTransaction]]
    ) -> Optional[list[Union[Transaction, VersionedTransaction]]]: ...


@dataclass(frozen=True)
class SubmissionAttempt:
    endpoint: Optional[str]
    attempt: int
    outcome: str  # "signature" | "transport_error" | "ledger_rejection"
    error: Optional[BaseException] = None


@dataclass(eq=False)
class PreparedTransaction:
    kind: TransactionKind
    state: TransactionState
    instructions: tuple[Instruction, ...] = ()
    message: Union[Message, MessageV0, None] = None
    transaction: Union[Transaction, VersionedTransaction, None] = None
    raw: Optional[bytes] = None
    fee_payer: Optional[Pubkey] = None
    blockhash: Optional[Hash] = None
    last_valid_block_height: Optional[int] = None
    commitment: Optional[str] = None
    signature: Optional[Signature] = None
    sent_to: list[str] = field(default_factory=list)
    raced: bool = False

    @classmethod
    def from_unsigned(cls, unsigned: UnsignedTransaction, versioned: bool = False) -> "PreparedTransaction":
        kind = TransactionKind.VERSIONED if versioned else TransactionKind.LEGACY
        return cls(kind=kind, state=TransactionState.UNSTAMPED, instructions=unsigned.instructions)

    @classmethod
    def from_transaction(cls, tx: Union[Transaction, VersionedTransaction]) -> "PreparedTransaction":
        kind = TransactionKind.VERSIONED if isinstance(tx, VersionedTransaction) else TransactionKind.LEGACY
        return cls(
            kind=kind,
            state=TransactionState.SIGNED,
            message=tx.message,
            transaction=tx,
            signature=tx.signatures[0],
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "PreparedTransaction":
        return cls(kind=TransactionKind.SERIALIZED, state=TransactionState.SIGNED, raw=bytes(raw))

    def serialize(self) -> bytes:
        if self.kind is TransactionKind.SERIALIZED:
            return self.raw
        if self.transaction is None:
            raise InvalidTransactionState("Transaction has not been signed")
        return bytes(self.transaction)


class TransactionPipeline:
    def __init__(
        self,
        manager: ConnectionManager,
        *,
        fee_payer: Optional[Pubkey] = None,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_delay: float = 0.5,
    ):
        self._manager = manager
        self.fee_payer = fee_payer
        self.commitment = commitment or manager.commitment
        self.max_retries = max_retries if max_retries is not None else manager.config.max_retries
        self.timeout = timeout if timeout is not None else manager.config.submission_timeout
        self.retry_delay = retry_delay

        if self.commitment not in COMMITMENT_RANK:
            raise ConfigurationError(f"Invalid commitment: {self.commitment}")
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be at least 1, got {self.max_retries}")

    def prepare(
        self,
        tx: Union[PreparedTransaction, UnsignedTransaction, Transaction, VersionedTransaction, bytes],
        versioned: bool = False,
    ) -> PreparedTransaction:
        if isinstance(tx, PreparedTransaction):
            return tx
        if isinstance(tx, UnsignedTransaction):
            return PreparedTransaction.from_unsigned(tx, versioned)
        if isinstance(tx, (Transaction, VersionedTransaction)):
            return PreparedTransaction.from_transaction(tx)
        if isinstance(tx, (bytes, bytearray)):
            return PreparedTransaction.from_bytes(tx)
        raise ValueError("Transaction must be an UnsignedTransaction, a compiled transaction or bytes")

    async def stamp(self, prepared: PreparedTransaction, fee_payer: Optional[Pubkey] = None) -> PreparedTransaction:
        """Attach the latest blockhash and the fee payer."""
        if prepared.kind is TransactionKind.SERIALIZED:
            raise InvalidTransactionState("Cannot set blockhash for already serialized transaction")
        self._expect(prepared, TransactionState.UNSTAMPED, "stamp")
        if not prepared.instructions:
            raise EmptyInstructionList("Transaction has no instructions")

        payer = fee_payer or self.fee_payer
        if payer is None:
            raise MissingFeePayer("Fee payer must be defined")

        client = self._manager.get_cached()
        latest = await race_timer(client.get_latest_blockhash(self.commitment), self.timeout, client.endpoint)

        instructions = list(prepared.instructions)
        if prepared.kind is TransactionKind.VERSIONED:
            prepared.message = MessageV0.try_compile(payer, instructions, [], latest.blockhash)
        else:
            prepared.message = Message.new_with_blockhash(instructions, payer, latest.blockhash)

        prepared.fee_payer = payer
        prepared.blockhash = latest.blockhash
        prepared.last_valid_block_height = latest.last_valid_block_height
        prepared.commitment = self.commitment
        prepared.state = TransactionState.STAMPED
        logger.debug("blockhash: %s", latest.blockhash)
        logger.debug("fee payer: %s", payer)
        return prepared

    async def sign(
        self,
        prepared: PreparedTransaction,
        signers: Optional[Sequence[Keypair]] = None,
        wallet: Optional[Wallet] = None,
    ) -> PreparedTransaction:
        """Sign with keypairs, or with a wallet when one is given."""
        self._expect(prepared, TransactionState.STAMPED, "sign")
        if not signers and wallet is None:
            raise SigningError("No wallet or signers provided")

        if wallet is not None:
            signed = await wallet.sign_transaction(self._unsigned(prepared))
            if signed is None:
                raise SigningError("Wallet did not return a signed transaction")
        elif prepared.kind is TransactionKind.VERSIONED:
            signed = VersionedTransaction(prepared.message, list(signers))
        else:
            signed = Transaction(list(signers), prepared.message, prepared.blockhash)

        self._mark_signed(prepared, signed)
        return prepared

    async def sign_all(self, prepared: Sequence[PreparedTransaction], wallet: Wallet) -> list[PreparedTransaction]:
        """Ask a wallet to sign several stamped transactions in one call."""
        for item in prepared:
            self._expect(item, TransactionState.STAMPED, "sign")

        signed = await wallet.sign_all_transactions([self._unsigned(item) for item in prepared])
        if signed is None or len(signed) != len(prepared):
            raise SigningError("Wallet did not return every signed transaction")

        for item, tx in zip(prepared, signed):
            self._mark_signed(item, tx)
        return list(prepared)

    async def submit(
        self,
        prepared: PreparedTransaction,
        race: bool = False,
        skip_preflight: bool = False,
    ) -> Signature:
        """Send the signed transaction.

        With ``race`` the bytes go to every configured endpoint at once and the
        first successful answer wins; the other sends are left to finish on
        their own. Resending the same signed transaction is harmless.
        """
        self._expect(prepared, TransactionState.SIGNED, "submit")
        return await self._submit(prepared, race, skip_preflight)

    async def confirm(
        self,
        prepared: PreparedTransaction,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
        raced: Optional[bool] = None,
    ) -> Signature:
        """Poll until the transaction is confirmed.

        A raced send is checked on every endpoint that received it; otherwise
        only the endpoint it was sent to is asked.
        """
        self._expect(prepared, TransactionState.SUBMITTED, "confirm")
        commitment = self._confirmation_commitment(prepared, commitment)
        raced = prepared.raced if raced is None else raced

        await self._with_retries(
            lambda: self._confirm_once(prepared, self._confirmation_endpoints(prepared, raced), commitment),
            prepared,
            max_retries,
            "Confirmation",
        )
        prepared.state = TransactionState.CONFIRMED
        return prepared.signature

    async def send_and_confirm(
        self,
        prepared: PreparedTransaction,
        race: bool = False,
        skip_preflight: bool = False,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Signature:
        """Send then confirm, retrying both together on transport failures."""
        if prepared.state not in (TransactionState.SIGNED, TransactionState.SUBMITTED):
            raise InvalidTransactionState(f"Cannot send a transaction in state {prepared.state.value}")
        commitment = self._confirmation_commitment(prepared, commitment)

        async def attempt() -> Confirmation:
            await self._submit(prepared, race, skip_preflight)
            return await self._confirm_once(prepared, self._confirmation_endpoints(prepared, race), commitment)

        confirmation = await self._with_retries(attempt, prepared, max_retries, "Transaction")
        logger.debug("Confirmed %s in slot %s", confirmation.signature, confirmation.slot)
        prepared.state = TransactionState.CONFIRMED
        return prepared.signature

    async def execute(
        self,
        tx: Union[PreparedTransaction, UnsignedTransaction, Transaction, VersionedTransaction, bytes],
        signers: Optional[Sequence[Keypair]] = None,
        wallet: Optional[Wallet] = None,
        fee_payer: Optional[Pubkey] = None,
        race: bool = False,
        skip_preflight: bool = False,
        confirm: bool = True,
        versioned: bool = False,
        commitment: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Signature:
        """Run whatever stages the transaction still needs."""
        prepared = self.prepare(tx, versioned)
        if prepared.state is TransactionState.UNSTAMPED:
            await self.stamp(prepared, fee_payer)
        if prepared.state is TransactionState.STAMPED:
            await self.sign(prepared, signers, wallet)

        if not confirm:
            return await self.submit(prepared, race, skip_preflight)
        return await self.send_and_confirm(prepared, race, skip_preflight, commitment, max_retries)

    async def _submit(self, prepared: PreparedTransaction, race: bool, skip_preflight: bool) -> Signature:
        payload = prepared.serialize()
        if race:
            endpoints = self._manager.endpoints
            signature = await first_success(self._send(endpoint, payload, skip_preflight) for endpoint in endpoints)
        else:
            endpoints = [self._manager.get_cached().endpoint]
            signature = await self._send(endpoints[0], payload, skip_preflight)

        prepared.signature = signature
        prepared.sent_to = endpoints
        prepared.raced = race
        prepared.state = TransactionState.SUBMITTED
        return signature

    async def _send(self, endpoint: str, payload: bytes, skip_preflight: bool) -> Signature:
        client = self._manager.client_for(endpoint)
        return await race_timer(
            client.send_raw_transaction(payload, skip_preflight=skip_preflight, preflight_commitment=self.commitment),
            self.timeout,
            endpoint,
        )

    def _confirmation_endpoints(self, prepared: PreparedTransaction, raced: bool) -> list[str]:
        if not prepared.sent_to:
            return [self._manager.endpoint]
        if raced:
            return list(prepared.sent_to)
        return prepared.sent_to[:1]

    async def _confirm_once(
        self,
        prepared: PreparedTransaction,
        endpoints: Sequence[str],
        commitment: str,
    ) -> Confirmation:
        async def check(endpoint: str) -> Confirmation:
            client = self._manager.client_for(endpoint)
            result = await race_timer(
                client.confirm_transaction(prepared.signature, commitment, prepared.last_valid_block_height),
                self.timeout,
                endpoint,
            )
            if result.rejected:
                raise LedgerRejection(result.err, str(prepared.signature))
            return result

        return await first_success(check(endpoint) for endpoint in endpoints)

    async def _with_retries(
        self,
        operation: Callable[[], Awaitable[T]],
        prepared: PreparedTransaction,
        max_retries: Optional[int],
        action: str,
    ) -> T:
        limit = max_retries if max_retries is not None else self.max_retries
        if limit < 1:
            raise ConfigurationError(f"max_retries must be at least 1, got {limit}")
        failures = 0
        while True:
            try:
                result = await operation()
            except LedgerRejection as e:
                prepared.state = TransactionState.FAILED
                self._log_attempt(SubmissionAttempt(None, failures + 1, "ledger_rejection", e))
                logger.error("%s rejected on-chain, not retrying: %s", action, e.err)
                raise
            except TransportError as e:
                failures += 1
                self._log_attempt(SubmissionAttempt(e.endpoint, failures, "transport_error", e))
                if failures >= limit:
                    prepared.state = TransactionState.FAILED
                    logger.error("%s failed after %d tries", action, failures)
                    raise SubmissionExhausted(failures, e) from e
                logger.warning("%s attempt %d/%d failed, retrying... (%s)", action, failures, limit, e)
                await asyncio.sleep(self.retry_delay * failures)
            else:
                self._log_attempt(SubmissionAttempt(None, failures + 1, "signature"))
                return result

    def _confirmation_commitment(self, prepared: PreparedTransaction, commitment: Optional[str]) -> str:
        stamped_with = prepared.commitment or self.commitment
        commitment = commitment or stamped_with
        if commitment not in COMMITMENT_RANK:
            raise ConfigurationError(f"Invalid commitment: {commitment}")
        if COMMITMENT_RANK[commitment] < COMMITMENT_RANK[stamped_with]:
            raise ConfigurationError(
                f'Confirmation commitment "{commitment}" is laxer than the blockhash commitment "{stamped_with}"'
            )
        return commitment

    def _unsigned(self, prepared: PreparedTransaction) -> Union[Transaction, VersionedTransaction]:
        if prepared.kind is TransactionKind.VERSIONED:
            required = prepared.message.header.num_required_signatures
            return VersionedTransaction.populate(prepared.message, [Signature.default()] * required)
        return Transaction.new_unsigned(prepared.message)

    @staticmethod
    def _mark_signed(prepared: PreparedTransaction, tx: Union[Transaction, VersionedTransaction]) -> None:
        prepared.transaction = tx
        prepared.signature = tx.signatures[0]
        prepared.state = TransactionState.SIGNED

    @staticmethod
    def _expect(prepared: PreparedTransaction, state: TransactionState, action: str) -> None:
        if prepared.state is not state:
            raise InvalidTransactionState(f"Cannot {action} a transaction in state {prepared.state.value}")

    @staticmethod
    def _log_attempt(attempt: SubmissionAttempt) -> None:
        logger.debug("attempt %d via %s: %s", attempt.attempt, attempt.endpoint or "-", attempt.outcome)
