import asyncio
from decimal import Decimal
from typing import Iterable, List, NamedTuple, Tuple
import structlog

from errors import (
    ClientNotFoundError,
    InvalidLedgerError,
    NotClientOwnedTransactionError,
    PaymentsError,
    TransactionAlreadyDisputedError,
    TransactionAlreadyExistsError,
    TransactionNotDisputedError,
    TransactionNotFoundError,
)
from models import Account, AccountSnapshot, TransactionRecord, TransactionType
from repositories import AccountLedger, DisputeTracker, TransactionStore

logger = structlog.get_logger()


class PaymentsEngine:
    """Applies transactions to the ledger, one at a time and in order.

    The engine owns the account ledger, the transaction store and the dispute
    tracker. Each handler runs every check before it mutates anything, so a
    transaction is either applied completely or rejected with no effect.
    Rejections are raised as ``PaymentsError`` subclasses.
    """

    _handlers = {
        TransactionType.deposit: "_handle_deposit",
        TransactionType.withdrawal: "_handle_withdrawal",
        TransactionType.dispute: "_handle_dispute",
        TransactionType.resolve: "_handle_resolve",
        TransactionType.chargeback: "_handle_chargeback",
    }

    def __init__(self):
        self.ledger = AccountLedger()
        self.store = TransactionStore()
        self.disputes = DisputeTracker()

    def handle(self, record: TransactionRecord) -> AccountSnapshot:
        handler = getattr(self, self._handlers[record.type])
        account = handler(record)

        logger.debug(
            "Transaction applied",
            type=record.type.value,
            client=record.client,
            tx=record.tx,
            available=str(account.available),
            held=str(account.held),
            total=str(account.total),
            locked=account.locked
        )

        return AccountSnapshot.of(record.client, account)

    def snapshot(self) -> List[AccountSnapshot]:
        return [
            AccountSnapshot.of(client_id, account)
            for client_id, account in sorted(self.ledger.items(), key=lambda item: item[0])
        ]

    def _get_or_create_account(self, client_id: int) -> Tuple[Account, bool]:
        account = self.ledger.get(client_id)
        if account is None:
            return Account(), True
        return account, False

    def _handle_deposit(self, record: TransactionRecord) -> Account:
        if self.store.contains(record.tx):
            raise TransactionAlreadyExistsError(record.tx)
        if record.amount is None:
            raise InvalidLedgerError(record.tx)

        account, created = self._get_or_create_account(record.client)
        account.deposit(record.amount)

        self.store.insert(record.tx, record.client, record.amount)
        if created:
            self.ledger.add(record.client, account)
        return account

    def _handle_withdrawal(self, record: TransactionRecord) -> Account:
        if self.store.contains(record.tx):
            raise TransactionAlreadyExistsError(record.tx)
        if record.amount is None:
            raise InvalidLedgerError(record.tx)

        account, created = self._get_or_create_account(record.client)
        account.withdraw(record.amount)

        self.store.mark_used(record.tx)
        if created:
            self.ledger.add(record.client, account)
        return account

    def _handle_dispute(self, record: TransactionRecord) -> Account:
        if self.disputes.contains(record.tx):
            raise TransactionAlreadyDisputedError(record.tx)

        account, amount = self._disputed_account(record)
        account.dispute(amount)

        self.disputes.insert(record.tx)
        return account

    def _handle_resolve(self, record: TransactionRecord) -> Account:
        if not self.disputes.contains(record.tx):
            raise TransactionNotDisputedError(record.tx)

        account, amount = self._disputed_account(record)
        account.resolve(amount)

        self.disputes.remove(record.tx)
        return account

    def _handle_chargeback(self, record: TransactionRecord) -> Account:
        if not self.disputes.contains(record.tx):
            raise TransactionNotDisputedError(record.tx)

        account, amount = self._disputed_account(record)
        account.chargeback(amount)

        self.disputes.remove(record.tx)
        return account

    def _disputed_account(self, record: TransactionRecord) -> Tuple[Account, Decimal]:
        """Look up the deposit a dispute, resolve or chargeback refers to."""
        stored = self.store.get(record.tx)
        if stored is None:
            raise TransactionNotFoundError(record.tx)
        if stored.client != record.client:
            raise NotClientOwnedTransactionError(record.tx, record.client)

        account = self.ledger.get(record.client)
        if account is None:
            raise ClientNotFoundError(record.client)
        return account, stored.amount


_unhandled = set(TransactionType) - set(PaymentsEngine._handlers)
if _unhandled:
    raise RuntimeError(f"PaymentsEngine has no handler for {sorted(t.value for t in _unhandled)}")


class ProcessingSummary(NamedTuple):
    processed: int
    rejected: int


class TransactionService:
    """Serializes access to one engine for concurrent producers.

    A single lock covers the ledger, the store and the dispute tracker
    together; they are never locked separately.
    """

    def __init__(self, engine: PaymentsEngine):
        self.engine = engine
        self.processed = 0
        self.rejected = 0
        self._lock = asyncio.Lock()

    async def process_transaction(self, record: TransactionRecord) -> AccountSnapshot:
        async with self._lock:
            try:
                snapshot = self.engine.handle(record)
            except PaymentsError as e:
                self.rejected += 1
                logger.warning(
                    "Transaction rejected",
                    type=record.type.value,
                    client=record.client,
                    tx=record.tx,
                    error_code=e.error_code,
                    reason=str(e)
                )
                raise
            self.processed += 1
            return snapshot

    async def process_stream(self, records: Iterable[TransactionRecord]) -> ProcessingSummary:
        """Apply records in order. Rejections are logged and skipped."""
        processed = rejected = 0
        for record in records:
            try:
                await self.process_transaction(record)
            except PaymentsError:
                rejected += 1
            else:
                processed += 1

        logger.info("Transaction stream processed", processed=processed, rejected=rejected)
        return ProcessingSummary(processed, rejected)

    async def snapshot(self) -> List[AccountSnapshot]:
        async with self._lock:
            return self.engine.snapshot()

    async def get_account(self, client_id: int) -> AccountSnapshot:
        async with self._lock:
            account = self.engine.ledger.get(client_id)
            if account is None:
                raise ClientNotFoundError(client_id)
            return AccountSnapshot.of(client_id, account)

    async def account_count(self) -> int:
        async with self._lock:
            return len(self.engine.ledger)

    async def open_disputes(self) -> int:
        async with self._lock:
            return len(self.engine.disputes)
