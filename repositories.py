from typing import Dict, Iterator, NamedTuple, Optional, Set, Tuple
from decimal import Decimal

from errors import TransactionAlreadyExistsError
from models import Account


class StoredTransaction(NamedTuple):
    client: int
    amount: Decimal


class AccountLedger:
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get(self, client_id: int) -> Optional[Account]:
        """Get account. Returns None if the client never transacted."""
        return self.accounts.get(client_id)

    def add(self, client_id: int, account: Account) -> None:
        """Register a new account for a client."""
        if client_id in self.accounts:
            raise ValueError(f"Account for client {client_id} already exists")
        self.accounts[client_id] = account

    def items(self) -> Iterator[Tuple[int, Account]]:
        return iter(self.accounts.items())

    def __contains__(self, client_id: int) -> bool:
        return client_id in self.accounts

    def __len__(self) -> int:
        return len(self.accounts)


class TransactionStore:
    """Append-only record of transaction ids.

    Deposits are kept with their owner and amount so they can be disputed
    later. Withdrawals only consume their id.
    """

    def __init__(self):
        self.transactions: Dict[int, StoredTransaction] = {}
        self.used_ids: Set[int] = set()

    def insert(self, tx_id: int, client_id: int, amount: Decimal) -> None:
        """Store a disputable transaction."""
        if self.contains(tx_id):
            raise TransactionAlreadyExistsError(tx_id)
        self.transactions[tx_id] = StoredTransaction(client_id, amount)

    def mark_used(self, tx_id: int) -> None:
        """Consume an id without keeping it for disputes."""
        if self.contains(tx_id):
            raise TransactionAlreadyExistsError(tx_id)
        self.used_ids.add(tx_id)

    def get(self, tx_id: int) -> Optional[StoredTransaction]:
        return self.transactions.get(tx_id)

    def contains(self, tx_id: int) -> bool:
        return tx_id in self.transactions or tx_id in self.used_ids

    def __len__(self) -> int:
        return len(self.transactions) + len(self.used_ids)


class DisputeTracker:
    def __init__(self):
        self.disputed: Set[int] = set()

    def insert(self, tx_id: int) -> None:
        if tx_id in self.disputed:
            raise ValueError(f"Transaction {tx_id} is already disputed")
        self.disputed.add(tx_id)

    def contains(self, tx_id: int) -> bool:
        return tx_id in self.disputed

    def remove(self, tx_id: int) -> None:
        self.disputed.remove(tx_id)

    def __len__(self) -> int:
        return len(self.disputed)
