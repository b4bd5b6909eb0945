from pydantic import BaseModel, Field, field_serializer, field_validator
from enum import Enum
from typing import Optional
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN

from errors import AccountLockedError, InsufficientBalanceError, NegativeAmountError

AMOUNT_PLACES = Decimal("0.0001")
ZERO = Decimal("0.0000")

MAX_CLIENT_ID = 65535
MAX_TRANSACTION_ID = 4294967295

# 16 integer digits plus 4 fractional stay exact in the default 28-digit context
MAX_AMOUNT = Decimal("1000000000000000")


def quantize_amount(value: Decimal) -> Decimal:
    """Round an amount to the four fractional digits the ledger works in."""
    return value.quantize(AMOUNT_PLACES, rounding=ROUND_HALF_EVEN)


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"

    @property
    def carries_amount(self) -> bool:
        return self in (TransactionType.deposit, TransactionType.withdrawal)


class TransactionRecord(BaseModel):
    type: TransactionType = Field(..., description="Transaction type")
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TRANSACTION_ID, description="Transaction identifier")
    amount: Optional[Decimal] = Field(
        default=None,
        ge=-MAX_AMOUNT,
        le=MAX_AMOUNT,
        description="Amount for deposits and withdrawals, rounded to 4 decimal places"
    )

    model_config = {"frozen": True}

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v):
        if v is None:
            return v
        try:
            return quantize_amount(v)
        except InvalidOperation:
            raise ValueError("amount cannot be represented with 4 decimal places")


class Account(BaseModel):
    """Balances of a single client.

    Every operation checks its preconditions before touching a field, so a
    rejected call leaves the account exactly as it was and
    ``total == available + held`` always holds.
    """

    available: Decimal = ZERO
    held: Decimal = ZERO
    total: Decimal = ZERO
    locked: bool = False

    def deposit(self, amount: Decimal) -> None:
        if amount < 0:
            raise NegativeAmountError(amount)
        if self.locked:
            raise AccountLockedError()
        self.available += amount
        self.total += amount

    def withdraw(self, amount: Decimal) -> None:
        if amount < 0:
            raise NegativeAmountError(amount)
        if self.locked:
            raise AccountLockedError()
        if self.available < amount:
            raise InsufficientBalanceError(self.available, amount)
        self.available -= amount
        self.total -= amount

    def dispute(self, amount: Decimal) -> None:
        # available may go negative when the funds were already withdrawn
        if self.locked:
            raise AccountLockedError()
        self.available -= amount
        self.held += amount

    def resolve(self, amount: Decimal) -> None:
        if self.locked:
            raise AccountLockedError()
        self.held -= amount
        self.available += amount

    def chargeback(self, amount: Decimal) -> None:
        self.held -= amount
        self.total -= amount
        self.locked = True


class AccountSnapshot(BaseModel):
    client: int
    available: Decimal
    held: Decimal
    total: Decimal
    locked: bool

    @classmethod
    def of(cls, client: int, account: Account) -> "AccountSnapshot":
        return cls(
            client=client,
            available=account.available,
            held=account.held,
            total=account.total,
            locked=account.locked,
        )

    @field_serializer('available', 'held', 'total')
    def format_amount(self, v: Decimal) -> str:
        return f"{v:.4f}"


class TransactionResponse(BaseModel):
    status: str = Field("processed", description="Transaction status")
    type: TransactionType = Field(..., description="Transaction type")
    tx: int = Field(..., description="Transaction identifier")
    account: AccountSnapshot = Field(..., description="Client account after the transaction")
    timestamp: datetime = Field(default_factory=datetime.now, description="Processing timestamp")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of accounts in the ledger")
    transactions_processed: int = Field(..., description="Transactions applied to the ledger")
    transactions_rejected: int = Field(..., description="Transactions rejected by the engine")
    open_disputes: int = Field(..., description="Transactions currently under dispute")
