from typing import Optional


class PaymentsError(Exception):
    """Base class for every rejected transaction."""

    error_code = "PAYMENTS_ERROR"
    status_code = 400

    def __init__(self, message: str, tx: Optional[int] = None, client: Optional[int] = None):
        super().__init__(message)
        self.tx = tx
        self.client = client


# Account-level rejections

class AccountError(PaymentsError):
    error_code = "ACCOUNT_ERROR"


class NegativeAmountError(AccountError):
    error_code = "NEGATIVE_AMOUNT"
    status_code = 422

    def __init__(self, amount=None):
        super().__init__("Negative amount")
        self.amount = amount


class InsufficientBalanceError(AccountError):
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, available=None, requested=None):
        super().__init__("Insufficient available funds for withdrawal")
        self.available = available
        self.requested = requested


class AccountLockedError(AccountError):
    error_code = "ACCOUNT_LOCKED"
    status_code = 423

    def __init__(self):
        super().__init__("Account is locked")


# Engine-level rejections

class EngineError(PaymentsError):
    error_code = "ENGINE_ERROR"


class ClientNotFoundError(EngineError):
    error_code = "CLIENT_NOT_FOUND"
    status_code = 404

    def __init__(self, client: int):
        super().__init__(f"Client {client} not found", client=client)


class TransactionNotFoundError(EngineError):
    error_code = "TRANSACTION_NOT_FOUND"
    status_code = 404

    def __init__(self, tx: int):
        super().__init__(f"Transaction not found: {tx}", tx=tx)


class TransactionAlreadyExistsError(EngineError):
    error_code = "TRANSACTION_ALREADY_EXISTS"
    status_code = 409

    def __init__(self, tx: int):
        super().__init__(f"Transaction already exists: {tx}", tx=tx)


class TransactionAlreadyDisputedError(EngineError):
    error_code = "TRANSACTION_ALREADY_DISPUTED"
    status_code = 409

    def __init__(self, tx: int):
        super().__init__(f"Transaction disputed already: {tx}", tx=tx)


class TransactionNotDisputedError(EngineError):
    error_code = "TRANSACTION_NOT_DISPUTED"
    status_code = 409

    def __init__(self, tx: int):
        super().__init__(f"Transaction not disputed: {tx}", tx=tx)


class NotClientOwnedTransactionError(EngineError):
    error_code = "NOT_CLIENT_OWNED_TRANSACTION"
    status_code = 403

    def __init__(self, tx: int, client: int):
        super().__init__(
            f"Transaction with ID '{tx}' is not owned by the client {client}",
            tx=tx,
            client=client,
        )


class InvalidLedgerError(EngineError):
    """A deposit or withdrawal reached the engine without an amount."""

    error_code = "INVALID_LEDGER"
    status_code = 422

    def __init__(self, tx: int):
        super().__init__(f"InvalidLedger: {tx}", tx=tx)
