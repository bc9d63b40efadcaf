from __future__ import annotations

from typing import Any


class FinanceError(Exception):
    """Engine error carrying a stable numeric code and a symbolic type.

    Module-level instances below are templates: call one to get a fresh
    exception, optionally with details, e.g. ``raise AccountNotFound()`` or
    ``raise InsufficientFunds(required=..., available=...)``.
    """

    def __init__(
        self,
        code: int,
        error_type: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.type = error_type
        self.message = message
        self.details = dict(details or {})

    def __call__(self, **details: Any) -> "FinanceError":
        return FinanceError(self.code, self.type, self.message, details or None)

    def is_(self, other: "FinanceError") -> bool:
        return self.code == other.code

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "type": self.type,
            "message": self.message,
        }
        if self.details:
            payload["details"] = {key: str(value) for key, value in self.details.items()}
        return payload

    def __repr__(self) -> str:
        return f"FinanceError(code={self.code}, type={self.type!r}, message={self.message!r})"


STATUS_BY_TYPE: dict[str, int] = {
    "VALIDATION": 400,
    "BAD_REQUEST": 400,
    "ACCOUNT_REQUIRED": 400,
    "INSUFFICIENT_FUNDS": 400,
    "UNAUTHORIZED": 401,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "TXN_IMMUTABLE": 409,
}


def status_for_type(error_type: str) -> int:
    return STATUS_BY_TYPE.get(error_type, 500)


AccountNotFound = FinanceError(-5000, "NOT_FOUND", "Account not found")
TransactionNotFound = FinanceError(-5001, "NOT_FOUND", "Transaction not found")
BudgetNotFound = FinanceError(-5002, "NOT_FOUND", "Budget not found")
DebtNotFound = FinanceError(-5003, "NOT_FOUND", "Debt not found")
InvalidFinanceData = FinanceError(-5004, "VALIDATION", "Invalid finance data")
CounterpartyNotFound = FinanceError(-5005, "NOT_FOUND", "Counterparty not found")
DebtPaymentNotFound = FinanceError(-5006, "NOT_FOUND", "Debt payment not found")
FXRateNotFound = FinanceError(-5007, "NOT_FOUND", "FX rate not found")
CounterpartyNameTooShort = FinanceError(
    -5011, "VALIDATION", "Counterparty name must be at least 2 characters"
)
InvalidDebtDirection = FinanceError(
    -5012, "VALIDATION", "Direction must be 'i_owe' or 'they_owe_me'"
)
CounterpartyHasDebts = FinanceError(
    -5013, "CONFLICT", "Cannot delete counterparty that has linked debts"
)
InvalidDueDateRange = FinanceError(
    -5015, "VALIDATION", "Due date must be on or after start date"
)
InvalidDebtAmount = FinanceError(
    -5016, "VALIDATION", "Principal amount must be greater than 0"
)
PrincipalCurrencyRequired = FinanceError(
    -5019, "VALIDATION", "principalCurrency is required"
)
InvalidTransactionDate = FinanceError(-5021, "VALIDATION", "date must be YYYY-MM-DD")
AccountRequired = FinanceError(
    -5022, "ACCOUNT_REQUIRED", "Please create an account first"
)
InsufficientFunds = FinanceError(-5024, "INSUFFICIENT_FUNDS", "Insufficient funds")
TransactionImmutable = FinanceError(
    -5025, "TXN_IMMUTABLE", "Transaction cannot be modified"
)
InvalidAmount = FinanceError(-5026, "VALIDATION", "Invalid amount")
InvalidCurrency = FinanceError(-5027, "VALIDATION", "Invalid currency")
DebtPaymentImmutable = FinanceError(
    -5029, "TXN_IMMUTABLE", "Debt payment cannot be modified"
)

MissingUserIdentity = FinanceError(-4001, "UNAUTHORIZED", "Missing user identity")

InternalServerError = FinanceError(-9000, "INTERNAL", "Internal server error")
DatabaseError = FinanceError(-9001, "INTERNAL", "Database error")
