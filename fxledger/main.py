from datetime import date
from decimal import Decimal

import structlog
from fastapi import Body, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fxledger import errors
from fxledger.config import load_settings
from fxledger.engine import FinanceEngine, engine_from_settings
from fxledger.logging_config import configure_logging
from fxledger.models import Account, Budget, Counterparty, Debt, DebtPayment, FXRate, Transaction
from fxledger.summary import FinanceSummary, normalize_account_filter

settings = load_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

OptionalDate = date | None

finance: FinanceEngine | None = None


def get_finance() -> FinanceEngine:
    global finance
    if finance is None:
        finance = engine_from_settings(settings)
    return finance


@app.on_event("startup")
def init_engine() -> None:
    get_finance()


@app.exception_handler(errors.FinanceError)
async def handle_finance_error(request: Request, exc: errors.FinanceError) -> JSONResponse:
    status_code = errors.status_for_type(exc.type)
    if status_code >= 500:
        logger.error("finance_request_failed", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_request_error", path=request.url.path)
    return JSONResponse(
        status_code=500, content={"error": errors.InternalServerError().to_dict()}
    )


def get_user_id(x_user_id: str | None) -> str:
    if not x_user_id or not x_user_id.strip():
        raise errors.MissingUserIdentity()
    return x_user_id.strip()


class AccountPayload(BaseModel):
    name: str
    account_type: str
    currency: str
    initial_balance: Decimal = Decimal("0")


class AccountUpdatePayload(BaseModel):
    name: str
    account_type: str
    currency: str | None = None
    show_status: str | None = None


class AccountPatchPayload(BaseModel):
    name: str | None = None
    account_type: str | None = None
    currency: str | None = None
    show_status: str | None = None


class BalanceDriftResponse(BaseModel):
    account_id: str
    recorded_balance: Decimal
    computed_balance: Decimal
    drift: Decimal


class BalancePointResponse(BaseModel):
    date: date
    change: Decimal
    balance: Decimal


class BalanceHistoryResponse(BaseModel):
    account_id: str
    currency: str
    opening_balance: Decimal
    points: list[BalancePointResponse]


class TransactionPayload(BaseModel):
    type: str
    amount: Decimal
    account_id: str | None = None
    from_account_id: str | None = None
    to_account_id: str | None = None
    currency: str | None = None
    to_amount: Decimal | None = None
    date: OptionalDate = None
    base_currency: str | None = None
    category_id: str | None = None
    budget_id: str | None = None
    debt_id: str | None = None
    goal_id: str | None = None
    habit_id: str | None = None
    counterparty_id: str | None = None
    original_currency: str | None = None
    original_amount: Decimal | None = None
    conversion_rate: Decimal | None = None
    description: str | None = None
    skip_budget_matching: bool = False


class TransactionBatchPayload(BaseModel):
    items: list[TransactionPayload]


class BudgetPayload(BaseModel):
    name: str
    currency: str
    limit_amount: Decimal = Decimal("0")
    period_type: str = "none"
    start_date: date | None = None
    end_date: date | None = None
    account_ids: list[str] | None = None
    category_ids: list[str] | None = None
    transaction_type: str | None = None
    linked_goal_id: str | None = None


class BudgetPatchPayload(BaseModel):
    name: str | None = None
    currency: str | None = None
    limit_amount: Decimal | None = None
    period_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    account_ids: list[str] | None = None
    category_ids: list[str] | None = None
    transaction_type: str | None = None
    linked_goal_id: str | None = None
    show_status: str | None = None


class BudgetAddValuePayload(BaseModel):
    account_id: str
    amount: Decimal
    amount_currency: str | None = None
    note: str | None = None
    date: OptionalDate = None
    category_id: str | None = None


class CategorySpendResponse(BaseModel):
    category_id: str | None = None
    amount: Decimal


class CounterpartyPayload(BaseModel):
    display_name: str
    phone_number: str | None = None
    comment: str | None = None
    search_keywords: str | None = None


class CounterpartyPatchPayload(BaseModel):
    display_name: str | None = None
    phone_number: str | None = None
    comment: str | None = None
    search_keywords: str | None = None
    show_status: str | None = None


class InlineCounterpartyPayload(BaseModel):
    display_name: str
    phone_number: str | None = None
    comment: str | None = None


class DebtPayload(BaseModel):
    direction: str
    principal_amount: Decimal
    principal_currency: str | None = None
    start_date: date | None = None
    base_currency: str | None = None
    name: str | None = None
    counterparty_id: str | None = None
    inline_counterparty: InlineCounterpartyPayload | None = None
    counterparty_name: str | None = None
    description: str | None = None
    due_date: date | None = None
    repayment_currency: str | None = None
    rate_on_start: Decimal | None = None
    repayment_rate_on_start: Decimal | None = None
    exchange_rate_current: Decimal | None = None
    funding_account_id: str | None = None


class DebtUpdatePayload(BaseModel):
    name: str | None = None
    counterparty_id: str | None = None
    counterparty_name: str | None = None
    description: str | None = None
    due_date: date | None = None
    exchange_rate_current: Decimal | None = None
    show_status: str | None = None


class DebtRepayPayload(BaseModel):
    account_id: str
    amount: Decimal
    amount_currency: str | None = None
    date: OptionalDate = None
    applied_rate: Decimal | None = None
    note: str | None = None


class DebtAddValuePayload(BaseModel):
    account_id: str
    amount: Decimal
    amount_currency: str | None = None
    date: OptionalDate = None
    note: str | None = None


class DebtExtendPayload(BaseModel):
    due_date: date


class FXRatePayload(BaseModel):
    rate_date: date
    from_currency: str
    to_currency: str
    rate: Decimal | None = None
    rate_mid: Decimal | None = None
    rate_ask: Decimal | None = None
    rate_bid: Decimal | None = None
    nominal: Decimal | None = None
    source: str | None = None


class FXResolveResponse(BaseModel):
    from_currency: str
    to_currency: str
    date: date
    rate: Decimal


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/accounts", response_model=list[Account])
def list_accounts(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[Account]:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.list_accounts(user_id)


@app.get("/accounts/{account_id}", response_model=Account)
def get_account(account_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> Account:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.get_account(user_id, account_id)


@app.post("/accounts", response_model=Account)
def create_account(
    payload: AccountPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Account:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.create_account(
        user_id,
        name=payload.name,
        account_type=payload.account_type,
        currency=payload.currency,
        initial_balance=payload.initial_balance,
    )


@app.put("/accounts/{account_id}", response_model=Account)
def update_account(
    account_id: str,
    payload: AccountUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Account:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.update_account(
        user_id,
        account_id,
        name=payload.name,
        account_type=payload.account_type,
        currency=payload.currency,
        show_status=payload.show_status,
    )


@app.patch("/accounts/{account_id}", response_model=Account)
def patch_account(
    account_id: str,
    payload: AccountPatchPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Account:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.patch_account(
        user_id, account_id, payload.model_dump(exclude_unset=True)
    )


@app.delete("/accounts/{account_id}")
def delete_account(account_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    withdrawal = get_finance().ledger.delete_account(user_id, account_id)
    return {
        "status": "deleted",
        "withdrawal_transaction_id": withdrawal.id if withdrawal else None,
    }


@app.get("/accounts/{account_id}/drift", response_model=BalanceDriftResponse)
def account_drift(
    account_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BalanceDriftResponse:
    user_id = get_user_id(x_user_id)
    result = get_finance().ledger.balance_drift(user_id, account_id)
    return BalanceDriftResponse(
        account_id=result.account_id,
        recorded_balance=result.recorded_balance,
        computed_balance=result.computed_balance,
        drift=result.drift,
    )


@app.get("/accounts/{account_id}/balance-history", response_model=BalanceHistoryResponse)
def account_balance_history(
    account_id: str,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BalanceHistoryResponse:
    user_id = get_user_id(x_user_id)
    history = get_finance().ledger.balance_history(user_id, account_id, date_from, date_to)
    return BalanceHistoryResponse(
        account_id=history.account_id,
        currency=history.currency,
        opening_balance=history.opening_balance,
        points=[
            BalancePointResponse(date=point.date, change=point.change, balance=point.balance)
            for point in history.points
        ],
    )


@app.get("/transactions", response_model=list[Transaction])
def list_transactions(
    account_id: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[Transaction]:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.list_transactions(user_id, account_id=account_id)


@app.get("/transactions/{transaction_id}", response_model=Transaction)
def get_transaction(
    transaction_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Transaction:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.get_transaction(user_id, transaction_id)


@app.post("/transactions", response_model=Transaction)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Transaction:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.create_transaction(user_id, **payload.model_dump())


@app.post("/transactions/bulk", response_model=list[Transaction])
def create_transactions_bulk(
    payload: TransactionBatchPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[Transaction]:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.create_transactions(
        user_id, [item.model_dump() for item in payload.items]
    )


@app.put("/transactions/{transaction_id}", response_model=Transaction)
def update_transaction(
    transaction_id: str,
    payload: dict | None = Body(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Transaction:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.update_transaction(user_id, transaction_id, payload)


@app.patch("/transactions/{transaction_id}", response_model=Transaction)
def patch_transaction(
    transaction_id: str,
    payload: dict | None = Body(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Transaction:
    user_id = get_user_id(x_user_id)
    return get_finance().ledger.patch_transaction(user_id, transaction_id, payload)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    get_finance().ledger.delete_transaction(user_id, transaction_id)
    return {"status": "deleted"}


@app.get("/budgets", response_model=list[Budget])
def list_budgets(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[Budget]:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.list_budgets(user_id)


@app.get("/budgets/{budget_id}", response_model=Budget)
def get_budget(budget_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> Budget:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.get_budget(user_id, budget_id)


@app.post("/budgets", response_model=Budget)
def create_budget(
    payload: BudgetPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Budget:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.create_budget(user_id, **payload.model_dump())


@app.put("/budgets/{budget_id}", response_model=Budget)
def update_budget(
    budget_id: str,
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Budget:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.update_budget(user_id, budget_id, **payload.model_dump())


@app.patch("/budgets/{budget_id}", response_model=Budget)
def patch_budget(
    budget_id: str,
    payload: BudgetPatchPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Budget:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.patch_budget(
        user_id, budget_id, payload.model_dump(exclude_unset=True)
    )


@app.delete("/budgets/{budget_id}")
def delete_budget(budget_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    get_finance().budgets.delete_budget(user_id, budget_id)
    return {"status": "deleted"}


@app.get("/budgets/{budget_id}/transactions", response_model=list[Transaction])
def budget_transactions(
    budget_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[Transaction]:
    user_id = get_user_id(x_user_id)
    return get_finance().budgets.budget_transactions(user_id, budget_id)


@app.get("/budgets/{budget_id}/spending", response_model=list[CategorySpendResponse])
def budget_spending(
    budget_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[CategorySpendResponse]:
    user_id = get_user_id(x_user_id)
    return [
        CategorySpendResponse(category_id=item.category_id, amount=item.amount)
        for item in get_finance().budgets.spending(user_id, budget_id)
    ]


@app.post("/budgets/{budget_id}/add-value")
def add_budget_value(
    budget_id: str,
    payload: BudgetAddValuePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    result = get_finance().budgets.add_value(
        user_id,
        budget_id,
        account_id=payload.account_id,
        amount=payload.amount,
        amount_currency=payload.amount_currency,
        date=payload.date,
        note=payload.note,
        category_id=payload.category_id,
    )
    return {
        "budget": result.budget,
        "transaction": result.transaction,
        "account": result.account,
    }


@app.get("/debts", response_model=list[Debt])
def list_debts(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[Debt]:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.list_debts(user_id)


@app.get("/debts/{debt_id}", response_model=Debt)
def get_debt(debt_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> Debt:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.get_debt(user_id, debt_id)


@app.post("/debts", response_model=Debt)
def create_debt(payload: DebtPayload, x_user_id: str | None = Header(None, alias="x-user-id")) -> Debt:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.create_debt(user_id, **payload.model_dump())


@app.put("/debts/{debt_id}", response_model=Debt)
def update_debt(
    debt_id: str,
    payload: DebtUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Debt:
    user_id = get_user_id(x_user_id)
    fields = payload.model_dump()
    if fields.get("show_status") is None:
        fields.pop("show_status")
    return get_finance().debts.update_debt(user_id, debt_id, **fields)


@app.patch("/debts/{debt_id}", response_model=Debt)
def patch_debt(
    debt_id: str,
    payload: DebtUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Debt:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.patch_debt(user_id, debt_id, payload.model_dump(exclude_unset=True))


@app.delete("/debts/{debt_id}")
def delete_debt(debt_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    get_finance().debts.delete_debt(user_id, debt_id)
    return {"status": "deleted"}


@app.get("/debts/{debt_id}/payments", response_model=list[DebtPayment])
def list_debt_payments(
    debt_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[DebtPayment]:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.list_payments(user_id, debt_id)


@app.get("/debts/{debt_id}/payments/{payment_id}", response_model=DebtPayment)
def get_debt_payment(
    debt_id: str, payment_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> DebtPayment:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.get_payment(user_id, debt_id, payment_id)


@app.put("/debts/{debt_id}/payments/{payment_id}", response_model=DebtPayment)
def update_debt_payment(
    debt_id: str,
    payment_id: str,
    payload: dict | None = Body(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DebtPayment:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.update_payment(user_id, debt_id, payment_id, payload)


@app.delete("/debts/{debt_id}/payments/{payment_id}")
def delete_debt_payment(
    debt_id: str, payment_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    get_finance().debts.delete_payment(user_id, debt_id, payment_id)
    return {"status": "deleted"}


@app.post("/debts/{debt_id}/repay")
def repay_debt(
    debt_id: str,
    payload: DebtRepayPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    result = get_finance().debts.repay(
        user_id,
        debt_id,
        account_id=payload.account_id,
        amount=payload.amount,
        amount_currency=payload.amount_currency,
        date=payload.date,
        applied_rate=payload.applied_rate,
        note=payload.note,
    )
    return {
        "debt": result.debt,
        "payment": result.payment,
        "transaction": result.transaction,
    }


@app.post("/debts/{debt_id}/add-value")
def add_debt_value(
    debt_id: str,
    payload: DebtAddValuePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    result = get_finance().debts.add_value(
        user_id,
        debt_id,
        account_id=payload.account_id,
        amount=payload.amount,
        amount_currency=payload.amount_currency,
        date=payload.date,
        note=payload.note,
    )
    return {"debt": result.debt, "transaction": result.transaction}


@app.post("/debts/{debt_id}/settle", response_model=Debt)
def settle_debt(debt_id: str, x_user_id: str | None = Header(None, alias="x-user-id")) -> Debt:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.settle(user_id, debt_id)


@app.post("/debts/{debt_id}/extend", response_model=Debt)
def extend_debt(
    debt_id: str,
    payload: DebtExtendPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Debt:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.extend(user_id, debt_id, payload.due_date)


@app.get("/counterparties", response_model=list[Counterparty])
def list_counterparties(
    search: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[Counterparty]:
    user_id = get_user_id(x_user_id)
    return get_finance().counterparties.list_counterparties(user_id, search)


@app.get("/counterparties/{counterparty_id}", response_model=Counterparty)
def get_counterparty(
    counterparty_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Counterparty:
    user_id = get_user_id(x_user_id)
    return get_finance().counterparties.get_counterparty(user_id, counterparty_id)


@app.post("/counterparties", response_model=Counterparty)
def create_counterparty(
    payload: CounterpartyPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> Counterparty:
    user_id = get_user_id(x_user_id)
    return get_finance().counterparties.create_counterparty(user_id, **payload.model_dump())


@app.patch("/counterparties/{counterparty_id}", response_model=Counterparty)
def patch_counterparty(
    counterparty_id: str,
    payload: CounterpartyPatchPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Counterparty:
    user_id = get_user_id(x_user_id)
    return get_finance().counterparties.patch_counterparty(
        user_id, counterparty_id, payload.model_dump(exclude_unset=True)
    )


@app.delete("/counterparties/{counterparty_id}")
def delete_counterparty(
    counterparty_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    get_finance().counterparties.delete_counterparty(user_id, counterparty_id)
    return {"id": counterparty_id, "status": "deleted"}


@app.get("/counterparties/{counterparty_id}/debts", response_model=list[Debt])
def counterparty_debts(
    counterparty_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[Debt]:
    user_id = get_user_id(x_user_id)
    return get_finance().debts.counterparty_debts(user_id, counterparty_id)


@app.get("/counterparties/{counterparty_id}/transactions", response_model=list[Transaction])
def counterparty_transactions(
    counterparty_id: str, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[Transaction]:
    user_id = get_user_id(x_user_id)
    return get_finance().counterparties.counterparty_transactions(user_id, counterparty_id)


@app.get("/fx-rates", response_model=list[FXRate])
def list_fx_rates(
    from_currency: str | None = Query(None),
    to_currency: str | None = Query(None),
    rate_date: date | None = Query(None),
) -> list[FXRate]:
    return get_finance().ledger.list_fx_rates(from_currency, to_currency, rate_date)


@app.get("/fx-rates/resolve", response_model=FXResolveResponse)
def resolve_fx_rate(
    from_currency: str = Query(...),
    to_currency: str = Query(...),
    rate_date: date | None = Query(None),
) -> FXResolveResponse:
    ledger = get_finance().ledger
    on_date = rate_date or ledger.today()
    rate = ledger.resolve_rate(from_currency, to_currency, on_date)
    return FXResolveResponse(
        from_currency=from_currency.strip().upper(),
        to_currency=to_currency.strip().upper(),
        date=on_date,
        rate=rate,
    )


@app.get("/fx-rates/{rate_id}", response_model=FXRate)
def get_fx_rate(rate_id: str) -> FXRate:
    return get_finance().ledger.get_fx_rate(rate_id)


@app.post("/fx-rates", response_model=FXRate)
def create_fx_rate(payload: FXRatePayload) -> FXRate:
    return get_finance().ledger.create_fx_rate(**payload.model_dump())


@app.get("/finance/summary", response_model=FinanceSummary)
def finance_summary(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    base_currency: str | None = Query(None),
    account_ids: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FinanceSummary:
    user_id = get_user_id(x_user_id)
    return get_finance().summaries.summary(
        user_id,
        date_from=date_from,
        date_to=date_to,
        base_currency=base_currency,
        account_ids=normalize_account_filter(account_ids),
    )


@app.get("/finance/bootstrap")
def finance_bootstrap(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    base_currency: str | None = Query(None),
    account_ids: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    result = get_finance().summaries.bootstrap(
        user_id,
        date_from=date_from,
        date_to=date_to,
        base_currency=base_currency,
        account_ids=normalize_account_filter(account_ids),
    )
    return {
        "accounts": result.accounts,
        "budgets": result.budgets,
        "debts": result.debts,
        "counterparties": result.counterparties,
        "summary": result.summary,
    }
