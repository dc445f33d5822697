from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db, init_db
from models import (
    Account,
    BalanceAdjustment,
    Budget,
    Debt,
    Goal,
    RecurringRule,
    Transaction,
    TransactionType,
    User,
)
from periods import Period, resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    AmountIn,
    BudgetIn,
    DebtIn,
    DebtUpdateIn,
    GoalIn,
    GoalUpdateIn,
    PreferencesIn,
    RecurringRuleIn,
    RecurringRuleUpdateIn,
    RuleActiveIn,
    SalaryAllocationIn,
    TransactionIn,
    TransferIn,
    UserIn,
)
from services import (
    AccountService,
    BudgetProgress,
    BudgetService,
    DebtService,
    GoalAllocation,
    GoalService,
    NotFoundError,
    ReconciliationService,
    RecurringRuleService,
    SalaryService,
    TransactionFilters,
    TransactionService,
    UserService,
)

app = FastAPI(title="Personal Finance Ledger")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from exc
    try:
        return UserService(db).get(user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=401, detail="Unknown user") from exc


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    type_param = request.query_params.get("type")
    account_param = request.query_params.get("account_id")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError:
            txn_type = None
    account_id = None
    if account_param:
        try:
            account_id = int(account_param)
        except ValueError:
            account_id = None
    return TransactionFilters(
        type=txn_type,
        category=request.query_params.get("category") or None,
        account_id=account_id,
        query=request.query_params.get("q") or None,
    )


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def user_out(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "currency": user.currency,
        "cash_cents": user.cash_cents,
    }


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "kind": account.kind.value,
        "name": account.name,
        "display_name": account.display_name,
        "initial_balance_cents": account.initial_balance_cents,
        "balance_cents": account.balance_cents,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "occurred_at": txn.occurred_at.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category": txn.category,
        "note": txn.note,
        "account_id": txn.account_id,
        "origin_rule_id": txn.origin_rule_id,
        "occurrence_date": _iso(txn.occurrence_date),
        "system_generated": txn.is_system_generated,
    }


def rule_out(rule: RecurringRule) -> dict[str, object]:
    return {
        "id": rule.id,
        "type": rule.type.value,
        "amount_cents": rule.amount_cents,
        "category": rule.category,
        "note": rule.note,
        "frequency": rule.frequency.value,
        "start_date": rule.start_date.isoformat(),
        "next_occurrence": rule.next_occurrence.isoformat(),
        "end_date": _iso(rule.end_date),
        "active": rule.active,
        "account_id": rule.account_id,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category,
        "limit_cents": budget.limit_cents,
        "month": budget.month,
        "year": budget.year,
    }


def progress_out(item: BudgetProgress) -> dict[str, object]:
    return {
        "budget_id": item.budget_id,
        "category": item.category,
        "limit_cents": item.limit_cents,
        "spent_cents": item.spent_cents,
        "remaining_cents": item.remaining_cents,
        "percent_used": item.percent_used,
    }


def goal_out(goal: Goal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target_cents": goal.target_cents,
        "current_cents": goal.current_cents,
        "deadline": _iso(goal.deadline),
        "position": goal.position,
    }


def allocation_out(item: GoalAllocation) -> dict[str, object]:
    return {
        "goal_id": item.goal_id,
        "name": item.name,
        "target_cents": item.target_cents,
        "current_cents": item.current_cents,
        "allocated_cents": item.allocated_cents,
        "funded_cents": item.funded_cents,
        "needed_cents": item.needed_cents,
    }


def debt_out(debt: Debt) -> dict[str, object]:
    return {
        "id": debt.id,
        "name": debt.name,
        "amount_cents": debt.amount_cents,
        "paid_cents": debt.paid_cents,
        "remaining_cents": max(0, debt.amount_cents - debt.paid_cents),
        "interest_rate": debt.interest_rate,
        "due_date": _iso(debt.due_date),
        "notes": debt.notes,
        "status": debt.status.value,
    }


def adjustment_out(adjustment: BalanceAdjustment) -> dict[str, object]:
    return {
        "id": adjustment.id,
        "account_id": adjustment.account_id,
        "transaction_id": adjustment.transaction_id,
        "delta_cents": adjustment.delta_cents,
        "reason": adjustment.reason,
        "attempts": adjustment.attempts,
        "last_error": adjustment.last_error,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/users", status_code=201)
def register_user(data: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    accounts = AccountService(db, user.id).list_all()
    payload = user_out(user)
    payload["accounts"] = [account_out(a) for a in accounts]
    return payload


@app.get("/api/me")
def read_me(user: User = Depends(current_user)):
    return user_out(user)


@app.patch("/api/me")
def update_me(
    data: PreferencesIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        updated = UserService(db).update_preferences(user.id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return user_out(updated)


@app.get("/api/accounts")
def list_accounts(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db, user.id).list_all()]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_out(account)


@app.post("/api/accounts/transfer", status_code=201)
def transfer_between_accounts(
    data: TransferIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        outgoing, incoming = AccountService(db, user.id).transfer(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"out": transaction_out(outgoing), "in": transaction_out(incoming)}


@app.get("/api/accounts/{account_id}")
def read_account(
    account_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = AccountService(db, user.id)
    try:
        account = service.get(account_id)
        expected = service.expected_balance(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    payload = account_out(account)
    payload["expected_balance_cents"] = expected
    return payload


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user.id).update(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_out(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        AccountService(db, user.id).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/accounts/{account_id}/rebuild")
def rebuild_account_balance(
    account_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    service = AccountService(db, user.id)
    try:
        drift = service.rebuild_balance(account_id)
        account = service.get(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    payload = account_out(account)
    payload["drift_cents"] = drift
    return payload


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    filters = filters_from_request(request)
    try:
        page = max(int(request.query_params.get("page", "1")), 1)
        limit = min(max(int(request.query_params.get("limit", "50")), 1), 100)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    offset = (page - 1) * limit
    items = TransactionService(db, user.id).list(
        period, filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    items = items[:limit]
    return {
        "items": [transaction_out(txn) for txn in items],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.get("/api/transactions/summary")
def transaction_summary(
    request: Request,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return TransactionService(db, user.id).summary(period)


@app.get("/api/transactions/top-categories")
def top_categories(
    month: Optional[int] = None,
    year: Optional[int] = None,
    limit: int = 3,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    month, year = _month_and_year(month, year)
    try:
        return TransactionService(db, user.id).top_categories(month, year, limit)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/transactions/net-trend")
def net_trend(
    months: int = 6,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user.id).net_trend(months)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/transactions/{transaction_id}")
def read_transaction(
    transaction_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user.id).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user.id).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user.id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring")
def list_recurring(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [rule_out(r) for r in RecurringRuleService(db, user.id).list()]


@app.post("/api/recurring", status_code=201)
def create_recurring(
    data: RecurringRuleIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        rule = RecurringRuleService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return rule_out(rule)


@app.post("/api/recurring/process")
def process_recurring(user: User = Depends(current_user), db: Session = Depends(get_db)):
    result = RecurringRuleService(db, user.id).process_due()
    return {
        "processed": result.processed,
        "skipped": result.skipped,
        "errors": result.errors,
    }


@app.patch("/api/recurring/{rule_id}")
def update_recurring(
    rule_id: int,
    data: RecurringRuleUpdateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        rule = RecurringRuleService(db, user.id).update(rule_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return rule_out(rule)


@app.post("/api/recurring/{rule_id}/toggle")
def toggle_recurring(
    rule_id: int,
    data: RuleActiveIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        rule = RecurringRuleService(db, user.id).toggle(rule_id, data.active)
    except ValueError as exc:
        raise http_error(exc) from exc
    return rule_out(rule)


@app.delete("/api/recurring/{rule_id}", status_code=204)
def delete_recurring(
    rule_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        RecurringRuleService(db, user.id).delete(rule_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def _month_and_year(month: Optional[int], year: Optional[int]) -> tuple[int, int]:
    today = local_today()
    month = month or today.month
    year = year or today.year
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    return month, year


@app.get("/api/budgets")
def list_budgets(
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    month, year = _month_and_year(month, year)
    return [budget_out(b) for b in BudgetService(db, user.id).list_for_month(month, year)]


@app.post("/api/budgets")
def upsert_budget(
    data: BudgetIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user.id).upsert(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.get("/api/budgets/progress")
def budget_progress(
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    month, year = _month_and_year(month, year)
    items = BudgetService(db, user.id).get_progress(month, year)
    return [progress_out(item) for item in items]


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user.id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/goals")
def list_goals(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [goal_out(g) for g in GoalService(db, user.id).list_all()]


@app.post("/api/goals", status_code=201)
def create_goal(
    data: GoalIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return goal_out(goal)


@app.get("/api/goals/allocations")
def goal_allocations(user: User = Depends(current_user), db: Session = Depends(get_db)):
    service = GoalService(db, user.id)
    return {
        "pool_cents": service.savings_pool(),
        "allocations": [allocation_out(a) for a in service.get_allocations()],
    }


@app.patch("/api/goals/{goal_id}")
def update_goal(
    goal_id: int,
    data: GoalUpdateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user.id).update(goal_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return goal_out(goal)


@app.post("/api/goals/{goal_id}/add")
def add_goal_funds(
    goal_id: int,
    data: AmountIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user.id).add_funds(goal_id, data.amount_cents)
    except ValueError as exc:
        raise http_error(exc) from exc
    return goal_out(goal)


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        GoalService(db, user.id).delete(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/debts")
def list_debts(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [debt_out(d) for d in DebtService(db, user.id).list_all()]


@app.post("/api/debts", status_code=201)
def create_debt(
    data: DebtIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        debt = DebtService(db, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_out(debt)


@app.get("/api/debts/{debt_id}")
def read_debt(
    debt_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        debt = DebtService(db, user.id).get(debt_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_out(debt)


@app.patch("/api/debts/{debt_id}")
def update_debt(
    debt_id: int,
    data: DebtUpdateIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        debt = DebtService(db, user.id).update(debt_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_out(debt)


@app.post("/api/debts/{debt_id}/pay")
def pay_debt(
    debt_id: int,
    data: AmountIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        debt = DebtService(db, user.id).pay(debt_id, data.amount_cents)
    except ValueError as exc:
        raise http_error(exc) from exc
    return debt_out(debt)


@app.delete("/api/debts/{debt_id}", status_code=204)
def delete_debt(
    debt_id: int,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        DebtService(db, user.id).delete(debt_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/salary/allocate")
def allocate_salary(
    data: SalaryAllocationIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    try:
        split, posted = SalaryService(db, user.id).allocate(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "needs_cents": split.needs_cents,
        "savings_cents": split.savings_cents,
        "wants_cents": split.wants_cents,
        "transactions": [transaction_out(txn) for txn in posted],
    }


@app.get("/api/reconciliation/pending")
def pending_adjustments(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return [adjustment_out(a) for a in ReconciliationService(db, user.id).pending()]


@app.post("/api/reconciliation/retry")
def retry_adjustments(user: User = Depends(current_user), db: Session = Depends(get_db)):
    result = ReconciliationService(db, user.id).retry()
    return {"applied": result.applied, "pending": result.pending}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
