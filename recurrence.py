import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from balances import BalanceReconciler
from config import get_settings
from models import (
    RECURRING_NOTE_TAG,
    Frequency,
    RecurringRule,
    Transaction,
    normalize_category,
)


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def as_local_date(now: Union[datetime, date, None]) -> date:
    if now is None:
        return local_today()
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            return now.astimezone(ZoneInfo(get_settings().timezone)).date()
        return now.date()
    return now


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, anchor_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(anchor_day, days_in_month(year, month)))


def advance(frequency: Frequency, from_date: date, anchor_day: int) -> date:
    if frequency == Frequency.daily:
        return from_date + timedelta(days=1)
    if frequency == Frequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == Frequency.monthly:
        return add_months(from_date, 1, anchor_day=anchor_day)
    if frequency == Frequency.yearly:
        return add_months(from_date, 12, anchor_day=anchor_day)
    raise ValueError(f"Unsupported frequency: {frequency}")


def calculate_next_date(rule: RecurringRule, from_date: date) -> date:
    # Month-based schedules snap back to the start day once the month allows it,
    # so Jan 31 -> Feb 29 -> Mar 31 rather than drifting to the 29th.
    return advance(Frequency(rule.frequency), from_date, rule.start_date.day)


def first_occurrence_after(rule: RecurringRule, after: Optional[date]) -> date:
    candidate = rule.start_date
    if after is None:
        return candidate
    while candidate <= after:
        candidate = calculate_next_date(rule, candidate)
    return candidate


def recurring_note(note: Optional[str]) -> str:
    clean = (note or "").strip()
    if not clean:
        return RECURRING_NOTE_TAG
    if clean.endswith(RECURRING_NOTE_TAG):
        return clean
    return f"{clean} {RECURRING_NOTE_TAG}"


@dataclass
class ProcessResult:
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    rules: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RecurringEngine:
    def __init__(self, session: Session, *, max_catch_up: Optional[int] = None) -> None:
        self.session = session
        self.max_catch_up = max_catch_up or get_settings().max_catch_up
        self.reconciler = BalanceReconciler(session)

    def process_all_due(
        self, now: Union[datetime, date, None] = None
    ) -> ProcessResult:
        return self._process_due(as_local_date(now), user_id=None)

    def process_user_due(
        self, user_id: int, now: Union[datetime, date, None] = None
    ) -> ProcessResult:
        return self._process_due(as_local_date(now), user_id=user_id)

    def _process_due(self, today: date, user_id: Optional[int]) -> ProcessResult:
        stmt = (
            select(RecurringRule)
            .where(
                RecurringRule.active.is_(True),
                RecurringRule.next_occurrence <= today,
            )
            .order_by(RecurringRule.next_occurrence, RecurringRule.id)
        )
        if user_id is not None:
            stmt = stmt.where(RecurringRule.user_id == user_id)
        rule_ids = list(self.session.scalars(stmt.with_only_columns(RecurringRule.id)))

        result = ProcessResult()
        for rule_id in rule_ids:
            result.rules += 1
            savepoint = self.session.begin_nested()
            try:
                rule = self.session.get(RecurringRule, rule_id)
                posted, skipped = self.catch_up_rule(rule, today)
                savepoint.commit()
            except Exception:
                savepoint.rollback()
                result.errors += 1
                logger.exception(f"recurring_rule_failed: rule_id={rule_id}")
                continue
            result.processed += posted
            result.skipped += skipped

        logger.info(
            f"recurring_pass: today={today.isoformat()} user_id={user_id} "
            f"rules={result.rules} processed={result.processed} "
            f"skipped={result.skipped} errors={result.errors}"
        )
        return result

    def catch_up_rule(
        self, rule: RecurringRule, today: Optional[date] = None
    ) -> tuple[int, int]:
        today = today or local_today()
        posted = 0
        skipped = 0
        iterations = 0
        while rule.active and rule.next_occurrence <= today:
            if iterations >= self.max_catch_up:
                logger.warning(
                    f"recurring_catch_up_capped: rule_id={rule.id} "
                    f"next_occurrence={rule.next_occurrence.isoformat()}"
                )
                break
            occurrence = rule.next_occurrence
            if rule.end_date and occurrence > rule.end_date:
                rule.active = False
                break
            if self._post_occurrence(rule, occurrence):
                posted += 1
            else:
                skipped += 1
            next_date = calculate_next_date(rule, occurrence)
            if next_date <= occurrence:
                raise ValueError(f"Schedule for rule {rule.id} did not advance")
            rule.next_occurrence = next_date
            if rule.end_date and next_date > rule.end_date:
                rule.active = False
            iterations += 1
        self.session.flush()
        return posted, skipped

    def _already_posted(self, rule: RecurringRule, occurrence: date, category: str) -> bool:
        stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == rule.user_id,
                or_(
                    and_(
                        Transaction.origin_rule_id == rule.id,
                        Transaction.occurrence_date == occurrence,
                    ),
                    and_(
                        Transaction.origin_rule_id.is_(None),
                        Transaction.amount_cents == rule.amount_cents,
                        Transaction.type == rule.type,
                        Transaction.category == category,
                        Transaction.date == occurrence,
                    ),
                ),
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def _post_occurrence(self, rule: RecurringRule, occurrence: date) -> bool:
        category = normalize_category(rule.type, rule.category)
        if self._already_posted(rule, occurrence, category):
            logger.info(
                f"recurring_occurrence_satisfied: rule_id={rule.id} "
                f"occurrence={occurrence.isoformat()}"
            )
            return False

        txn = Transaction(
            user_id=rule.user_id,
            date=occurrence,
            occurred_at=datetime.combine(occurrence, time(12, 0)),
            type=rule.type,
            amount_cents=rule.amount_cents,
            category=category,
            note=recurring_note(rule.note),
            account_id=rule.account_id,
            origin_rule_id=rule.id,
            occurrence_date=occurrence,
        )
        try:
            with self.session.begin_nested():
                self.session.add(txn)
                self.session.flush()
        except IntegrityError:
            # A concurrent pass inserted the same occurrence first.
            logger.info(
                f"recurring_occurrence_raced: rule_id={rule.id} "
                f"occurrence={occurrence.isoformat()}"
            )
            return False
        self.reconciler.apply_create(txn)
        return True
