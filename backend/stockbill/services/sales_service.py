"""
Sales Service - read-only analytics over confirmed and printed invoices.

A "sale" is an invoice whose status is confirmed or printed. Drafts never
count. Date bounds are calendar days in BUSINESS_TIMEZONE; the end date is
inclusive through the end of that day.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoiceLine
from ..models.invoices import SALE_STATUSES
from ..money_utils import cents_to_amount, divide_cents
from ..time_utils import (
    business_timezone,
    is_date_only,
    local_day_bounds_utc,
    local_day_start_utc,
    local_today,
    parse_iso_datetime,
    to_zone,
)
from ..validation import ValidationError
from .ownership_service import NotFoundError

SORT_NEWEST = "newest"
SORT_OLDEST = "oldest"
SORT_HIGHEST = "highestAmount"
SORT_LOWEST = "lowestAmount"

SORT_OPTIONS = {
    SORT_NEWEST: (Invoice.created_at.desc(), Invoice.id.desc()),
    SORT_OLDEST: (Invoice.created_at.asc(), Invoice.id.asc()),
    SORT_HIGHEST: (Invoice.total_cents.desc(), Invoice.id.desc()),
    SORT_LOWEST: (Invoice.total_cents.asc(), Invoice.id.asc()),
}


class DateRange:
    """Parsed start/end filter; `end` is an exclusive UTC bound."""

    def __init__(self, start: datetime | None, end: datetime | None,
                 start_day: date | None, end_day: date | None):
        self.start = start
        self.end = end
        self.start_day = start_day
        self.end_day = end_day

    @property
    def period_days(self) -> int | None:
        if self.start_day is None or self.end_day is None:
            return None
        return (self.end_day - self.start_day).days + 1


def _parse_bound(value: str, name: str, tz) -> tuple[datetime, date]:
    value = value.strip()
    try:
        if is_date_only(value):
            day = date.fromisoformat(value)
            return local_day_start_utc(day, tz), day
        moment = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD or an ISO-8601 timestamp")
    return moment, to_zone(moment, tz).date()


def parse_date_range(start_date: str | None, end_date: str | None) -> DateRange:
    """
    Raises:
        ValidationError: malformed date or start after end
    """
    tz = business_timezone()
    start = end = None
    start_day = end_day = None

    if start_date and start_date.strip():
        start, start_day = _parse_bound(start_date, "start_date", tz)
    if end_date and end_date.strip():
        _, end_day = _parse_bound(end_date, "end_date", tz)
        end = local_day_start_utc(end_day + timedelta(days=1), tz)

    if start is not None and end is not None and start >= end:
        raise ValidationError("start_date must not be after end_date")

    return DateRange(start, end, start_day, end_day)


def _sale_conditions(owner_id: int, window: DateRange) -> list:
    conditions = [
        Invoice.owner_id == owner_id,
        Invoice.status.in_(SALE_STATUSES),
    ]
    if window.start is not None:
        conditions.append(Invoice.created_at >= window.start)
    if window.end is not None:
        conditions.append(Invoice.created_at < window.end)
    return conditions


def list_sales(
    owner_id: int,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    sort_by: str | None = None,
    q: str | None = None,
) -> list[Invoice]:
    """
    Confirmed/printed invoices for the owner.

    sort_by: newest (default), oldest, highestAmount, lowestAmount.
    Unknown values fall back to newest.
    """
    window = parse_date_range(start_date, end_date)
    query = db.session.query(Invoice).filter(*_sale_conditions(owner_id, window))

    if q and q.strip():
        query = query.filter(
            func.lower(Invoice.invoice_number).contains(q.strip().lower(), autoescape=True)
        )

    ordering = SORT_OPTIONS.get(sort_by or SORT_NEWEST, SORT_OPTIONS[SORT_NEWEST])
    return query.order_by(*ordering).all()


def sales_summary(
    owner_id: int,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    """
    Aggregate metrics over the filtered sales.

    todays_revenue ignores the date filter: it always covers the current
    calendar day in the business timezone.
    """
    window = parse_date_range(start_date, end_date)
    conditions = _sale_conditions(owner_id, window)

    invoice_count, revenue_cents, tax_cents, highest_cents = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.total_cents), 0),
        func.coalesce(func.sum(Invoice.tax_cents), 0),
        func.coalesce(func.max(Invoice.total_cents), 0),
    ).filter(*conditions).one()

    total_items = (
        db.session.query(func.coalesce(func.sum(InvoiceLine.quantity), 0))
        .join(Invoice, InvoiceLine.invoice_id == Invoice.id)
        .filter(*conditions)
        .scalar()
    )

    tz = business_timezone()
    today_start, today_end = local_day_bounds_utc(local_today(tz), tz)
    todays_revenue_cents = (
        db.session.query(func.coalesce(func.sum(Invoice.total_cents), 0))
        .filter(
            Invoice.owner_id == owner_id,
            Invoice.status.in_(SALE_STATUSES),
            Invoice.created_at >= today_start,
            Invoice.created_at < today_end,
        )
        .scalar()
    )

    invoice_count = int(invoice_count or 0)
    revenue_cents = int(revenue_cents or 0)
    period_days = window.period_days

    return {
        "total_revenue": cents_to_amount(revenue_cents),
        "total_invoices": invoice_count,
        "total_items": int(total_items or 0),
        "total_tax": cents_to_amount(int(tax_cents or 0)),
        "todays_revenue": cents_to_amount(int(todays_revenue_cents or 0)),
        "average_order_value": cents_to_amount(divide_cents(revenue_cents, invoice_count)),
        "highest_sale": cents_to_amount(int(highest_cents or 0)),
        "period_days": period_days,
        "daily_average": cents_to_amount(divide_cents(revenue_cents, period_days)) if period_days else None,
        "start_date": window.start_day.isoformat() if window.start_day else None,
        "end_date": window.end_day.isoformat() if window.end_day else None,
    }


def find_sale_by_number(owner_id: int, invoice_number: str) -> Invoice:
    """
    Exact invoice-number lookup restricted to confirmed/printed invoices.

    Raises:
        NotFoundError: no such sale for this owner
    """
    invoice = (
        db.session.query(Invoice)
        .filter(
            Invoice.owner_id == owner_id,
            Invoice.invoice_number == (invoice_number or "").strip(),
            Invoice.status.in_(SALE_STATUSES),
        )
        .first()
    )
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice
