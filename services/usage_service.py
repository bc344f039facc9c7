# ================================================================
# services/usage_service.py: monthly package usage accounting
# ================================================================
"""Usage counter operations on ``Organization.current_month_packages``.

Every write here is a single ``UPDATE`` statement evaluated by the database, so
concurrent requests for the same organization never lose an increment and a
rollover reset can only ever happen once per calendar month.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, literal, or_, update
from sqlmodel import Session

from models.models import Organization, UTCDateTime, as_utc, utc_now
from services.exceptions import OrganizationNotFoundError

logger = logging.getLogger(__name__)


def month_window(now: datetime) -> tuple[datetime, datetime]:
    """Return [start of now's UTC month, start of the following month)."""
    start = as_utc(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    next_start = (start + timedelta(days=32)).replace(day=1)
    return start, next_start


def _usage_window_is_stale(now: datetime):
    """SQL predicate: usage_reset_date is not in now's calendar month."""
    start, next_start = month_window(now)
    return or_(
        Organization.usage_reset_date.is_(None),
        Organization.usage_reset_date < start,
        Organization.usage_reset_date >= next_start,
    )


def needs_rollover(usage_reset_date: Optional[datetime], now: datetime) -> bool:
    if usage_reset_date is None:
        return True
    start, next_start = month_window(now)
    return not (start <= as_utc(usage_reset_date) < next_start)


def increment_package_usage(session: Session, organization_id: int, now: Optional[datetime] = None) -> None:
    """Count one more package for the organization.

    Call exactly once, after the package row has been committed. If the stored
    window belongs to an earlier month, the same statement starts a new window
    with a count of 1, so a package created at the month boundary is never
    erased by a later reset.
    """
    now = as_utc(now) if now else utc_now()
    stale = _usage_window_is_stale(now)
    stmt = (
        update(Organization)
        .where(Organization.id == organization_id)
        .values(
            current_month_packages=case(
                (stale, 1),
                else_=Organization.current_month_packages + 1,
            ),
            usage_reset_date=case(
                (stale, literal(now, UTCDateTime)),
                else_=Organization.usage_reset_date,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        session.rollback()
        raise OrganizationNotFoundError(organization_id)
    session.commit()


def reset_monthly_usage(session: Session, organization_id: int, now: Optional[datetime] = None) -> None:
    """Unconditionally zero the counter and start a new window at ``now``."""
    now = as_utc(now) if now else utc_now()
    result = session.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(current_month_packages=0, usage_reset_date=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        raise OrganizationNotFoundError(organization_id)
    session.commit()
    logger.info("🔄 Monthly usage reset for organization %s", organization_id)


def roll_over_usage(session: Session, organization_id: int, now: Optional[datetime] = None) -> bool:
    """Reset the counter if its window is not the current calendar month.

    The staleness check is part of the ``WHERE`` clause, so of several
    concurrent callers at a month boundary only the first one resets; the rest
    match no row. Returns True when this call performed the reset.
    """
    now = as_utc(now) if now else utc_now()
    result = session.execute(
        update(Organization)
        .where(Organization.id == organization_id, _usage_window_is_stale(now))
        .values(current_month_packages=0, usage_reset_date=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    rolled_over = result.rowcount > 0
    if rolled_over:
        logger.info("🔄 Usage window rolled over for organization %s at %s", organization_id, now.isoformat())
    return rolled_over
