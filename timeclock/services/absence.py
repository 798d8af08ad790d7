from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.audit import log_audit
from timeclock.enums import AdherenceStatus
from timeclock.errors import InvalidStateError
from timeclock.models import AttendanceAdherence, AuditActorType
from timeclock.services.adherence import AdherenceRecord, first_signin_of_day, is_absence_eligible
from timeclock.services.dashboard import (
    get_day_adherence,
    get_employee_or_404,
    load_shift_config,
    reconcile_days,
)
from timeclock.services.clock_cache import utc_now
from timeclock.services.org_settings import get_org_timezone

logger = logging.getLogger("timeclock.absence")


def _existing_mark(db: Session, *, user_id: int, day_date: date) -> AttendanceAdherence | None:
    return db.scalar(
        select(AttendanceAdherence).where(
            AttendanceAdherence.user_id == user_id,
            AttendanceAdherence.day_date == day_date,
        )
    )


def mark_absent(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    admin_id: str,
    now_utc: datetime | None = None,
    tz: tzinfo | None = None,
    request_id: str | None = None,
) -> AdherenceRecord:
    """Persist an explicit absent mark for one employee day.

    Only allowed for days with no signin whose grace period has run out.
    Marking a day that is already absent returns the stored mark unchanged.
    """
    now_utc = now_utc or utc_now()
    zone = tz or get_org_timezone()
    employee = get_employee_or_404(db, user_id)

    existing = _existing_mark(db, user_id=user_id, day_date=day_date)
    if existing is not None and existing.status == AdherenceStatus.ABSENT:
        logger.info(
            "absence_mark_unchanged",
            extra={"user_id": user_id, "day_date": day_date.isoformat(), "admin_id": admin_id},
        )
        return get_day_adherence(
            db, user_id=user_id, day_date=day_date, now_utc=now_utc, tz=zone, employee=employee
        )

    reconciliation = reconcile_days(
        db,
        user_id=user_id,
        start_date=day_date,
        end_date=day_date,
        now_utc=now_utc,
        tz=zone,
    )
    shift = load_shift_config(employee)
    has_signin = first_signin_of_day(reconciliation.periods, day_date, zone, shift) is not None
    eligible = is_absence_eligible(
        day_date=day_date,
        has_signin=has_signin,
        shift=shift,
        tz=zone,
        now=now_utc,
    )
    if not eligible:
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=admin_id,
            action="ABSENCE_MARK",
            success=False,
            entity_type="employee",
            entity_id=str(user_id),
            details={"day_date": day_date.isoformat(), "reason": "NOT_ELIGIBLE", "has_signin": has_signin},
            request_id=request_id,
        )
        logger.warning(
            "absence_mark_rejected",
            extra={"user_id": user_id, "day_date": day_date.isoformat(), "has_signin": has_signin},
        )
        raise InvalidStateError("Day is not eligible to be marked absent.")

    if existing is None:
        existing = AttendanceAdherence(
            user_id=user_id,
            day_date=day_date,
            status=AdherenceStatus.ABSENT,
            marked_by=admin_id,
        )
        db.add(existing)
    else:
        existing.status = AdherenceStatus.ABSENT
        existing.marked_by = admin_id
    db.commit()

    logger.info(
        "absence_marked",
        extra={"user_id": user_id, "day_date": day_date.isoformat(), "admin_id": admin_id},
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=admin_id,
        action="ABSENCE_MARK",
        success=True,
        entity_type="employee",
        entity_id=str(user_id),
        details={"day_date": day_date.isoformat()},
        request_id=request_id,
    )
    return AdherenceRecord(
        user_id=user_id,
        day_date=day_date,
        status=AdherenceStatus.ABSENT,
        marked_by=admin_id,
    )


def revert_absence(
    db: Session,
    *,
    user_id: int,
    day_date: date,
    admin_id: str | None = None,
    now_utc: datetime | None = None,
    tz: tzinfo | None = None,
    request_id: str | None = None,
) -> AdherenceRecord:
    """Remove an absent mark and return the day's recomputed adherence."""
    now_utc = now_utc or utc_now()
    zone = tz or get_org_timezone()
    employee = get_employee_or_404(db, user_id)

    existing = _existing_mark(db, user_id=user_id, day_date=day_date)
    if existing is None or existing.status != AdherenceStatus.ABSENT:
        raise InvalidStateError("Day is not marked absent.")

    previous_marked_by = existing.marked_by
    db.delete(existing)
    db.commit()

    actor_id = admin_id or "system"
    logger.info(
        "absence_reverted",
        extra={"user_id": user_id, "day_date": day_date.isoformat(), "admin_id": actor_id},
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN if admin_id else AuditActorType.SYSTEM,
        actor_id=actor_id,
        action="ABSENCE_REVERT",
        success=True,
        entity_type="employee",
        entity_id=str(user_id),
        details={"day_date": day_date.isoformat(), "previous_marked_by": previous_marked_by},
        request_id=request_id,
    )
    return get_day_adherence(db, user_id=user_id, day_date=day_date, now_utc=now_utc, tz=zone, employee=employee)
