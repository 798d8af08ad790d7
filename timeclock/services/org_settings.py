from __future__ import annotations

import logging
from datetime import tzinfo
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.audit import log_audit
from timeclock.db import SessionLocal
from timeclock.models import AppSettings, AuditActorType
from timeclock.services.clock_cache import TimezoneCache
from timeclock.services.timezones import resolve_timezone
from timeclock.settings import get_settings

logger = logging.getLogger("timeclock.timezone")


def _settings_row(db: Session) -> AppSettings | None:
    return db.scalar(select(AppSettings).order_by(AppSettings.id.asc()).limit(1))


def get_org_timezone_name(db: Session) -> str:
    row = _settings_row(db)
    if row is not None and row.timezone:
        return row.timezone
    return get_settings().attendance_timezone


def set_org_timezone(
    db: Session,
    *,
    name: str,
    actor_id: str,
    request_id: str | None = None,
) -> str:
    """Store a new organization timezone and drop the cached value.

    Raises ``InvalidTimezoneError`` for anything that is not an IANA name.
    """
    zone = resolve_timezone(name)
    canonical_name = zone.key
    row = _settings_row(db)
    previous = row.timezone if row is not None else None
    if row is None:
        row = AppSettings(timezone=canonical_name)
        db.add(row)
    else:
        row.timezone = canonical_name
    db.commit()

    get_timezone_cache().invalidate()
    logger.info(
        "org_timezone_updated",
        extra={"previous_timezone": previous, "timezone": canonical_name, "actor_id": actor_id},
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="ORG_TIMEZONE_UPDATED",
        success=True,
        entity_type="app_settings",
        entity_id=str(row.id),
        details={"previous_timezone": previous, "timezone": canonical_name},
        request_id=request_id,
    )
    return canonical_name


def _load_timezone_name() -> str | None:
    with SessionLocal() as db:
        return get_org_timezone_name(db)


@lru_cache
def get_timezone_cache() -> TimezoneCache:
    return TimezoneCache(
        _load_timezone_name,
        ttl_seconds=get_settings().timezone_cache_ttl_seconds,
    )


def get_org_timezone() -> tzinfo:
    return get_timezone_cache().get()
