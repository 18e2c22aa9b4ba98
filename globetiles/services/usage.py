"""Request counters kept per endpoint host.

Every metadata, identify and image request that reaches a server is
counted, so operators can see which services a deployment depends on.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import List

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .. import database
from ..models import ApiUsageStat
from .transport import endpoint_host

_initialized_engine: Engine | None = None


def _ensure_usage_table() -> None:
    global _initialized_engine
    if _initialized_engine is not database.engine:
        database.init_db()
        _initialized_engine = database.engine


def record_api_usage(provider: str, *, increment: int = 1) -> None:
    """Add ``increment`` requests to the counter stored under ``provider``."""

    if increment <= 0:
        return

    _ensure_usage_table()

    with database.session_scope() as session:
        statement = select(ApiUsageStat).where(ApiUsageStat.provider == provider)
        usage = session.exec(statement).one_or_none()
        now = datetime.now(UTC)
        if usage is None:
            usage = ApiUsageStat(provider=provider, request_count=increment, last_used_at=now)
            session.add(usage)
        else:
            usage.request_count += increment
            usage.last_used_at = now
        session.commit()


def record_request(url: str, *, increment: int = 1) -> None:
    """Count a request against the host of ``url``."""

    record_api_usage(endpoint_host(url), increment=increment)


def usage_snapshot(session: Session) -> List[ApiUsageStat]:
    """Counters ordered by host; empty before the first recorded request."""

    _ensure_usage_table()
    statement = select(ApiUsageStat).order_by(ApiUsageStat.provider)
    return list(session.exec(statement).all())
