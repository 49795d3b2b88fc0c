"""Declarative base and shared columns for the monitoring tables.

Every table is tenant scoped: rows carry a UUID primary key, an indexed
tenant_id and created/updated timestamps. Provider payloads (credentials,
tokens, plant metadata, audit data) are declared as ``dict[str, Any]`` and
stored as JSON through the base's annotation map.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all monitoring models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
        datetime: DateTime(timezone=True),
    }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={getattr(self, 'id', None)}>"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TenantMixin(TimestampMixin):
    """UUID key plus the tenant column every monitoring query filters on.

    The UUID is native on PostgreSQL and a CHAR(32) on SQLite.
    """

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
