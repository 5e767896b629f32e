"""
Module: approval_kernel.db.base
Responsibility: ``Base`` for the approval ORM tables and the column types
    they share, so a request row means the same thing on SQLite and on
    PostgreSQL.
Architecture position: Kernel > DB.  Imported by models/ and db/engine.py;
    imports nothing else from the kernel.

Column conventions:
    - Surrogate keys are uuid4 values kept in a 36-char string column.
    - Timestamps are stored and loaded as UTC.  SQLite hands back naive
      values, which are re-tagged as UTC on load.
    - Flexible payloads (requester data, attribute snapshots) are JSON text.
      Decimals keep their exact string form; tuples and sets become lists.

Failure modes:
    - ValueError from UTCDateTime when asked to bind a naive datetime.
    - TypeError from JSONDocument for a value JSON cannot hold.
"""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in a String(36) column; None passes through."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that always loads as UTC.

    Naive values are rejected on bind; every timestamp in the kernel comes
    from an injected Clock and is aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, PyUUID):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _thaw(value: Any) -> Any:
    # MappingProxyType is not a dict subclass, json cannot encode it directly
    if hasattr(value, "items"):
        return {str(k): _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    return value


class JSONDocument(TypeDecorator):
    """JSON stored as TEXT; works on SQLite and PostgreSQL alike."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(_thaw(value), default=_json_default, sort_keys=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(value)


class Base(DeclarativeBase):
    """
    Shared declarative base.

    Subclasses get a uuid4 ``id`` key.  Annotated ``datetime`` columns map to
    UTCDateTime and ``int`` columns to BIGINT unless declared otherwise.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )
