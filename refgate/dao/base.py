"""BaseDAO — shared ORM helpers and keyset pagination over ``created_at``."""

import base64
import hashlib
import hmac
import json
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select, tuple_
from sqlalchemy import exists as sa_exists
from sqlalchemy.ext.asyncio import AsyncSession

from refgate.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)

PAGE_SIZE_MAX = 100
PAGE_SIZE_DEFAULT = 20

_IMMUTABLE_COLUMNS = frozenset({"id", "created_at", "updated_at"})


class InvalidCursorError(ValueError):
    """A pagination cursor is malformed, tampered with, or of the wrong shape."""


@dataclass
class Cursor:
    """Position after the last row of a page: ``created_at`` plus tie-break key."""

    created_at: datetime
    key: str


@dataclass
class Page(Generic[ModelT]):
    data: list[ModelT]
    next_cursor: str | None
    has_more: bool


# ── cursor tokens ────────────────────────────────────────────────────────
#
# token = b64url(json [created_at, key]) "." hex(hmac-sha256)[:16]


def _secret() -> bytes:
    return os.environ.get("REFGATE_CURSOR_SECRET", "changeme-cursor-secret").encode()


def _sign(body: str) -> str:
    return hmac.new(_secret(), body.encode(), hashlib.sha256).hexdigest()[:16]


def encode_cursor(created_at: datetime, key: Any) -> str:
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    raw = json.dumps([created_at.isoformat(), str(key)], separators=(",", ":"))
    body = base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")
    return f"{body}.{_sign(body)}"


def decode_cursor(token: str) -> Cursor:
    """Verify and unpack *token*. Raises :class:`InvalidCursorError`."""
    body, sep, sig = token.partition(".")
    if not sep or not hmac.compare_digest(sig, _sign(body)):
        raise InvalidCursorError("cursor signature mismatch")
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4)).decode()
        created_at, key = json.loads(raw)
        return Cursor(created_at=datetime.fromisoformat(created_at), key=str(key))
    except (ValueError, TypeError, UnicodeDecodeError) as exc:
        raise InvalidCursorError("invalid cursor") from exc


class BaseDAO(Generic[ModelT]):
    """Generic data access for one model.

    Subclasses set ``model``. Rows that share a ``created_at`` are ordered by
    ``cursor_tiebreak``; append-only tables point it at an identity column.
    """

    model: type[ModelT]
    cursor_tiebreak: str = "id"

    @staticmethod
    def _require_pk(pk: uuid.UUID) -> None:
        if pk is None:
            raise ValueError("pk must not be None")

    # ── read ──────────────────────────────────────────────────────────────

    async def get_by_id(self, session: AsyncSession, pk: uuid.UUID) -> ModelT | None:
        self._require_pk(pk)
        return await session.get(self.model, pk)

    async def get_by_field(self, session: AsyncSession, **filters: Any) -> ModelT | None:
        """First row whose columns equal every keyword in *filters*."""
        if not filters:
            raise ValueError("get_by_field() requires at least one filter")
        stmt = select(self.model).filter_by(**filters).limit(1)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def exists(self, session: AsyncSession, pk: uuid.UUID) -> bool:
        self._require_pk(pk)
        stmt = select(sa_exists().where(self.model.__table__.c.id == pk))
        return (await session.execute(stmt)).scalar_one()

    # ── write ─────────────────────────────────────────────────────────────

    async def create(self, session: AsyncSession, **values: Any) -> ModelT:
        """Insert a row and reload it so server defaults are populated."""
        obj = self.model(**values)
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def update(self, session: AsyncSession, pk: uuid.UUID, **values: Any) -> ModelT | None:
        """Set columns on an existing row; returns None if it does not exist.

        Raises ``AttributeError`` for unknown or immutable columns.
        """
        self._require_pk(pk)
        columns = self.model.__mapper__.column_attrs.keys()
        for key in values:
            if key in _IMMUTABLE_COLUMNS:
                raise AttributeError(f"'{key}' is immutable and cannot be updated")
            if key not in columns:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")

        obj = await session.get(self.model, pk)
        if obj is None:
            return None
        for key, val in values.items():
            setattr(obj, key, val)
        obj.updated_at = func.now()  # type: ignore[attr-defined]
        await session.flush()
        await session.refresh(obj)
        return obj

    # ── pagination ────────────────────────────────────────────────────────

    async def paginate(
        self,
        session: AsyncSession,
        query: Select,
        cursor: str | None = None,
        page_size: int = PAGE_SIZE_DEFAULT,
    ) -> Page[ModelT]:
        """Run *query* newest first, one page at a time.

        Appends ``ORDER BY created_at DESC, <tiebreak> DESC`` and the limit;
        *query* must not carry its own. Raises :class:`InvalidCursorError`
        for a bad cursor.
        """
        page_size = max(1, min(page_size, PAGE_SIZE_MAX))
        created_at = self.model.__table__.c.created_at
        tiebreak = self.model.__table__.c[self.cursor_tiebreak]

        if cursor:
            pos = decode_cursor(cursor)
            try:
                key = tiebreak.type.python_type(pos.key)
            except (TypeError, ValueError) as exc:
                raise InvalidCursorError("invalid cursor") from exc
            query = query.where(tuple_(created_at, tiebreak) < (pos.created_at, key))

        query = query.order_by(created_at.desc(), tiebreak.desc()).limit(page_size + 1)
        rows = list((await session.execute(query)).scalars().all())

        data = rows[:page_size]
        has_more = len(rows) > page_size
        next_cursor = None
        if has_more:
            last = data[-1]
            next_cursor = encode_cursor(last.created_at, getattr(last, self.cursor_tiebreak))
        return Page(data=data, next_cursor=next_cursor, has_more=has_more)
