"""User-scoped key/value persistence on top of SQLite.

Key layout
----------
``user:{user_id}:{app_id}:{base_key}`` for progress data, so every key a user
owns shares the prefix ``user:{user_id}:`` and can be found (and deleted) by
prefix scan. Installation metadata that belongs to no user lives under
``quizsync:{key}``.

Values are JSON text. Reads never fail on bad content: a malformed value is
logged and the caller's default is returned instead.
"""

import json
import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from quizsync.db.models import KeyValueEntry
from quizsync.db.session import create_session_factory

logger = logging.getLogger(__name__)

SEPARATOR = ":"
USER_NAMESPACE = "user"
GLOBAL_NAMESPACE = "quizsync"


def _check_segment(name: str, value: str) -> None:
    if not value or SEPARATOR in value:
        raise ValueError(f"{name} must be non-empty and may not contain {SEPARATOR!r}: {value!r}")


def user_prefix(user_id: str) -> str:
    """Prefix shared by every key owned by *user_id*."""
    _check_segment("user_id", user_id)
    return f"{USER_NAMESPACE}{SEPARATOR}{user_id}{SEPARATOR}"


def user_key(user_id: str, app_id: str, base_key: str) -> str:
    """``user:{user_id}:{app_id}:{base_key}``"""
    _check_segment("app_id", app_id)
    _check_segment("base_key", base_key)
    return f"{user_prefix(user_id)}{app_id}{SEPARATOR}{base_key}"


def global_key(key: str) -> str:
    _check_segment("key", key)
    return f"{GLOBAL_NAMESPACE}{SEPARATOR}{key}"


def _starts_with(prefix: str):
    # SQLite LIKE folds ASCII case; user names are case-sensitive.
    return func.substr(KeyValueEntry.key, 1, len(prefix)) == prefix


class LocalStore:
    """Synchronous, durable key/value store partitioned by user and app."""

    def __init__(self, engine: Engine) -> None:
        self._factory = create_session_factory(engine)

    # ── raw access ────────────────────────────────────────────────────────

    def _read(self, key: str, default: Any) -> Any:
        with self._factory() as db:
            raw = db.get(KeyValueEntry, key)
            text = raw.value if raw is not None else None
        if text is None:
            return default
        try:
            return json.loads(text)
        except ValueError:
            logger.warning("Malformed value under %s, falling back to default", key)
            return default

    def _write(self, key: str, value: Any) -> bool:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.error("Value for %s is not JSON serialisable", key)
            return False
        with self._factory() as db:
            try:
                entry = db.get(KeyValueEntry, key)
                if entry is None:
                    db.add(KeyValueEntry(key=key, value=text))
                else:
                    entry.value = text
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Local write failed for %s", key)
                return False
        logger.debug("Local SET: %s", key)
        return True

    def _delete(self, key: str) -> bool:
        with self._factory() as db:
            result = db.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            db.commit()
        return bool(result.rowcount)

    # ── user-scoped API ───────────────────────────────────────────────────

    def get(self, user_id: str | None, app_id: str, key: str, default: Any = None) -> Any:
        """Return the stored value, or *default* when absent, unreadable or no user."""
        if not user_id:
            return default
        return self._read(user_key(user_id, app_id, key), default)

    def set(self, user_id: str | None, app_id: str, key: str, value: Any) -> bool:
        """Persist *value*; returns False when there is no user or the write failed."""
        if not user_id:
            return False
        return self._write(user_key(user_id, app_id, key), value)

    def remove(self, user_id: str | None, app_id: str, key: str) -> bool:
        if not user_id:
            return False
        return self._delete(user_key(user_id, app_id, key))

    # ── prefix operations ─────────────────────────────────────────────────

    def keys(self, prefix: str = "") -> list[str]:
        with self._factory() as db:
            stmt = select(KeyValueEntry.key)
            if prefix:
                stmt = stmt.where(_starts_with(prefix))
            return list(db.scalars(stmt.order_by(KeyValueEntry.key)))

    def remove_prefix(self, prefix: str) -> int:
        """Delete every key starting with *prefix*; returns how many went."""
        if not prefix:
            raise ValueError("refusing to delete with an empty prefix")
        with self._factory() as db:
            result = db.execute(
                delete(KeyValueEntry).where(_starts_with(prefix))
            )
            db.commit()
        logger.info("Removed %d local keys under %s", result.rowcount, prefix)
        return result.rowcount

    def user_keys(self, user_id: str) -> list[str]:
        return self.keys(user_prefix(user_id))

    # ── installation metadata ─────────────────────────────────────────────

    def get_global(self, key: str, default: Any = None) -> Any:
        return self._read(global_key(key), default)

    def set_global(self, key: str, value: Any) -> bool:
        return self._write(global_key(key), value)

    def remove_global(self, key: str) -> bool:
        return self._delete(global_key(key))
