"""Registries holding import sessions between the driver and control calls."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from company_importer.core.config import Settings, get_settings
from company_importer.core.exceptions import SessionExistsError
from company_importer.services.import_session import (
    TERMINAL_STATUSES,
    ImportSession,
    ImportStatus,
)
from company_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

# Fields the driver and control calls may change after creation
MUTABLE_FIELDS = frozenset(
    {"status", "current_index", "stats", "errors", "skipped_companies", "finished_at"}
)


def _check_fields(fields: dict[str, Any]) -> None:
    illegal = set(fields) - MUTABLE_FIELDS
    if illegal:
        raise ValueError(f"Immutable session field(s): {', '.join(sorted(illegal))}")


def _copy_state(session: ImportSession, fields: dict[str, Any] | None = None) -> ImportSession:
    """Copy mutable state; ``records`` is write-once and shared by reference."""
    state = {
        "stats": session.stats.model_copy(),
        "errors": list(session.errors),
        "skipped_companies": list(session.skipped_companies),
    }
    for key, value in (fields or {}).items():
        if key == "stats":
            value = value.model_copy()
        elif key in ("errors", "skipped_companies"):
            value = list(value)
        elif key == "status":
            value = ImportStatus(value)
        state[key] = value
    return session.model_copy(update=state)


class SessionStore(ABC):
    """Keyed registry of import sessions.

    Only ``update`` and ``transition`` mutate a stored session. ``get`` hands
    out snapshots, so mutating a returned session has no effect on the store.
    """

    @abstractmethod
    def create(self, session: ImportSession) -> None:
        """Register a new session; SessionExistsError if the id is taken."""

    @abstractmethod
    def get(self, session_id: str) -> ImportSession | None:
        """Return a snapshot, or None when the id is unknown."""

    @abstractmethod
    def update(self, session_id: str, **fields: Any) -> None:
        """Merge ``fields`` atomically; no-op when the session is gone."""

    @abstractmethod
    def transition(
        self,
        session_id: str,
        allowed_from: Iterable[ImportStatus],
        to: ImportStatus,
        **fields: Any,
    ) -> bool:
        """Compare-and-set ``status``; returns False if the current status is not allowed."""

    @abstractmethod
    def wait_for_status_change(
        self, session_id: str, current: ImportStatus, timeout: float
    ) -> ImportStatus | None:
        """Block up to ``timeout`` seconds while status equals ``current``."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def list(self) -> list[ImportSession]:
        ...

    @abstractmethod
    def acquire_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        """Claim the session for one driver; False while another owner holds it."""

    @abstractmethod
    def renew_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        """Extend ``owner``'s lease; False once it has expired or moved on."""

    @abstractmethod
    def release_lease(self, session_id: str, owner: str) -> None:
        ...

    def cleanup_expired(self, max_age: timedelta) -> int:
        """Delete terminal sessions older than ``max_age``; returns how many went."""
        cutoff = datetime.now(timezone.utc) - max_age
        removed = 0
        for session in self.list():
            reference_time = session.finished_at or session.started_at
            if session.status in TERMINAL_STATUSES and reference_time < cutoff:
                if self.delete(session.id):
                    removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} expired import session(s)")
        return removed


class InMemorySessionStore(SessionStore):
    """Process-lifetime store; every in-flight import is lost on restart."""

    def __init__(self) -> None:
        self._sessions: dict[str, ImportSession] = {}
        self._leases: dict[str, tuple[str, float]] = {}
        self._changed = threading.Condition()

    def create(self, session: ImportSession) -> None:
        with self._changed:
            if session.id in self._sessions:
                raise SessionExistsError(f"Import session {session.id} already exists")
            self._sessions[session.id] = _copy_state(session)
            logger.info(f"Import session created: {session.id} ({len(self._sessions)} total)")

    def get(self, session_id: str) -> ImportSession | None:
        with self._changed:
            session = self._sessions.get(session_id)
            return _copy_state(session) if session is not None else None

    def update(self, session_id: str, **fields: Any) -> None:
        _check_fields(fields)
        with self._changed:
            session = self._sessions.get(session_id)
            if session is None:
                return
            self._sessions[session_id] = _copy_state(session, fields)
            if "status" in fields:
                self._changed.notify_all()

    def transition(
        self,
        session_id: str,
        allowed_from: Iterable[ImportStatus],
        to: ImportStatus,
        **fields: Any,
    ) -> bool:
        _check_fields(fields)
        with self._changed:
            session = self._sessions.get(session_id)
            if session is None or session.status not in set(allowed_from):
                return False
            self._sessions[session_id] = _copy_state(session, {**fields, "status": to})
            self._changed.notify_all()
            return True

    def wait_for_status_change(
        self, session_id: str, current: ImportStatus, timeout: float
    ) -> ImportStatus | None:
        def _moved() -> bool:
            session = self._sessions.get(session_id)
            return session is None or session.status != current

        with self._changed:
            self._changed.wait_for(_moved, timeout=timeout)
            session = self._sessions.get(session_id)
            return session.status if session is not None else None

    def delete(self, session_id: str) -> bool:
        with self._changed:
            deleted = self._sessions.pop(session_id, None) is not None
            self._leases.pop(session_id, None)
            self._changed.notify_all()
        logger.info(f"Deleted import session {session_id}: {deleted}")
        return deleted

    def list(self) -> list[ImportSession]:
        with self._changed:
            return [_copy_state(session) for session in self._sessions.values()]

    def _lease_free(self, session_id: str, owner: str) -> bool:
        lease = self._leases.get(session_id)
        return lease is None or lease[0] == owner or lease[1] <= time.monotonic()

    def acquire_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        with self._changed:
            if session_id not in self._sessions or not self._lease_free(session_id, owner):
                return False
            self._leases[session_id] = (owner, time.monotonic() + ttl)
            return True

    def renew_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        with self._changed:
            lease = self._leases.get(session_id)
            if lease is None or lease[0] != owner or lease[1] <= time.monotonic():
                return False
            self._leases[session_id] = (owner, time.monotonic() + ttl)
            return True

    def release_lease(self, session_id: str, owner: str) -> None:
        with self._changed:
            lease = self._leases.get(session_id)
            if lease is not None and lease[0] == owner:
                del self._leases[session_id]

    def clear(self) -> None:
        with self._changed:
            self._sessions.clear()
            self._leases.clear()
            self._changed.notify_all()


SESSION_PREFIX = "imports:session:"
SESSION_INDEX_KEY = "imports:sessions"


def _lease_seconds(ttl: float) -> int:
    return max(1, math.ceil(ttl))


class RedisSessionStore(SessionStore):
    """Durable store: session state and records kept as JSON in Redis.

    Records are written once under their own key and cached locally; the
    state key is rewritten on every update inside a WATCH/MULTI transaction.
    """

    def __init__(self, client: Redis, ttl_seconds: int = 86400):
        self._client = client
        self._ttl = int(ttl_seconds)
        self._records_cache: dict[str, list[dict[str, Any]]] = {}

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    @staticmethod
    def _records_key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}:records"

    @staticmethod
    def _lease_key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}:lease"

    @staticmethod
    def _dump_state(session: ImportSession) -> str:
        return session.model_dump_json(exclude={"records"})

    def _load_records(self, session_id: str) -> list[dict[str, Any]]:
        if session_id not in self._records_cache:
            raw = self._client.get(self._records_key(session_id))
            self._records_cache[session_id] = json.loads(raw) if raw else []
        return self._records_cache[session_id]

    def _load(self, session_id: str, raw: str | bytes | None) -> ImportSession | None:
        if not raw:
            return None
        state = ImportSession.model_validate_json(raw)
        return state.model_copy(update={"records": self._load_records(session_id)})

    def create(self, session: ImportSession) -> None:
        key = self._key(session.id)
        created = self._client.set(key, self._dump_state(session), ex=self._ttl, nx=True)
        if not created:
            raise SessionExistsError(f"Import session {session.id} already exists")
        self._client.set(
            self._records_key(session.id), json.dumps(session.records), ex=self._ttl
        )
        self._client.sadd(SESSION_INDEX_KEY, session.id)
        self._records_cache[session.id] = list(session.records)
        logger.info(f"Import session created in Redis: {session.id}")

    def get(self, session_id: str) -> ImportSession | None:
        return self._load(session_id, self._client.get(self._key(session_id)))

    def _apply(
        self,
        session_id: str,
        fields: dict[str, Any],
        allowed_from: frozenset[ImportStatus] | None = None,
    ) -> bool:
        key = self._key(session_id)

        def _merge(pipe: Any) -> bool:
            raw = pipe.get(key)
            if not raw:
                return False
            state = ImportSession.model_validate_json(raw)
            if allowed_from is not None and state.status not in allowed_from:
                return False
            merged = _copy_state(state, fields)
            pipe.multi()
            pipe.set(key, self._dump_state(merged), ex=self._ttl)
            pipe.expire(self._records_key(session_id), self._ttl)
            return True

        return self._client.transaction(_merge, key, value_from_callable=True)

    def update(self, session_id: str, **fields: Any) -> None:
        _check_fields(fields)
        self._apply(session_id, fields)

    def transition(
        self,
        session_id: str,
        allowed_from: Iterable[ImportStatus],
        to: ImportStatus,
        **fields: Any,
    ) -> bool:
        _check_fields(fields)
        return self._apply(session_id, {**fields, "status": to}, frozenset(allowed_from))

    def wait_for_status_change(
        self, session_id: str, current: ImportStatus, timeout: float
    ) -> ImportStatus | None:
        # No push channel here: sleep one poll interval, then re-read.
        time.sleep(timeout)
        session = self.get(session_id)
        return session.status if session is not None else None

    def delete(self, session_id: str) -> bool:
        deleted = self._client.delete(self._key(session_id), self._records_key(session_id))
        self._client.delete(self._lease_key(session_id))
        self._client.srem(SESSION_INDEX_KEY, session_id)
        self._records_cache.pop(session_id, None)
        logger.info(f"Deleted import session {session_id} from Redis: {bool(deleted)}")
        return bool(deleted)

    def acquire_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        if not self._client.get(self._key(session_id)):
            return False
        key = self._lease_key(session_id)
        if self._client.set(key, owner, ex=_lease_seconds(ttl), nx=True):
            return True
        # Re-acquiring our own lease counts as a renewal
        return self.renew_lease(session_id, owner, ttl)

    def _if_owner(self, session_id: str, owner: str, ttl: float | None) -> bool:
        key = self._lease_key(session_id)

        def _check(pipe: Any) -> bool:
            if pipe.get(key) != owner:
                return False
            pipe.multi()
            if ttl is None:
                pipe.delete(key)
            else:
                pipe.set(key, owner, ex=_lease_seconds(ttl))
            return True

        return self._client.transaction(_check, key, value_from_callable=True)

    def renew_lease(self, session_id: str, owner: str, ttl: float) -> bool:
        return self._if_owner(session_id, owner, ttl)

    def release_lease(self, session_id: str, owner: str) -> None:
        self._if_owner(session_id, owner, None)

    def list(self) -> list[ImportSession]:
        sessions = []
        for session_id in sorted(self._client.smembers(SESSION_INDEX_KEY)):
            if isinstance(session_id, bytes):
                session_id = session_id.decode("utf-8")
            session = self.get(session_id)
            if session is None:
                # Snapshot expired through its TTL
                self._client.srem(SESSION_INDEX_KEY, session_id)
                self._records_cache.pop(session_id, None)
                continue
            sessions.append(session)
        return sessions


def build_session_store(settings: Settings | None = None) -> SessionStore:
    """Construct the store selected by ``import_session_backend``."""
    settings = settings or get_settings()
    if settings.import_session_backend == "redis":
        client = create_redis_client(settings.redis_url, decode_responses=True)
        try:
            client.ping()
        except RedisError as e:
            logger.error(f"Redis session store unavailable at startup: {e}")
            raise
        return RedisSessionStore(client, ttl_seconds=settings.import_session_ttl_seconds)
    logger.warning(
        "Using in-memory import session store: sessions are lost when the process restarts"
    )
    return InMemorySessionStore()
