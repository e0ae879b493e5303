"""Hand-written stand-ins shared by the test modules."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from company_importer.services.import_session import ImportSettings, RowOutcome


class ScriptedProcessor:
    """Row processor stand-in driven by a ``result`` key in each row.

    ``result`` is one of ok, fail, skip or raise. ``hooks`` maps a 1-based
    call number to a callable run while that row is being processed.
    """

    def __init__(self, hooks: dict[int, Callable[[], Any]] | None = None):
        self.hooks = hooks or {}
        self.seen: list[tuple[int, dict]] = []

    def process(self, row: dict, settings: ImportSettings, row_number: int) -> RowOutcome:
        self.seen.append((row_number, row))
        hook = self.hooks.get(len(self.seen))
        if hook is not None:
            hook()
        result = row.get("result", "ok")
        if result == "fail":
            return RowOutcome.failed(row.get("error", "boom"))
        if result == "skip":
            return RowOutcome.skip("already there")
        if result == "raise":
            raise RuntimeError("processor exploded")
        return RowOutcome(
            success=True,
            images_downloaded=int(row.get("downloaded", 0)),
            images_failed=int(row.get("failed", 0)),
        )


class RecordingExecutor:
    """Executor that only remembers what it was asked to run."""

    def __init__(self, fail_with: Exception | None = None):
        self.submitted: list[str] = []
        self.fail_with = fail_with

    def submit(self, session_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.submitted.append(session_id)


class _FakePipeline:
    def __init__(self, server: "FakeRedis"):
        self._server = server
        self._queued: list[tuple] = []
        self._buffering = False

    def get(self, key: str) -> str | None:
        return self._server.get(key)

    def multi(self) -> None:
        self._buffering = True

    def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._queued.append(("set", key, value, ex))

    def expire(self, key: str, seconds: int) -> None:
        self._queued.append(("expire", key, seconds))

    def delete(self, key: str) -> None:
        self._queued.append(("delete", key))

    def execute(self) -> list[Any]:
        results = []
        for op in self._queued:
            if op[0] == "set":
                results.append(self._server.set(op[1], op[2], ex=op[3]))
            elif op[0] == "delete":
                results.append(self._server.delete(op[1]))
            else:
                results.append(self._server.expire(op[1], op[2]))
        self._queued.clear()
        return results


class FakeRedis:
    """Just enough of redis.Redis (decode_responses=True) for the session store."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.sets: dict[str, set[str]] = defaultdict(set)
        self.ttls: dict[str, int] = {}
        self.transactions = 0

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def sadd(self, key: str, *values: str) -> int:
        before = len(self.sets[key])
        self.sets[key].update(values)
        return len(self.sets[key]) - before

    def srem(self, key: str, *values: str) -> int:
        before = len(self.sets[key])
        self.sets[key].difference_update(values)
        return before - len(self.sets[key])

    def smembers(self, key: str) -> set[str]:
        return set(self.sets[key])

    def transaction(self, func, *watches: str, value_from_callable: bool = False):
        self.transactions += 1
        pipe = _FakePipeline(self)
        value = func(pipe)
        results = pipe.execute()
        return value if value_from_callable else results

    def expire_now(self, key: str) -> None:
        """Simulate a TTL running out."""
        self.data.pop(key, None)
        self.ttls.pop(key, None)
