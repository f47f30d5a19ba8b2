"""Progress persistence: one local copy per client, optionally mirrored remotely.

The local copy is authoritative for gameplay. When the caller carries an
identity, every save is mirrored to the remote store in the background and
every load reconciles both copies with :func:`reconcile`.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import redis
from pydantic import ValidationError

from .database import get_db_connection
from .errors import MalformedPersistedState, StaleProgressMismatch
from .models import Progress

logger = logging.getLogger(__name__)

# Single worker keeps mirror writes in submission order
_mirror_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-mirror")


def reconcile(local: Optional[Progress], remote: Optional[Progress]) -> Optional[Progress]:
    """Pick the copy with the strictly greater index; ties favor local."""
    if remote is None:
        return local
    if local is None or remote.index > local.index:
        return remote
    return local


def check_total(progress: Progress, expected_total: int) -> None:
    if progress.total != expected_total:
        raise StaleProgressMismatch(
            f"Saved progress covers {progress.total} questions, not {expected_total}."
        )


# --- Local store ---
class LocalProgressStore:
    """SQLite-backed progress entries, one row per (client, session key)."""

    def __init__(self, client_id: str, db_path: Optional[str] = None):
        self.client_id = client_id
        self.db_path = db_path

    def get(self, key: str) -> Optional[Progress]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM progress WHERE client_id = ? AND session_key = ?",
                (self.client_id, key),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return Progress.model_validate_json(row["payload"])
        except ValidationError as e:
            raise MalformedPersistedState(f"Bad progress entry for {key}: {e}") from e

    def put(self, key: str, progress: Progress) -> None:
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO progress (client_id, session_key, payload) "
                "VALUES (?, ?, ?)",
                (self.client_id, key, progress.model_dump_json(exclude_none=True)),
            )
        conn.close()

    def delete(self, key: str) -> None:
        conn = get_db_connection(self.db_path)
        with conn:
            conn.execute(
                "DELETE FROM progress WHERE client_id = ? AND session_key = ?",
                (self.client_id, key),
            )
        conn.close()


# --- Remote mirror ---
class RemoteProgressMirror(ABC):
    """Progress copies shared across devices for one identity."""

    @abstractmethod
    def get(self, identity: str, key: str) -> Optional[Progress]:
        pass

    @abstractmethod
    def put(self, identity: str, key: str, progress: Progress) -> None:
        pass


class RedisProgressMirror(RemoteProgressMirror):
    """Stores progress in Redis; entries expire after ``ttl_seconds``."""

    def __init__(self, client, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: Optional[int] = None) -> "RedisProgressMirror":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds)

    @staticmethod
    def _key(identity: str, key: str) -> str:
        return f"quizbank:progress:{identity}:{key}"

    def get(self, identity: str, key: str) -> Optional[Progress]:
        raw = self.client.get(self._key(identity, key))
        if raw is None:
            return None
        return Progress.model_validate_json(raw)

    def put(self, identity: str, key: str, progress: Progress) -> None:
        self.client.set(
            self._key(identity, key),
            progress.model_dump_json(exclude_none=True),
            ex=self.ttl_seconds,
        )


# --- Facade ---
class ProgressStore:
    def __init__(
        self,
        local: LocalProgressStore,
        remote: Optional[RemoteProgressMirror] = None,
        identity: Optional[str] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.local = local
        self.remote = remote
        self.identity = identity
        self.executor = executor or _mirror_executor

    @property
    def mirrored(self) -> bool:
        return self.remote is not None and bool(self.identity)

    def save(self, key: str, progress: Progress) -> Optional[Future]:
        """Writes locally; returns the pending mirror write, if any."""
        self.local.put(key, progress)
        if not self.mirrored:
            return None
        return self.executor.submit(self._mirror_put, key, progress)

    def _mirror_put(self, key: str, progress: Progress) -> None:
        try:
            self.remote.put(self.identity, key, progress)
        except Exception as e:
            logger.error(f"Failed to mirror progress {key} for {self.identity}: {e}")

    def _load_local(self, key: str) -> Optional[Progress]:
        try:
            return self.local.get(key)
        except MalformedPersistedState as e:
            logger.error(f"{e}; clearing entry")
            self.local.delete(key)
            return None

    def _load_remote(self, key: str) -> Optional[Progress]:
        try:
            return self.remote.get(self.identity, key)
        except Exception as e:
            logger.error(f"Error fetching remote progress {key}: {e}")
            return None

    def load(self, key: str, expected_total: Optional[int] = None) -> Optional[Progress]:
        local = self._load_local(key)
        progress = local
        if self.mirrored:
            remote = self._load_remote(key)
            progress = reconcile(local, remote)
            if progress is not None and progress is remote:
                logger.info(f"Remote progress for {key} is ahead, updating local copy")
                self.local.put(key, progress)

        if progress is not None and expected_total is not None:
            try:
                check_total(progress, expected_total)
            except StaleProgressMismatch as e:
                logger.warning(f"Discarding stale progress for {key}: {e}")
                return None
        return progress

    def clear(self, key: str) -> None:
        # Remote copies expire on their own
        self.local.delete(key)
