from __future__ import annotations

from conftest import InlineExecutor, MemoryMirror, make_question

from quizbank.database import get_db_connection
from quizbank.models import Progress
from quizbank.progress import LocalProgressStore, ProgressStore, RedisProgressMirror, reconcile


def mirrored_store(db_path: str, mirror: MemoryMirror, identity: str = "user-1") -> ProgressStore:
    return ProgressStore(
        LocalProgressStore("client-1", db_path),
        remote=mirror,
        identity=identity,
        executor=InlineExecutor(),
    )


def test_reconcile_prefers_strictly_greater_index() -> None:
    local = Progress(index=3, score=2, total=10)
    remote = Progress(index=7, score=5, total=10)

    assert reconcile(local, remote) is remote
    assert reconcile(remote, local) is remote
    assert reconcile(None, remote) is remote
    assert reconcile(local, None) is local
    assert reconcile(None, None) is None


def test_reconcile_tie_favors_local() -> None:
    local = Progress(index=4, score=1, total=10)
    remote = Progress(index=4, score=3, total=10)

    assert reconcile(local, remote) is local


def test_save_then_load_round_trip(store: ProgressStore) -> None:
    store.save("progress_year_2023_None", Progress(index=2, score=1, total=5))

    loaded = store.load("progress_year_2023_None")

    assert loaded is not None
    assert loaded.index == 2
    assert loaded.score == 1


def test_load_missing_key_returns_none(store: ProgressStore) -> None:
    assert store.load("nothing-here") is None


def test_clear_removes_local_entry(store: ProgressStore) -> None:
    store.save("k", Progress(index=1, score=1, total=5))
    store.clear("k")

    assert store.load("k") is None


def test_local_entries_are_scoped_per_client(db_path: str) -> None:
    ProgressStore(LocalProgressStore("a", db_path)).save("k", Progress(index=1, score=0, total=3))

    assert ProgressStore(LocalProgressStore("b", db_path)).load("k") is None


def test_shuffle_progress_keeps_pinned_questions(store: ProgressStore) -> None:
    pinned = [make_question(9), make_question(4)]
    store.save("progress_shuffle_x", Progress(index=0, score=0, total=2, questions=pinned))

    loaded = store.load("progress_shuffle_x")

    assert [q.id for q in loaded.questions] == ["9", "4"]


def test_malformed_local_entry_is_deleted(store: ProgressStore, db_path: str) -> None:
    conn = get_db_connection(db_path)
    with conn:
        conn.execute(
            "INSERT INTO progress (client_id, session_key, payload) VALUES (?, ?, ?)",
            ("client-1", "broken", "{not json"),
        )
    conn.close()

    assert store.load("broken") is None
    conn = get_db_connection(db_path)
    row = conn.execute("SELECT * FROM progress WHERE session_key = 'broken'").fetchone()
    conn.close()
    assert row is None


def test_stale_total_is_discarded(store: ProgressStore) -> None:
    store.save("k", Progress(index=3, score=2, total=10))

    assert store.load("k", expected_total=8) is None
    assert store.load("k", expected_total=10).index == 3


def test_save_mirrors_when_identity_present(db_path: str, mirror: MemoryMirror) -> None:
    store = mirrored_store(db_path, mirror)

    store.save("k", Progress(index=1, score=1, total=4))

    assert mirror.entries[("user-1", "k")].index == 1


def test_save_without_identity_skips_mirror(db_path: str, mirror: MemoryMirror) -> None:
    store = mirrored_store(db_path, mirror, identity=None)

    assert store.save("k", Progress(index=1, score=1, total=4)) is None
    assert mirror.entries == {}


def test_mirror_failure_is_swallowed(db_path: str, mirror: MemoryMirror, caplog) -> None:
    mirror.fail_puts = True
    store = mirrored_store(db_path, mirror)

    store.save("k", Progress(index=2, score=1, total=4))

    assert store.load("k").index == 2
    assert "Failed to mirror progress" in caplog.text


def test_remote_ahead_wins_and_overwrites_local(db_path: str, mirror: MemoryMirror) -> None:
    local_only = ProgressStore(LocalProgressStore("client-1", db_path))
    local_only.save("k", Progress(index=3, score=2, total=10))
    mirror.entries[("user-1", "k")] = Progress(index=7, score=6, total=10)

    loaded = mirrored_store(db_path, mirror).load("k")

    assert loaded.index == 7
    assert local_only.load("k").index == 7


def test_local_ahead_is_kept(db_path: str, mirror: MemoryMirror) -> None:
    store = mirrored_store(db_path, mirror)
    store.save("k", Progress(index=5, score=4, total=10))
    mirror.entries[("user-1", "k")] = Progress(index=2, score=2, total=10)

    assert store.load("k").index == 5


def test_remote_fetch_failure_falls_back_to_local(db_path: str, mirror: MemoryMirror) -> None:
    store = mirrored_store(db_path, mirror)
    store.save("k", Progress(index=2, score=2, total=10))
    mirror.fail_gets = True

    assert store.load("k").index == 2


def test_clear_keeps_remote_copy(db_path: str, mirror: MemoryMirror) -> None:
    store = mirrored_store(db_path, mirror)
    store.save("k", Progress(index=2, score=2, total=10))

    store.clear("k")

    assert ("user-1", "k") in mirror.entries


class FakeRedis:
    def __init__(self) -> None:
        self.data = {}
        self.expiry = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex


def test_redis_mirror_namespaces_keys_and_sets_ttl() -> None:
    client = FakeRedis()
    mirror = RedisProgressMirror(client, ttl_seconds=3600)

    mirror.put("user-1", "k", Progress(index=4, score=3, total=9))

    assert client.expiry == {"quizbank:progress:user-1:k": 3600}
    assert mirror.get("user-1", "k").index == 4
    assert mirror.get("user-2", "k") is None
