from datetime import date, timedelta

import pytest

from sentimeter.core.cache import MemoryStepCacheBackend, SQLiteStepCacheBackend, StepCache
from sentimeter.models.datatypes import RunKey, Schedule

MORNING = RunKey(date(2024, 1, 15), Schedule.MORNING)
EVENING = RunKey(date(2024, 1, 15), Schedule.EVENING)
NEXT_DAY = RunKey(date(2024, 1, 16), Schedule.MORNING)


def test_empty_cache_resumes_from_first_step(step_cache):
    assert step_cache.resume_point(MORNING, 3) == 1


@pytest.mark.parametrize("completed, expected", [(1, 2), (2, 3), (3, 4)])
def test_resume_point_follows_completed_steps(step_cache, completed, expected):
    for step in range(1, completed + 1):
        step_cache.set(MORNING, step, {"step": step})
    assert step_cache.resume_point(MORNING, 3) == expected


def test_resume_point_stops_at_first_gap(step_cache):
    step_cache.set(MORNING, 1, {})
    step_cache.set(MORNING, 3, [])
    assert step_cache.resume_point(MORNING, 3) == 2


def test_entry_expires_after_ttl(step_cache, clock):
    step_cache.set(MORNING, 1, {"new_articles": 4})

    clock.advance(minutes=30)
    assert step_cache.resume_point(MORNING, 3) == 2
    assert step_cache.get(MORNING, 1) == {"new_articles": 4}

    clock.advance(minutes=60)
    assert step_cache.resume_point(MORNING, 3) == 1
    assert step_cache.get(MORNING, 1) is None


def test_entry_at_exact_ttl_is_still_valid(step_cache, clock):
    step_cache.set(MORNING, 1, "done")
    clock.advance(seconds=3600)
    assert step_cache.get(MORNING, 1) == "done"
    clock.advance(seconds=1)
    assert step_cache.get(MORNING, 1) is None


def test_set_overwrites_and_refreshes_timestamp(step_cache, clock):
    step_cache.set(MORNING, 2, {"v": 1})
    clock.advance(minutes=50)
    step_cache.set(MORNING, 2, {"v": 2})
    clock.advance(minutes=50)
    assert step_cache.get(MORNING, 2) == {"v": 2}


def test_clear_only_touches_its_run_key(step_cache):
    for key in (MORNING, EVENING, NEXT_DAY):
        step_cache.set(key, 1, str(key))
    step_cache.clear(MORNING)

    assert step_cache.get(MORNING, 1) is None
    assert step_cache.get(EVENING, 1) == str(EVENING)
    assert step_cache.get(NEXT_DAY, 1) == str(NEXT_DAY)


def test_entry_carries_its_cache_time(step_cache, clock):
    written_at = clock.now()
    step_cache.set(MORNING, 2, {"tickers": []})
    clock.advance(minutes=5)

    entry = step_cache.entry(MORNING, 2)
    assert entry.run_key == MORNING
    assert entry.step == 2
    assert entry.cached_at == written_at
    assert entry.payload == {"tickers": []}
    assert step_cache.entry(MORNING, 3) is None


def test_malformed_payload_reads_as_absent(clock):
    backend = MemoryStepCacheBackend()
    cache = StepCache(backend, clock=clock)
    backend.write(MORNING, 1, clock.now().isoformat(), "{not json")
    backend.write(MORNING, 2, "yesterday-ish", "{}")

    assert cache.get(MORNING, 1) is None
    assert cache.get(MORNING, 2) is None
    assert cache.resume_point(MORNING, 3) == 1


def test_naive_timestamp_is_treated_as_utc(clock):
    backend = MemoryStepCacheBackend()
    cache = StepCache(backend, clock=clock)
    naive = (clock.now() - timedelta(minutes=10)).replace(tzinfo=None)
    backend.write(MORNING, 1, naive.isoformat(), "[1, 2]")
    assert cache.get(MORNING, 1) == [1, 2]


def test_unserialisable_payload_is_not_cached(step_cache):
    step_cache.set(MORNING, 1, {"when": object()})
    assert step_cache.get(MORNING, 1) is None


def test_sqlite_backend_survives_a_new_process(tmp_path, clock):
    db_path = str(tmp_path / "cache.db")
    StepCache(SQLiteStepCacheBackend(db_path), clock=clock).set(MORNING, 1, {"new_articles": 7})
    StepCache(SQLiteStepCacheBackend(db_path), clock=clock).set(EVENING, 1, {"new_articles": 2})

    reopened = StepCache(SQLiteStepCacheBackend(db_path), clock=clock)
    assert reopened.get(MORNING, 1) == {"new_articles": 7}
    assert reopened.resume_point(MORNING, 3) == 2

    reopened.clear(MORNING)
    assert reopened.get(MORNING, 1) is None
    assert reopened.get(EVENING, 1) == {"new_articles": 2}
