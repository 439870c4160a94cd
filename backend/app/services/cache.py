"""
Read Cache Service - 読み取りキャッシュ

プロセス内の TTL 付きキャッシュ。読み取り優先の読み書きロックで保護する。
書き込みがコミットされるたびに、該当する大学に関係するキーを無効化する。
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# キー接頭辞
ALL_UNIVERSITIES = "universities:all"
UNIVERSITY = "universities:"
SEARCH = "universities:search:"
DEPARTMENT = "departments:"
MAJOR = "majors:"
ADMISSION_SCHEDULE = "admission_schedules:"
ADMISSION_INFO = "admission_infos:"
TEST_TYPE = "test_types:"
SUBJECT = "subjects:"
FILTER_OPTIONS = "filter_options:"

FAMILY_PREFIXES = (UNIVERSITY, DEPARTMENT, MAJOR, ADMISSION_SCHEDULE, ADMISSION_INFO, TEST_TYPE, SUBJECT)


def university_key(university_id: int) -> str:
    return f"{UNIVERSITY}{university_id}"


def search_key(query: str) -> str:
    return f"{SEARCH}{query}"


def department_key(university_id: int, department_id: int) -> str:
    return f"{DEPARTMENT}{university_id}:{department_id}"


def major_key(department_id: int, major_id: int) -> str:
    return f"{MAJOR}{department_id}:{major_id}"


def admission_schedule_key(major_id: int, schedule_id: int) -> str:
    return f"{ADMISSION_SCHEDULE}{major_id}:{schedule_id}"


def admission_info_key(schedule_id: int, info_id: int) -> str:
    return f"{ADMISSION_INFO}{schedule_id}:{info_id}"


def test_type_key(schedule_id: int, test_type_id: int) -> str:
    return f"{TEST_TYPE}{schedule_id}:{test_type_id}"


def subject_key(test_type_id: int, subject_id: int) -> str:
    return f"{SUBJECT}{test_type_id}:{subject_id}"


def filter_options_key(category: Optional[str]) -> str:
    return f"{FILTER_OPTIONS}{category or 'all'}"


class ReadWriteLock:
    """読み取り優先の読み書きロック。読み手がいる間は書き手を待たせる"""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


@dataclass
class CacheScope:
    """ある大学から到達できる ID の集合（無効化の範囲）"""
    university_id: int
    department_ids: List[int] = field(default_factory=list)
    major_ids: List[int] = field(default_factory=list)
    schedule_ids: List[int] = field(default_factory=list)
    test_type_ids: List[int] = field(default_factory=list)

    def merge(self, other: "CacheScope") -> "CacheScope":
        def union(a, b):
            return sorted(set(a) | set(b))
        return CacheScope(
            self.university_id,
            union(self.department_ids, other.department_ids),
            union(self.major_ids, other.major_ids),
            union(self.schedule_ids, other.schedule_ids),
            union(self.test_type_ids, other.test_type_ids),
        )

    def prefixes(self) -> Iterable[str]:
        yield f"{DEPARTMENT}{self.university_id}:"
        for department_id in self.department_ids:
            yield f"{MAJOR}{department_id}:"
        for major_id in self.major_ids:
            yield f"{ADMISSION_SCHEDULE}{major_id}:"
        for schedule_id in self.schedule_ids:
            yield f"{ADMISSION_INFO}{schedule_id}:"
            yield f"{TEST_TYPE}{schedule_id}:"
        for test_type_id in self.test_type_ids:
            yield f"{SUBJECT}{test_type_id}:"


class ReadCache:
    """TTL 付きのプロセス内キャッシュ"""

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._generation = 0
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._cleanup_stop: Optional[threading.Event] = None

    @property
    def generation(self) -> int:
        """無効化のたびに増えるカウンタ。読み込み開始前に取得して set() に渡す"""
        with self._lock.read_locked():
            return self._generation

    def get(self, key: str) -> Tuple[Any, bool]:
        """(値, 存在するか) を返す。期限切れは存在しない扱い"""
        with self._lock.read_locked():
            entry = self._entries.get(key)
            present = entry is not None and entry[1] > self._clock()
        with self._stats_lock:
            if present:
                self._hits += 1
            else:
                self._misses += 1
        return (entry[0], True) if present else (None, False)

    def set(self, key: str, value: Any, ttl: Optional[float] = None, generation: Optional[int] = None) -> bool:
        """
        値を格納する

        generation を渡した場合、読み込み中に無効化が起きていれば古い値とみなして格納しない。
        """
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock.write_locked():
            if generation is not None and generation != self._generation:
                logger.debug("[Cache] skip stale value for %s", key)
                return False
            self._entries[key] = (value, self._clock() + ttl)
            return True

    def delete(self, key: str):
        with self._lock.write_locked():
            self._generation += 1
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock.write_locked():
            self._generation += 1
            return self._delete_prefixes_locked((prefix,))

    def _delete_prefixes_locked(self, prefixes: Iterable[str]) -> int:
        prefixes = tuple(prefixes)
        doomed = [key for key in self._entries if key.startswith(prefixes)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def invalidate_university(self, scope: CacheScope) -> int:
        """大学とその配下のキー、一覧と検索結果を無効化する"""
        with self._lock.write_locked():
            self._generation += 1
            removed = 0
            for key in (ALL_UNIVERSITIES, university_key(scope.university_id)):
                if self._entries.pop(key, None) is not None:
                    removed += 1
            removed += self._delete_prefixes_locked((SEARCH,) + tuple(scope.prefixes()))
        logger.info("[Cache] invalidated university %s (%d entries)", scope.university_id, removed)
        return removed

    def flush_families(self) -> int:
        """大学集約に関するキーをすべて無効化する"""
        with self._lock.write_locked():
            self._generation += 1
            removed = self._delete_prefixes_locked(FAMILY_PREFIXES)
        logger.info("[Cache] flushed aggregate entries (%d entries)", removed)
        return removed

    def clear(self):
        with self._lock.write_locked():
            self._generation += 1
            self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock.write_locked():
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("[Cache] purged %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> Dict[str, int]:
        with self._lock.read_locked():
            entries = len(self._entries)
            generation = self._generation
        with self._stats_lock:
            return {
                "entries": entries,
                "hits": self._hits,
                "misses": self._misses,
                "generation": generation,
            }

    def keys(self) -> List[str]:
        with self._lock.read_locked():
            return sorted(self._entries)

    def start_cleanup(self, interval: float):
        """期限切れエントリを定期的に削除するデーモンスレッドを起動する"""
        if self._cleanup_stop is not None or interval <= 0:
            return
        stop = threading.Event()
        self._cleanup_stop = stop

        def run():
            while not stop.wait(interval):
                self.purge_expired()

        threading.Thread(target=run, name="read-cache-cleanup", daemon=True).start()
        logger.info("[Cache] cleanup every %.0fs", interval)

    def stop_cleanup(self):
        if self._cleanup_stop is not None:
            self._cleanup_stop.set()
            self._cleanup_stop = None


# グローバルシングルトン
read_cache = ReadCache(get_settings().CACHE_TTL)
