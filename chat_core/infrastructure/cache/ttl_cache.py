"""带过期时间的内存 KV 缓存。

每个条目记录自己的过期时刻，过期后对读者不可见；
采用读时惰性淘汰，不需要后台清理线程。
"""

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple, Union

Seconds = Union[float, int, timedelta]


@dataclass(frozen=True)
class CacheEntry:
    value: str
    expires_at: float


class TTLCache:
    """线程安全的 TTL 缓存。

    - set: 写入并覆盖同名条目，expires_at = now + ttl。
    - get: 仅当 now < expires_at 时命中。
    - clock: 单调时钟，测试中可替换为可控时钟。
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: str, ttl: Seconds) -> None:
        if isinstance(ttl, timedelta):
            ttl = ttl.total_seconds()
        # 条目不可变，整体替换即可保证读者看不到半写状态
        entry = CacheEntry(value=value, expires_at=self._clock() + float(ttl))
        with self._lock:
            self._entries[key] = entry

    def get(self, key: str) -> Tuple[Optional[str], bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None, False
            return entry.value, True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for e in self._entries.values() if now < e.expires_at)
