"""
キャッシュマネージャー - 注入型のTTL付きLRUキャッシュ
"""
import time
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional
from dataclasses import dataclass

from config import CacheConfig, cache_config

logger = logging.getLogger(__name__)

@dataclass
class CacheEntry:
    """保存時刻と参照回数つきのエントリ"""
    value: Any
    stored_at: float
    reads: int = 0

    def age(self, now: float) -> float:
        return now - self.stored_at

class LRUCache:
    """TTL付きLRUキャッシュ（スレッドセーフ）

    参照されたエントリは末尾へ移り、容量を超えると先頭から追い出される。
    期限切れのエントリは参照時・書き込み時・クリーンアップ時に取り除く。
    """

    def __init__(self, max_size: int = 100, ttl_seconds: int = 3600, clock=time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._counters = {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0}

    def _is_stale(self, entry: CacheEntry, now: float) -> bool:
        return entry.age(now) > self.ttl_seconds

    def _pop_expired(self, now: float) -> int:
        """期限切れエントリを全て削除して件数を返す（ロック保持中に呼ぶ）"""
        stale = [key for key, entry in self._entries.items() if self._is_stale(entry, now)]
        for key in stale:
            del self._entries[key]
        self._counters["expirations"] += len(stale)
        return len(stale)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_size:
            key, _ = self._entries.popitem(last=False)
            self._counters["evictions"] += 1
            logger.debug(f"Evicted cache item: {key}")

    def get(self, key: str) -> Optional[Any]:
        """キーの値を取得（期限切れはミス扱い）"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_stale(entry, self._clock()):
                del self._entries[key]
                self._counters["expirations"] += 1
                entry = None

            if entry is None:
                self._counters["misses"] += 1
                return None

            entry.reads += 1
            self._entries.move_to_end(key)
            self._counters["hits"] += 1
            return entry.value

    def put(self, key: str, value: Any) -> None:
        """キーに値を設定"""
        with self._lock:
            now = self._clock()
            # 満杯なら期限切れから先に捨てる
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._pop_expired(now)
            self._entries[key] = CacheEntry(value, now)
            self._entries.move_to_end(key)
            self._evict_overflow()

    def clear(self) -> None:
        """キャッシュと統計をリセット"""
        with self._lock:
            self._entries.clear()
            for name in self._counters:
                self._counters[name] = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def hit_rate(self) -> float:
        with self._lock:
            lookups = self._counters["hits"] + self._counters["misses"]
            return self._counters["hits"] / lookups if lookups else 0.0

    def cleanup_expired(self) -> int:
        """期限切れアイテムをクリーンアップ"""
        with self._lock:
            removed = self._pop_expired(self._clock())
        logger.debug(f"Cleaned up {removed} expired cache items")
        return removed

    def stats(self) -> Dict[str, Any]:
        """キャッシュ統計を取得"""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hit_rate": self.hit_rate(),
                **self._counters
            }

class CacheManager:
    """建物影キャッシュと候補ルートキャッシュを所有する"""

    def __init__(self, config: CacheConfig = None):
        self.config = config or cache_config
        self.shadow_cache = LRUCache(
            max_size=self.config.max_cache_size,
            ttl_seconds=self.config.cache_ttl_seconds
        )
        self.route_cache = LRUCache(
            max_size=self.config.max_cache_size * 2,  # ルートキャッシュは多めに
            ttl_seconds=self.config.route_cache_ttl_seconds
        )
        self._cleanup_thread = None
        self._stop_event = threading.Event()

    def start_cleanup_thread(self):
        """クリーンアップスレッドを開始"""
        if self._cleanup_thread is None or not self._cleanup_thread.is_alive():
            self._stop_event.clear()
            self._cleanup_thread = threading.Thread(
                target=self._cleanup_worker,
                daemon=True
            )
            self._cleanup_thread.start()

    def stop_cleanup_thread(self):
        """クリーンアップスレッドを停止"""
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1.0)
            self._cleanup_thread = None

    def _cleanup_worker(self):
        """定期的なクリーンアップワーカー"""
        while not self._stop_event.wait(self.config.cleanup_interval_seconds):
            try:
                shadow_cleaned = self.shadow_cache.cleanup_expired()
                route_cleaned = self.route_cache.cleanup_expired()

                if shadow_cleaned > 0 or route_cleaned > 0:
                    logger.info(f"Cache cleanup: {shadow_cleaned} shadow items, {route_cleaned} route items")
            except Exception as e:
                logger.error(f"Cache cleanup error: {e}")

    def shadows(self) -> Optional[LRUCache]:
        """影データ用キャッシュ（無効時はNone）"""
        return self.shadow_cache if self.config.shadow_cache_enabled else None

    def routes(self) -> Optional[LRUCache]:
        """候補ルート用キャッシュ（無効時はNone）"""
        return self.route_cache if self.config.route_cache_enabled else None

    def clear_all(self) -> None:
        """全キャッシュをクリア"""
        self.shadow_cache.clear()
        self.route_cache.clear()

    def stats(self) -> Dict[str, Any]:
        """キャッシュ統計を取得"""
        return {
            "shadow_cache": self.shadow_cache.stats(),
            "route_cache": self.route_cache.stats()
        }
