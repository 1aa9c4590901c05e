"""
Storage - Warehouse Cache.

============================================================
PURPOSE
============================================================
Bounded in-memory layer in front of the warehouse for hot
reads during active scanning.

Two keyspaces:
- blocks by (network_id, height)
- balance snapshots by (network_id, address)

The warehouse is the source of truth. Entries are written
only after a successful commit and invalidated on commit
(touched balances), on skip and on revoke (blocks above the
fork, every balance of the network). A balance snapshot is
only served while no invalidation of its network happened
since it was stored. Eviction can never change a query
result, only its cost.

Warehouse calls run in worker threads, so every operation
takes the cache lock.

============================================================
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, Generic, Hashable, Iterable, Optional, Tuple, TypeVar

from core.constants import DEFAULT_BALANCE_CACHE_SIZE, DEFAULT_BLOCK_CACHE_SIZE
from ingestion.types import CanonicalBlock
from storage.types import AddressBalance


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """
    Thread-safe LRU cache with hit/miss statistics.

    Uses OrderedDict for O(1) access and eviction.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._hits += 1
                return self._entries[key]
            self._misses += 1
            return None

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def pop(self, key: K) -> Optional[V]:
        with self._lock:
            return self._entries.pop(key, None)

    def discard_where(self, predicate) -> int:
        """Remove every entry whose key matches ``predicate``."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "capacity": self._capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }


class WarehouseCache:
    """Block and balance keyspaces with the warehouse's invalidation rules."""

    def __init__(
        self,
        block_capacity: int = DEFAULT_BLOCK_CACHE_SIZE,
        balance_capacity: int = DEFAULT_BALANCE_CACHE_SIZE,
    ) -> None:
        self._blocks: LRUCache[Tuple[str, int], CanonicalBlock] = LRUCache(block_capacity)
        self._balances: LRUCache[Tuple[str, str], Tuple[int, AddressBalance]] = LRUCache(balance_capacity)
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> Optional["WarehouseCache"]:
        """Build from a CacheConfig; None when caching is disabled."""
        if not config.enabled:
            return None
        return cls(config.block_cache_size, config.balance_cache_size)

    # =========================================================
    # BLOCKS
    # =========================================================

    def get_block(self, network_id: str, height: int) -> Optional[CanonicalBlock]:
        return self._blocks.get((network_id, height))

    def put_block(self, block: CanonicalBlock) -> None:
        self._blocks.put((block.network_id, block.height), block)

    def invalidate_blocks_above(self, network_id: str, height: int) -> int:
        return self._blocks.discard_where(lambda key: key[0] == network_id and key[1] > height)

    # =========================================================
    # BALANCES
    # =========================================================

    def get_balance(self, network_id: str, address: str) -> Optional[AddressBalance]:
        """Snapshot stored since the network's last invalidation, if any."""
        with self._lock:
            entry = self._balances.get((network_id, address))
            if entry is None:
                return None
            generation, balance = entry
            if generation != self._generations.get(network_id, 0):
                # stale height
                self._balances.pop((network_id, address))
                return None
            return balance

    def generation(self, network_id: str) -> int:
        """Counter bumped by every balance invalidation of a network."""
        with self._lock:
            return self._generations.get(network_id, 0)

    def put_balance(self, balance: AddressBalance, generation: Optional[int] = None) -> bool:
        """
        Store a balance snapshot.

        A snapshot computed before an invalidation (older
        ``generation``) is dropped instead of stored. Stored
        snapshots carry the tip height, so any later
        invalidation of the network makes them stale.
        """
        with self._lock:
            current = self._generations.get(balance.network_id, 0)
            if generation is not None and generation != current:
                return False
            self._balances.put((balance.network_id, balance.address), (current, balance))
            return True

    def invalidate_balances(self, network_id: str, addresses: Iterable[str]) -> None:
        with self._lock:
            self._bump(network_id)
            for address in addresses:
                self._balances.pop((network_id, address))

    def invalidate_network_balances(self, network_id: str) -> int:
        with self._lock:
            self._bump(network_id)
            return self._balances.discard_where(lambda key: key[0] == network_id)

    def _bump(self, network_id: str) -> None:
        self._generations[network_id] = self._generations.get(network_id, 0) + 1

    # =========================================================
    # MAINTENANCE
    # =========================================================

    def clear(self) -> None:
        self._blocks.clear()
        self._balances.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "blocks": self._blocks.get_stats(),
            "balances": self._balances.get_stats(),
        }
