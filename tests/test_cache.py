"""
Tests for the warehouse cache.
"""

from decimal import Decimal

import pytest

from core.config import CacheConfig
from ingestion.types import CanonicalBlock
from storage.cache import LRUCache, WarehouseCache
from storage.types import AddressBalance


def block(network_id, height):
    return CanonicalBlock(
        network_id=network_id,
        height=height,
        hash=f"{height:064x}",
        parent_hash=None,
        timestamp=0,
        tx_count=0,
    )


def balance(network_id, address, amount):
    return AddressBalance(network_id, address, None, {"ETH": Decimal(amount)})


# =============================================================
# TEST: LRUCache
# =============================================================

class TestLRUCache:
    """Test bounded LRU behaviour."""

    def test_evicts_least_recently_used(self):
        cache = LRUCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_stats(self):
        cache = LRUCache(1)
        cache.put("a", 1)
        cache.get("a")
        cache.get("missing")
        cache.put("b", 2)

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["evictions"] == 1
        assert stats["hit_rate"] == 0.5

    def test_discard_where(self):
        cache = LRUCache(10)
        for n in range(5):
            cache.put(n, n)

        assert cache.discard_where(lambda key: key >= 3) == 2
        assert len(cache) == 3

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            LRUCache(0)


# =============================================================
# TEST: WarehouseCache
# =============================================================

class TestWarehouseCache:
    """Test the warehouse invalidation rules."""

    def test_invalidate_blocks_above(self):
        cache = WarehouseCache(16, 16)
        for height in range(5):
            cache.put_block(block("eth", height))
        cache.put_block(block("btc", 4))

        assert cache.invalidate_blocks_above("eth", 2) == 2
        assert cache.get_block("eth", 2) is not None
        assert cache.get_block("eth", 3) is None
        assert cache.get_block("btc", 4) is not None

    def test_stale_balance_is_dropped(self):
        """A snapshot computed before an invalidation is not stored."""
        cache = WarehouseCache(16, 16)
        generation = cache.generation("eth")

        cache.invalidate_balances("eth", ["0xa"])

        assert not cache.put_balance(balance("eth", "0xa", 5), generation)
        assert cache.get_balance("eth", "0xa") is None
        assert cache.put_balance(balance("eth", "0xa", 5), cache.generation("eth"))

    def test_untouched_balance_goes_stale(self):
        """Any invalidation of the network retires snapshots of other addresses too."""
        cache = WarehouseCache(16, 16)
        cache.put_balance(balance("eth", "0xa", 1))
        cache.put_balance(balance("btc", "bc1", 3))

        cache.invalidate_balances("eth", ["0xb"])

        assert cache.get_balance("eth", "0xa") is None
        assert cache.get_balance("btc", "bc1").get("ETH") == Decimal(3)

    def test_network_balance_invalidation(self):
        cache = WarehouseCache(16, 16)
        cache.put_balance(balance("eth", "0xa", 1))
        cache.put_balance(balance("eth", "0xb", 2))
        cache.put_balance(balance("btc", "bc1", 3))

        assert cache.invalidate_network_balances("eth") == 2
        assert cache.get_balance("btc", "bc1").get("ETH") == Decimal(3)
        assert cache.generation("eth") == 1
        assert cache.generation("btc") == 0

    def test_from_config(self):
        assert WarehouseCache.from_config(CacheConfig(enabled=False)) is None

        cache = WarehouseCache.from_config(CacheConfig(block_cache_size=3, balance_cache_size=4))
        stats = cache.get_stats()
        assert stats["blocks"]["capacity"] == 3
        assert stats["balances"]["capacity"] == 4


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
