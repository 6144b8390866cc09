"""
Unit tests for entries and entry stores.
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from ipaddress import ip_address
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_gate.app.entries.models import Entry, rule_from_record, rule_to_record
from service_gate.app.entries.redis_store import RedisEntryStore
from service_gate.app.entries.store import InMemoryEntryStore
from service_gate.app.rules.models import AddressRule, CommentRule, PatternRule
from service_gate.app.rules.parser import parse_rules
from shared.errors import StoreError


@pytest.fixture
def entry():
    """Create an entry with a mixed rule list."""
    rules = parse_rules("*\n!10.0.0.0/8\n@ 1, 2 (3km)\nipcat tor*")
    rules.append(PatternRule(re.compile(r"^host#1\.example$")))
    return Entry(
        name="abc123",
        url="https://example.com/report.pdf",
        content_type="application/pdf",
        redirect=True,
        creation=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        access_expire=True,
        access_expire_count=5,
        access_count=2,
        access_blacklist=rules,
        access_blacklist_count=1,
    )


class TestEntry:
    """Test cases for Entry."""

    def test_is_file(self):
        """Test entries without a URL are files."""
        assert Entry(name="a", filename="a.png").is_file is True
        assert Entry(name="a", url="https://example.com").is_file is False

    @pytest.mark.parametrize("expire,limit,count,expected", [
        (False, 0, 100, False),
        (True, 3, 2, False),
        (True, 3, 3, True),
        (True, 3, 4, True),
        (True, 0, 0, True),
    ])
    def test_is_expired(self, expire, limit, count, expected):
        """Test expiry by access count."""
        entry = Entry(name="a", access_expire=expire, access_expire_count=limit, access_count=count)

        assert entry.is_expired() is expected

    def test_dict_round_trip(self, entry):
        """Test serialization preserves every field."""
        restored = Entry.from_dict(json.loads(json.dumps(entry.to_dict())))

        assert restored.to_dict() == entry.to_dict()
        assert restored.creation == entry.creation

    def test_pattern_with_hash_survives(self, entry):
        """Test stored rules are not cut at comment markers."""
        restored = Entry.from_dict(entry.to_dict())

        pattern = restored.access_blacklist[4]
        assert isinstance(pattern, PatternRule)
        assert pattern.pattern.pattern == r"^host#1\.example$"

    def test_rule_comment_round_trip(self):
        """Test rule comments are kept alongside the rule."""
        rule = AddressRule(ip_address("1.2.3.4"), comment="Added by hand")

        assert rule_from_record(rule_to_record(rule)) == rule

    def test_comment_record(self):
        """Test records without rule text are comments."""
        rule = rule_from_record({"rule": "", "comment": "Office network below"})

        assert isinstance(rule, CommentRule)
        assert rule.comment == "Office network below"

    def test_blacklist_from_text(self):
        """Test rule-language text is accepted when loading."""
        entry = Entry.from_dict({"name": "a", "access_blacklist": "*\n!1.2.3.4"})

        assert len(entry.access_blacklist) == 2

    def test_defaults(self):
        """Test minimal documents load with defaults."""
        entry = Entry.from_dict({"name": "a"})

        assert entry.access_count == 0
        assert len(entry.access_blacklist) == 0
        assert entry.access_train is False


class TestInMemoryEntryStore:
    """Test cases for InMemoryEntryStore."""

    @pytest.mark.asyncio
    async def test_get_missing(self):
        """Test unknown names give None."""
        assert await InMemoryEntryStore().get("nope") is None

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, entry):
        """Test changes are invisible until committed."""
        store = InMemoryEntryStore([entry])

        copy = await store.get("abc123")
        copy.access_count += 10
        copy.access_blacklist.append(AddressRule(ip_address("1.1.1.1")))

        stored = await store.get("abc123")
        assert stored.access_count == 2
        assert len(stored.access_blacklist) == 5

    @pytest.mark.asyncio
    async def test_commit(self, entry):
        """Test committed changes are visible."""
        store = InMemoryEntryStore([entry])

        copy = await store.get("abc123")
        copy.access_count = 3
        await store.commit(copy)
        copy.access_count = 99

        assert (await store.get("abc123")).access_count == 3

    @pytest.mark.asyncio
    async def test_lock_is_per_name(self):
        """Test the same name shares a lock while it is in use."""
        store = InMemoryEntryStore()

        lock = store.lock("a")
        async with lock:
            assert store.lock("a") is lock
            assert store.lock("b") is not lock

    @pytest.mark.asyncio
    async def test_lock_serializes(self, entry):
        """Test read-modify-commit under the lock loses no updates."""
        store = InMemoryEntryStore([entry])

        async def bump():
            async with store.lock("abc123"):
                current = await store.get("abc123")
                await asyncio.sleep(0)
                current.access_count += 1
                await store.commit(current)

        await asyncio.gather(*(bump() for _ in range(25)))

        assert (await store.get("abc123")).access_count == 27

    def test_put_and_delete(self, entry):
        """Test administrative helpers."""
        store = InMemoryEntryStore()
        store.put(entry)

        assert store.names() == ["abc123"]
        assert store.delete("abc123") is True
        assert store.delete("abc123") is False
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path, entry):
        """Test loading entries from JSON."""
        path = tmp_path / "entries.json"
        path.write_text(json.dumps([entry.to_dict(), {"name": "b", "filename": "b.txt"}]))

        store = InMemoryEntryStore.from_file(path)

        assert store.names() == ["abc123", "b"]
        assert (await store.get("b")).filename == "b.txt"

    @pytest.mark.parametrize("content", ["{not json", '{"name": "a"}', '[{"url": "x"}]'])
    def test_from_file_invalid(self, tmp_path, content):
        """Test unusable files raise StoreError."""
        path = tmp_path / "entries.json"
        path.write_text(content)

        with pytest.raises(StoreError):
            InMemoryEntryStore.from_file(path)

    def test_from_file_missing(self, tmp_path):
        """Test a missing file raises StoreError."""
        with pytest.raises(StoreError):
            InMemoryEntryStore.from_file(tmp_path / "missing.json")


class TestRedisEntryStore:
    """Test cases for RedisEntryStore."""

    @pytest.fixture
    def redis_client(self):
        """Mock Redis client."""
        client = AsyncMock()
        client.lock = MagicMock()
        return client

    @pytest.fixture
    def store(self, redis_client):
        """Create RedisEntryStore with mocked client."""
        store = RedisEntryStore("redis://localhost:6379/0", lock_timeout=2.0)
        store.redis = redis_client
        return store

    @pytest.mark.asyncio
    async def test_get(self, store, redis_client, entry):
        """Test entries are decoded from JSON."""
        redis_client.get.return_value = json.dumps(entry.to_dict())

        result = await store.get("abc123")

        assert result.to_dict() == entry.to_dict()
        redis_client.get.assert_called_once_with("entry:abc123")

    @pytest.mark.asyncio
    async def test_get_missing(self, store, redis_client):
        """Test missing keys give None."""
        redis_client.get.return_value = None

        assert await store.get("abc123") is None

    @pytest.mark.asyncio
    async def test_get_corrupt(self, store, redis_client):
        """Test undecodable documents raise StoreError."""
        redis_client.get.return_value = "{broken"

        with pytest.raises(StoreError):
            await store.get("abc123")

    @pytest.mark.asyncio
    async def test_get_connection_error(self, store, redis_client):
        """Test Redis failures raise StoreError."""
        redis_client.get.side_effect = RedisConnectionError("down")

        with pytest.raises(StoreError):
            await store.get("abc123")

    @pytest.mark.asyncio
    async def test_commit(self, store, redis_client, entry):
        """Test entries are stored as JSON."""
        await store.commit(entry)

        key, value = redis_client.set.call_args.args
        assert key == "entry:abc123"
        assert json.loads(value) == entry.to_dict()

    @pytest.mark.asyncio
    async def test_lock(self, store, redis_client):
        """Test the entry lock is acquired and released."""
        lock = AsyncMock()
        lock.acquire.return_value = True
        redis_client.lock.return_value = lock

        async with store.lock("abc123"):
            lock.release.assert_not_called()

        redis_client.lock.assert_called_once_with("entry-lock:abc123", timeout=2.0, blocking_timeout=2.0)
        lock.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_lock_timeout(self, store, redis_client):
        """Test failing to acquire the lock raises StoreError."""
        lock = AsyncMock()
        lock.acquire.return_value = False
        redis_client.lock.return_value = lock

        with pytest.raises(StoreError):
            async with store.lock("abc123"):
                pass

    @pytest.mark.asyncio
    async def test_stop(self, store, redis_client):
        """Test stopping closes the client."""
        await store.stop()

        redis_client.aclose.assert_called_once()
