"""
Integration tests for the SQLite storage client.

Tests cover:
- Record CRUD by id and query
- Value encoding (dates, bytes)
- Unique and plain indexes
- File-backed databases
- Id helpers
"""

import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from entdoc.errors import UsageError
from entdoc.sqlite_client import SqliteClient, decode_value, encode_value


class TestValueEncoding:
    """Tests for encode_value/decode_value."""

    def test_tagged_values(self):
        """Dates and bytes are tagged."""
        aware = datetime(2020, 1, 1, tzinfo=timezone.utc)
        encoded = encode_value({"when": aware, "blob": b"ab", "items": [datetime(2020, 1, 1)]})
        assert encoded["when"] == {"$date": "2020-01-01T00:00:00+00:00"}
        assert encoded["blob"] == {"$binary": "YWI="}
        assert decode_value(encoded) == {"when": aware, "blob": b"ab", "items": [datetime(2020, 1, 1)]}


class TestSqliteClient:
    """Tests for SqliteClient."""

    @pytest.mark.asyncio
    async def test_insert_and_find(self, client):
        """Inserted records get a native id."""
        record_id = await client.save("things", None, {"name": "A", "n": 1})
        assert client.is_native_id(record_id)
        assert await client.find_one("things", {"_id": record_id}) == {"_id": record_id, "name": "A", "n": 1}

    @pytest.mark.asyncio
    async def test_upsert_merges(self, client):
        """Saving with an id merges values into the record."""
        record_id = await client.save("things", None, {"name": "A", "n": 1})
        await client.save("things", record_id, {"n": 2})
        assert await client.find_one("things", {"_id": record_id}) == {"_id": record_id, "name": "A", "n": 2}

    @pytest.mark.asyncio
    async def test_find_with_options(self, client):
        """find() filters, sorts and pages."""
        for n in [3, 1, 2, 5]:
            await client.save("things", None, {"n": n})
        records = await client.find("things", {"n": {"$gt": 1}}, sort="-n", skip=1, limit=2)
        assert [r["n"] for r in records] == [3, 2]

    @pytest.mark.asyncio
    async def test_deletes_and_count(self, client):
        """delete/delete_many/count work on matching records."""
        first = await client.save("things", None, {"n": 1})
        await client.save("things", None, {"n": 1})
        await client.save("things", None, {"n": 2})
        assert await client.delete("things", first) == 1
        assert await client.delete("things", first) == 0
        assert await client.count("things", {"n": 1}) == 1
        assert await client.delete_many("things", {}) == 2
        assert await client.count("things", {}) == 0

    @pytest.mark.asyncio
    async def test_find_one_and_update_unset(self, client):
        """$unset removes keys."""
        record_id = await client.save("things", None, {"a": 1, "b": 2})
        updated = await client.find_one_and_update("things", {"a": 1}, {"$unset": ["b"], "c": 3})
        assert updated == {"_id": record_id, "a": 1, "c": 3}

    @pytest.mark.asyncio
    async def test_unique_index(self, client):
        """Unique indexes reject duplicates."""
        await client.create_index("things", "email", unique=True)
        await client.save("things", None, {"email": "a"})
        with pytest.raises(sqlite3.IntegrityError):
            await client.save("things", None, {"email": "a"})
        assert await client.count("things", {}) == 1

    @pytest.mark.asyncio
    async def test_plain_index(self, client):
        """Non-unique indexes allow duplicates."""
        await client.create_index("things", "score")
        await client.save("things", None, {"score": 1})
        await client.save("things", None, {"score": 1})
        assert await client.count("things", {"score": 1}) == 2

    @pytest.mark.asyncio
    async def test_invalid_names(self, client):
        """Collection and index names are checked."""
        with pytest.raises(UsageError):
            await client.save("bad name;", None, {})
        with pytest.raises(UsageError):
            await client.create_index("things", "x') --")

    @pytest.mark.asyncio
    async def test_drop_database(self, client):
        """drop_database removes every collection."""
        await client.save("a", None, {"x": 1})
        await client.save("b", None, {"x": 1})
        await client.drop_database()
        assert await client.count("a", {}) == 0

    def test_id_helpers(self, client):
        """Ids are 16-character alphanumeric strings."""
        assert client.native_id_type() is str
        assert client.is_native_id("abcdefABCDEF0123")
        assert not client.is_native_id("abc")
        assert not client.is_native_id(1234567890123456)
        assert client.to_canonical_id("x") == "x"
        assert client.to_native_id(5) == "5"

    @pytest.mark.asyncio
    async def test_file_backed(self):
        """File databases persist across clients."""
        with tempfile.TemporaryDirectory() as tmpdir:
            url = f"sqlite:///{tmpdir}/data/app.db"
            db = await SqliteClient.connect(url, register=False)
            record_id = await db.save("things", None, {"n": 1})
            await db.close()

            assert (Path(tmpdir) / "data" / "app.db").exists()
            reopened = await SqliteClient.connect(url, register=False)
            assert (await reopened.find_one("things", {"_id": record_id}))["n"] == 1
            await reopened.close()
