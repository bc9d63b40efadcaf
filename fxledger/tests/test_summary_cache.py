import re
import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from fxledger.engine import build_engine
from fxledger.repository import InMemoryRepository
from fxledger.summary_cache import (
    InMemorySummaryCache,
    RedisSummaryCache,
    SummaryCache,
    glob_escape,
    summary_key,
    user_prefix,
)


def redis_glob(pattern: str) -> re.Pattern:
    """Compile a Redis MATCH pattern (escapes, *, ? and [classes])."""
    parts = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            parts.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[" and "]" in pattern[index + 1 :]:
            end = pattern.index("]", index + 1)
            parts.append("[" + re.escape(pattern[index + 1 : end]) + "]")
            index = end + 1
            continue
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


class FakeRedis:
    """Dict-backed client that honours Redis glob syntax in scan_iter."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value

    def scan_iter(self, match="*"):
        compiled = redis_glob(match)
        return iter([key for key in list(self.data) if compiled.match(key)])

    def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)


class SummaryKeyTests(unittest.TestCase):
    def test_key_sorts_account_ids(self) -> None:
        key = summary_key("user-1", "2024-05-01", "", "USD", ["b", "a"])

        self.assertEqual(key, "finance:summary:user-1:2024-05-01::USD:a,b")
        self.assertTrue(key.startswith(user_prefix("user-1")))
        self.assertFalse(key.startswith(user_prefix("user-10")))


class InMemorySummaryCacheTests(unittest.TestCase):
    def test_entries_expire_after_ttl(self) -> None:
        store = InMemorySummaryCache()
        with mock.patch("fxledger.summary_cache.time.monotonic", return_value=100.0):
            store.set("k", "v", 30)
        with mock.patch("fxledger.summary_cache.time.monotonic", return_value=129.0):
            self.assertEqual(store.get("k"), "v")
        with mock.patch("fxledger.summary_cache.time.monotonic", return_value=130.0):
            self.assertIsNone(store.get("k"))

    def test_invalidate_user_keeps_other_users(self) -> None:
        cache = SummaryCache(InMemorySummaryCache())
        mine = summary_key("user-1", "", "", "USD", None)
        theirs = summary_key("user-2", "", "", "USD", None)
        cache.write(mine, "{}")
        cache.write(theirs, "{}")

        cache.invalidate_user("user-1")

        self.assertIsNone(cache.read(mine))
        self.assertEqual(cache.read(theirs), "{}")

        cache.invalidate_all()
        self.assertIsNone(cache.read(theirs))


class RedisSummaryCacheTests(unittest.TestCase):
    def test_set_uses_expiry(self) -> None:
        client = mock.Mock()
        store = RedisSummaryCache(client)

        store.set("k", "v", 30)

        client.set.assert_called_once_with("k", "v", ex=30)

    def test_delete_prefix_scans_and_deletes(self) -> None:
        client = mock.Mock()
        client.scan_iter.return_value = iter(["finance:summary:u:1", "finance:summary:u:2"])
        store = RedisSummaryCache(client)

        store.delete_prefix("finance:summary:u:")

        client.scan_iter.assert_called_once_with(match="finance:summary:u:*")
        client.delete.assert_called_once_with("finance:summary:u:1", "finance:summary:u:2")

    def test_delete_prefix_without_matches_skips_delete(self) -> None:
        client = mock.Mock()
        client.scan_iter.return_value = iter([])

        RedisSummaryCache(client).delete_prefix("finance:summary:")

        client.delete.assert_not_called()

    def test_delete_prefix_escapes_glob_characters(self) -> None:
        client = mock.Mock()
        client.scan_iter.return_value = iter([])

        RedisSummaryCache(client).delete_prefix(user_prefix("team[1]"))

        client.scan_iter.assert_called_once_with(match="finance:summary:team\\[1\\]:*")
        self.assertEqual(glob_escape("a*b?c\\d"), "a\\*b\\?c\\\\d")

    def test_bracketed_user_sees_fresh_summary_after_mutation(self) -> None:
        user = "team[1]"
        engine = build_engine(
            InMemoryRepository(),
            reference_rates={},
            cache=SummaryCache(RedisSummaryCache(FakeRedis())),
            today=lambda: date(2024, 5, 15),
        )
        cash = engine.ledger.create_account(user, name="Cash", account_type="cash", currency="USD")
        engine.ledger.create_transaction(user, type="income", account_id=cash.id, amount="120")
        before = engine.summaries.summary(user, base_currency="USD")

        engine.ledger.create_transaction(user, type="income", account_id=cash.id, amount="30")
        after = engine.summaries.summary(user, base_currency="USD")

        self.assertEqual(before.totals.income, Decimal("120"))
        self.assertEqual(after.totals.income, Decimal("150"))

    def test_invalidating_wildcard_user_leaves_other_users(self) -> None:
        client = FakeRedis()
        cache = SummaryCache(RedisSummaryCache(client))
        mine = summary_key("u*", "", "", "USD", None)
        theirs = summary_key("u1", "", "", "USD", None)
        cache.write(mine, "{}")
        cache.write(theirs, "{}")

        cache.invalidate_user("u*")

        self.assertIsNone(cache.read(mine))
        self.assertEqual(cache.read(theirs), "{}")

    def test_store_errors_are_swallowed(self) -> None:
        client = mock.Mock()
        client.get.side_effect = ConnectionError("down")
        client.set.side_effect = ConnectionError("down")
        client.scan_iter.side_effect = ConnectionError("down")
        cache = SummaryCache(RedisSummaryCache(client), ttl_seconds=5)

        self.assertIsNone(cache.read("k"))
        cache.write("k", "v")
        cache.invalidate_user("user-1")
        cache.invalidate_all()


if __name__ == "__main__":
    unittest.main()
