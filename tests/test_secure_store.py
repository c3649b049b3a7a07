"""
Tests for the SecureStore facade: round trips, self-healing, namespaces,
rotation, batches and retries.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FlakyStore
from secure_storage import (
    CipherCodec,
    InvalidKeyError,
    InvalidValueError,
    KeyRotationError,
    SecureStore,
    SecureStoreConfig,
    StorageError,
)


def _corrupt_ciphertext(token: str) -> str:
    """Mutate one character before the second colon (inside the ciphertext)."""
    second_colon = token.index(":", token.index(":") + 1)
    position = second_colon - 1
    replacement = "A" if token[position] != "A" else "B"
    return token[:position] + replacement + token[position + 1 :]


class TestScenario:
    async def test_token_round_trip_and_corruption(self, secure_store, memory_store):
        assert await secure_store.set_item("secure_token", {"id": 42}) is True
        assert await secure_store.get_item("secure_token") == {"id": 42}

        raw = await memory_store.get("secure_token")
        assert raw.count(":") == 2

        await memory_store.set("secure_token", _corrupt_ciphertext(raw))

        assert await secure_store.get_item("secure_token") is None
        assert await secure_store.has_item("secure_token") is False


class TestSingleRecord:
    async def test_missing_key_reads_as_none(self, secure_store):
        assert await secure_store.get_item("secure_missing") is None
        assert await secure_store.has_item("secure_missing") is False

    async def test_overwrite(self, secure_store):
        await secure_store.set_item("secure_count", 1)
        await secure_store.set_item("secure_count", 2)
        assert await secure_store.get_item("secure_count") == 2

    async def test_empty_values_are_stored(self, secure_store):
        await secure_store.set_item("secure_empty_str", "")
        await secure_store.set_item("secure_empty_list", [])
        await secure_store.set_item("secure_empty_dict", {})

        assert await secure_store.get_item("secure_empty_str") == ""
        assert await secure_store.get_item("secure_empty_list") == []
        assert await secure_store.get_item("secure_empty_dict") == {}

    async def test_remove(self, secure_store):
        await secure_store.set_item("secure_token", "abc")
        assert await secure_store.remove_item("secure_token") is True
        assert await secure_store.has_item("secure_token") is False

    async def test_rewrite_uses_new_iv(self, secure_store, memory_store):
        await secure_store.set_item("secure_token", "abc")
        first = await memory_store.get("secure_token")
        await secure_store.set_item("secure_token", "abc")
        second = await memory_store.get("secure_token")

        assert first.split(":")[0] != second.split(":")[0]

    async def test_plain_keys_are_namespaced(self, secure_store, memory_store):
        await secure_store.set_item("user_id", 7)

        assert "secure_user_id" in memory_store.snapshot()
        assert "user_id" not in memory_store.snapshot()
        assert await secure_store.get_item("user_id") == 7
        assert await secure_store.get_item("secure_user_id") == 7

    @pytest.mark.parametrize("key", ["", None, 42, b"secure_token"])
    async def test_invalid_keys(self, secure_store, key):
        with pytest.raises(InvalidKeyError):
            await secure_store.set_item(key, "value")
        with pytest.raises(InvalidKeyError):
            await secure_store.get_item(key)

    async def test_none_value_rejected(self, secure_store, memory_store):
        with pytest.raises(InvalidValueError):
            await secure_store.set_item("secure_token", None)
        assert "secure_token" not in memory_store.snapshot()

    async def test_garbage_token_is_purged(self, secure_store, memory_store):
        await memory_store.set("secure_garbage", "not-a-token")

        assert await secure_store.get_item("secure_garbage") is None
        assert await memory_store.get("secure_garbage") is None


class TestNamespace:
    async def test_clear_only_touches_namespace(self, secure_store, memory_store, config):
        await secure_store.set_item("secure_a", 1)
        await secure_store.set_item("b", 2)
        await memory_store.set("theme", "dark")

        assert await secure_store.clear() is True

        snapshot = memory_store.snapshot()
        assert snapshot["theme"] == "dark"
        assert config.rotation_marker_key in snapshot
        assert not [k for k in snapshot if k.startswith(config.namespace_prefix)]


class TestBatches:
    async def test_get_multiple_tolerates_corruption(self, secure_store, memory_store):
        await secure_store.set_item("secure_a", "A")
        await secure_store.set_item("secure_b", "B")
        await secure_store.set_item("secure_c", "C")
        raw = await memory_store.get("secure_b")
        await memory_store.set("secure_b", _corrupt_ciphertext(raw))

        result = await secure_store.get_multiple(["secure_a", "secure_b", "secure_c"])

        assert result == {"secure_a": "A", "secure_b": None, "secure_c": "C"}

    async def test_get_multiple_keeps_caller_keys(self, secure_store):
        await secure_store.set_item("email", "ana@example.com")

        result = await secure_store.get_multiple(["email", "missing"])

        assert result == {"email": "ana@example.com", "missing": None}

    async def test_get_multiple_rejects_single_string(self, secure_store):
        with pytest.raises(InvalidValueError):
            await secure_store.get_multiple("secure_a")

    async def test_set_multiple(self, secure_store):
        assert await secure_store.set_multiple([("secure_a", 1), ("secure_b", {"x": 2})]) is True
        assert await secure_store.set_multiple({"c": [3]}) is True

        result = await secure_store.get_multiple(["secure_a", "secure_b", "c"])
        assert result == {"secure_a": 1, "secure_b": {"x": 2}, "c": [3]}

    async def test_set_multiple_invalid_key_writes_nothing(self, secure_store, memory_store):
        before = memory_store.snapshot()

        with pytest.raises(InvalidKeyError):
            await secure_store.set_multiple([("secure_a", 1), ("", 2), ("secure_c", 3)])

        assert memory_store.snapshot() == before

    @pytest.mark.parametrize("entries", ["secure_a", 42, [("only_key",)], [("k", None)]])
    async def test_set_multiple_malformed(self, secure_store, entries):
        with pytest.raises(InvalidValueError):
            await secure_store.set_multiple(entries)


class TestRotation:
    async def test_values_survive_forced_rotation(self, secure_store, memory_store):
        await secure_store.set_item("secure_token", {"id": 42})
        before = await memory_store.get("secure_token")

        assert await secure_store.force_key_rotation() is True

        assert await memory_store.get("secure_token") != before
        assert await secure_store.get_item("secure_token") == {"id": 42}

    async def test_due_rotation_runs_before_operation(self, secure_store, clock):
        await secure_store.set_item("secure_token", "abc")
        old_key = secure_store.key_manager.current_key()

        clock.advance(timedelta(hours=25))
        assert await secure_store.get_item("secure_token") == "abc"

        assert secure_store.key_manager.current_key() is not old_key
        assert secure_store.key_manager.last_rotation == clock.now
        assert not secure_store.key_manager.needs_rotation()

    async def test_forced_rotation_failure_propagates(self, config, clock):
        class BrokenMarkerStore(FlakyStore):
            fail = False

            async def set(self, key, value):
                if self.fail and key == config.rotation_marker_key:
                    raise OSError("read-only")
                await super().set(key, value)

        store = BrokenMarkerStore()
        secure_store = await SecureStore.open(store, config, clock=clock)
        await secure_store.set_item("secure_token", "abc")
        store.fail = True

        with pytest.raises(KeyRotationError):
            await secure_store.force_key_rotation()

        assert await secure_store.get_item("secure_token") == "abc"

    async def test_listing_failure_keeps_old_key(self, config, clock):
        class FailingListStore(FlakyStore):
            fail_listing = False

            async def list_keys(self):
                if self.fail_listing:
                    self.fail_listing = False
                    raise OSError("listing unavailable")
                return await super().list_keys()

        store = FailingListStore()
        secure_store = await SecureStore.open(store, config, clock=clock)
        await secure_store.set_item("secure_token", {"id": 42})
        old_key = secure_store.key_manager.current_key()
        last_rotation = secure_store.key_manager.last_rotation
        store.fail_listing = True

        with pytest.raises(KeyRotationError):
            await secure_store.force_key_rotation()

        assert secure_store.key_manager.current_key() is old_key
        assert secure_store.key_manager.last_rotation == last_rotation
        assert await secure_store.get_item("secure_token") == {"id": 42}

    async def test_scheduled_rotation_listing_failure_keeps_data(self, config, clock):
        class FailingListStore(FlakyStore):
            async def list_keys(self):
                raise OSError("listing unavailable")

        store = FailingListStore()
        secure_store = await SecureStore.open(store, config, clock=clock)
        await secure_store.set_item("secure_token", "abc")

        clock.advance(timedelta(hours=25))

        assert await secure_store.get_item("secure_token") == "abc"
        assert secure_store.key_manager.needs_rotation()

    async def test_due_rotation_runs_before_batch_write(self, secure_store, memory_store, clock):
        await secure_store.set_item("secure_a", "A")
        old_key = secure_store.key_manager.current_key()

        clock.advance(timedelta(hours=25))
        assert await secure_store.set_multiple({"secure_b": "B"}) is True

        new_key = secure_store.key_manager.current_key()
        assert new_key is not old_key
        assert secure_store.key_manager.last_rotation == clock.now
        raw = await memory_store.get("secure_b")
        assert CipherCodec.decrypt(raw, new_key) == "B"
        assert await secure_store.get_multiple(["secure_a", "secure_b"]) == {
            "secure_a": "A",
            "secure_b": "B",
        }

        assert await secure_store.get_item("secure_token") == "abc"

    async def test_fallback_is_observable(self, monkeypatch, memory_store, config, clock):
        from secure_storage import key_manager as key_manager_module

        def broken(*args, **kwargs):
            raise RuntimeError("no entropy")

        monkeypatch.setattr(key_manager_module, "_stretch", broken)
        events = []

        secure_store = await SecureStore.open(
            memory_store, config, clock=clock, on_fallback=lambda: events.append(True)
        )
        await secure_store.set_item("secure_token", "abc")
        stats = await secure_store.get_security_stats()

        assert events == [True]
        assert stats.fallback_key_active is True
        assert await secure_store.get_item("secure_token") == "abc"


class TestRetries:
    async def test_write_retried_until_success(self, config, clock):
        store = FlakyStore(failures=config.max_retries)
        secure_store = await SecureStore.open(store, config, clock=clock)

        assert await secure_store.set_item("secure_token", "abc") is True
        assert store.set_calls == config.max_retries + 1
        assert await secure_store.get_item("secure_token") == "abc"

    async def test_write_fails_after_retries_exhausted(self, config, clock):
        store = FlakyStore(failures=config.max_retries + 1)
        secure_store = await SecureStore.open(store, config, clock=clock)

        with pytest.raises(StorageError, match="Failed to save secure data"):
            await secure_store.set_item("secure_token", "abc")

        assert store.set_calls == config.max_retries + 1

    async def test_read_retried_until_success(self, config, clock):
        store = FlakyStore()
        secure_store = await SecureStore.open(store, config, clock=clock)
        await secure_store.set_item("secure_token", "abc")
        store.read_failures = config.max_retries

        assert await secure_store.get_item("secure_token") == "abc"
        assert store.get_calls == config.max_retries + 1

    async def test_read_fails_after_retries_exhausted(self, config, clock):
        store = FlakyStore()
        secure_store = await SecureStore.open(store, config, clock=clock)
        await secure_store.set_item("secure_token", "abc")
        store.read_failures = config.max_retries + 1

        with pytest.raises(StorageError, match="Failed to read secure data"):
            await secure_store.get_item("secure_token")

        assert store.get_calls == config.max_retries + 1
        assert store.snapshot()["secure_token"]


class TestConfigValidation:
    async def test_default_config_is_valid(self, secure_store):
        assert secure_store.validate_security_config() is True

    async def test_invalid_config_is_reported(self, memory_store, clock):
        config = SecureStoreConfig(max_retries=0, rotation_interval=timedelta(minutes=5))
        secure_store = await SecureStore.open(memory_store, config, clock=clock)

        assert secure_store.validate_security_config() is False
        assert len(secure_store.security_config_problems()) == 2
