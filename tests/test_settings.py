"""Tests for memory settings."""

from unittest.mock import Mock

from memoria.settings import CleanupFrequency, DecayRate, MemorySettings, SettingsStore
from memoria.storage import InMemoryKeyValueStore


class TestMemorySettings:
    """Tests for the MemorySettings record."""

    def test_defaults(self):
        """Memory is off by default, forgetting on."""
        settings = MemorySettings()
        assert settings.enabled is False
        assert settings.max_retrieve_count == 5
        assert settings.similarity_threshold == 10
        assert settings.max_memory_count == 100
        assert settings.importance_threshold == 20
        assert settings.decay_rate is DecayRate.NORMAL
        assert settings.cleanup_frequency is CleanupFrequency.AFTER_CHAT

    def test_unknown_enum_value_falls_back(self):
        """Unknown decay rates use the default."""
        assert MemorySettings(decay_rate="glacial").decay_rate is DecayRate.NORMAL

    def test_normalized_clamps_ranges(self):
        """Numeric fields are clamped into their allowed ranges."""
        settings = MemorySettings(
            max_retrieve_count=50,
            similarity_threshold=-3,
            max_memory_count=2,
            importance_threshold=80,
        ).normalized()
        assert settings.max_retrieve_count == 20
        assert settings.similarity_threshold == 0
        assert settings.max_memory_count == 10
        assert settings.importance_threshold == 50

    def test_forgetting_active_needs_both_switches(self):
        """Forgetting only runs with memory and forgetting enabled."""
        assert not MemorySettings(enabled=False).forgetting_active
        assert not MemorySettings(enabled=True, forgetting_enabled=False).forgetting_active
        assert MemorySettings(enabled=True).forgetting_active

    def test_from_dict_merges_partial_record(self):
        """Missing keys keep their defaults."""
        settings = MemorySettings.from_dict({"enabled": True, "decay_rate": "fast"})
        assert settings.enabled is True
        assert settings.decay_rate is DecayRate.FAST
        assert settings.max_retrieve_count == 5

    def test_from_dict_accepts_camel_case(self):
        """Records from the desktop client use camelCase keys."""
        settings = MemorySettings.from_dict(
            {"maxRetrieveCount": 8, "cleanupFrequency": "manual", "bogus": 1}
        )
        assert settings.max_retrieve_count == 8
        assert settings.cleanup_frequency is CleanupFrequency.MANUAL

    def test_to_dict_uses_enum_values(self):
        """Enums are serialized as plain strings."""
        data = MemorySettings(decay_rate=DecayRate.SLOW).to_dict()
        assert data["decay_rate"] == "slow"
        assert data["cleanup_frequency"] == "after_chat"


class TestSettingsStore:
    """Tests for settings persistence."""

    def test_get_without_record_returns_defaults(self):
        """An empty store yields default settings."""
        assert SettingsStore(InMemoryKeyValueStore()).get() == MemorySettings()

    def test_save_and_get(self):
        """Saved settings are read back."""
        settings_store = SettingsStore(InMemoryKeyValueStore())
        settings_store.save(MemorySettings(enabled=True, tool_model="groq:llama"))
        loaded = settings_store.get()
        assert loaded.enabled is True
        assert loaded.tool_model == "groq:llama"

    def test_save_clamps(self):
        """Out-of-range values are clamped on save."""
        settings_store = SettingsStore(InMemoryKeyValueStore())
        saved = settings_store.save(MemorySettings(max_memory_count=9999))
        assert saved.max_memory_count == 500
        assert settings_store.get().max_memory_count == 500

    def test_get_reads_fresh(self):
        """Writes made directly to the kv store are seen by the next get."""
        kv = InMemoryKeyValueStore()
        settings_store = SettingsStore(kv)
        assert settings_store.get().enabled is False
        kv.set("memory_settings", {"enabled": True})
        assert settings_store.get().enabled is True

    def test_corrupt_record_uses_defaults(self):
        """A non-dict record is ignored."""
        kv = InMemoryKeyValueStore({"memory_settings": "garbage"})
        assert SettingsStore(kv).get() == MemorySettings()

    def test_update_changes_fields(self):
        """update applies changes to the stored record."""
        settings_store = SettingsStore(InMemoryKeyValueStore())
        settings_store.update(enabled=True, decay_rate="slow")
        assert settings_store.get().decay_rate is DecayRate.SLOW

    def test_observers_notified(self):
        """Subscribers receive saved settings until they unsubscribe."""
        settings_store = SettingsStore(InMemoryKeyValueStore())
        observer = Mock()
        unsubscribe = settings_store.subscribe(observer)

        settings_store.update(enabled=True)
        observer.assert_called_once()
        assert observer.call_args.args[0].enabled is True

        unsubscribe()
        settings_store.update(enabled=False)
        observer.assert_called_once()

    def test_failing_observer_does_not_block_save(self):
        """An observer exception is logged, not raised."""
        settings_store = SettingsStore(InMemoryKeyValueStore())
        settings_store.subscribe(Mock(side_effect=RuntimeError("boom")))
        settings_store.update(enabled=True)
        assert settings_store.get().enabled is True
