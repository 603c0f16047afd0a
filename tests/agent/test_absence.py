"""Tests for the absence registry and its JSON storage."""

import json

import pytest

from chatgate.agent.absence import (
    AFK_SCHEMA_VERSION,
    AbsenceRegistry,
    AbsenceStorage,
    AfkRecord,
    format_duration,
)


@pytest.fixture
def registry(clock) -> AbsenceRegistry:
    return AbsenceRegistry(clock=clock)


class TestAbsenceRecords:
    def test_set_and_get(self, registry, clock):
        record = registry.set_absent("alice", "lunch")
        assert registry.is_absent("alice")
        assert record.reason == "lunch"
        assert record.since == clock.now
        assert registry.get_record("alice") is record

    def test_unknown_identity(self, registry):
        assert not registry.is_absent("nobody")
        assert registry.get_record("nobody") is None

    def test_set_overwrites(self, registry, clock):
        registry.set_absent("alice", "lunch")
        clock.advance(60)
        registry.set_absent("alice", "meeting")
        record = registry.get_record("alice")
        assert record.reason == "meeting"
        assert record.since == clock.now
        assert len(registry.all_records()) == 1

    def test_clear(self, registry):
        registry.set_absent("alice", "lunch")
        assert registry.clear_absent("alice") is True
        assert not registry.is_absent("alice")
        assert registry.clear_absent("alice") is False

    def test_all_records_is_a_copy(self, registry):
        registry.set_absent("alice", "lunch")
        snapshot = registry.all_records()
        snapshot.clear()
        assert registry.is_absent("alice")


class TestNotifyCooldown:
    def test_first_notice_allowed_then_suppressed(self, registry, clock):
        registry.set_absent("alice", "lunch")
        assert registry.try_notify("bob", "alice") is True
        clock.advance(600)
        assert registry.try_notify("bob", "alice") is False

    def test_allowed_again_after_an_hour(self, registry, clock):
        registry.set_absent("alice", "lunch")
        registry.try_notify("bob", "alice")
        clock.advance(3600)
        assert registry.try_notify("bob", "alice") is True

    def test_per_notifier(self, registry):
        registry.set_absent("alice", "lunch")
        assert registry.try_notify("bob", "alice")
        assert registry.try_notify("carol", "alice")

    def test_per_target(self, registry):
        registry.set_absent("alice", "lunch")
        registry.set_absent("dave", "gym")
        assert registry.try_notify("bob", "alice")
        assert registry.try_notify("bob", "dave")

    def test_not_absent_never_notifies(self, registry):
        assert registry.try_notify("bob", "alice") is False

    def test_redeclaring_resets_notifiers(self, registry, clock):
        registry.set_absent("alice", "lunch")
        registry.try_notify("bob", "alice")
        registry.mark_notified("bob", "alice")
        clock.advance(10)
        registry.set_absent("alice", "meeting")
        assert registry.try_notify("bob", "alice") is True

    def test_mark_notified_records_timestamp(self, registry, clock):
        registry.set_absent("alice", "lunch")
        registry.mark_notified("bob", "alice")
        assert registry.get_record("alice").last_notified_by == {"bob": clock.now}

    def test_mark_notified_unknown_target_is_noop(self, registry):
        registry.mark_notified("bob", "alice")
        assert registry.all_records() == {}

    def test_does_not_touch_spam_state(self, registry):
        """Many notices in a burst never blacklist anyone."""
        for i in range(10):
            registry.set_absent(f"t{i}", "away")
        assert all(registry.try_notify("bob", f"t{i}") for i in range(10))


class TestAbsenceStorage:
    def test_round_trip(self, tmp_path, clock):
        path = tmp_path / "afk_status.json"
        first = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        first.set_absent("alice", "lunch")
        first.mark_notified("bob", "alice")

        second = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        record = second.get_record("alice")
        assert record is not None
        assert record.reason == "lunch"
        assert record.last_notified_by == {"bob": clock.now}

    def test_persisted_notifier_survives_restart(self, tmp_path, clock):
        path = tmp_path / "afk_status.json"
        first = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        first.set_absent("alice", "lunch")
        first.try_notify("bob", "alice")
        first.mark_notified("bob", "alice")

        clock.advance(60)
        second = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        assert second.try_notify("bob", "alice") is False
        assert second.try_notify("carol", "alice") is True

    def test_envelope_format(self, tmp_path, clock):
        path = tmp_path / "afk_status.json"
        registry = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        registry.set_absent("alice", "lunch")

        raw = json.loads(path.read_text())
        assert raw["version"] == AFK_SCHEMA_VERSION
        assert "saved_at" in raw
        assert raw["records"]["alice"]["reason"] == "lunch"
        assert not path.with_suffix(".tmp").exists()

    def test_clear_is_persisted(self, tmp_path, clock):
        path = tmp_path / "afk_status.json"
        registry = AbsenceRegistry(AbsenceStorage(path), clock=clock)
        registry.set_absent("alice", "lunch")
        registry.clear_absent("alice")
        assert AbsenceStorage(path).load() == {}

    def test_missing_file(self, tmp_path):
        assert AbsenceStorage(tmp_path / "none.json").load() == {}

    def test_unknown_version_ignored(self, tmp_path):
        path = tmp_path / "afk_status.json"
        path.write_text(json.dumps({"version": 99, "records": {"alice": {"reason": "x", "since": 1}}}))
        assert AbsenceStorage(path).load() == {}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "afk_status.json"
        path.write_text("{not json")
        assert AbsenceStorage(path).load() == {}

    def test_malformed_record_skipped(self, tmp_path):
        path = tmp_path / "afk_status.json"
        path.write_text(json.dumps({
            "version": AFK_SCHEMA_VERSION,
            "records": {
                "alice": {"reason": "lunch", "since": 5},
                "bob": {"reason": "no since"},
            },
        }))
        records = AbsenceStorage(path).load()
        assert list(records) == ["alice"]
        assert records["alice"] == AfkRecord(reason="lunch", since=5.0)


class TestFormatDuration:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0, "a moment"),
            (1, "1 second"),
            (45, "45 seconds"),
            (60, "1 minute"),
            (125, "2 minutes 5 seconds"),
            (3600, "1 hour"),
            (3 * 3600 + 20 * 60 + 9, "3 hours 20 minutes"),
            (86400, "1 day"),
            (2 * 86400 + 5 * 3600 + 59 * 60, "2 days 5 hours"),
        ],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected
