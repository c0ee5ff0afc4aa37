"""Tests for PreferenceService and the stored tracking method."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from models.user_preference import UserPreference
from services.ledger_protocol import TrackingMethod
from services.preference_service import TRACKING_METHOD_KEY, PreferenceService


class TestPreferenceStore:
    """Generic key-value behaviour the tracking method is stored with."""

    def test_get_all_empty(self, db):
        assert PreferenceService.get_all(db) == {}

    def test_set_then_get_json_values(self, db):
        PreferenceService.set(db, "ui.flag", True)
        PreferenceService.set(db, "ui.config", {"columns": ["symbol", "quantity"]})

        assert PreferenceService.get(db, "ui.flag") is True
        assert PreferenceService.get(db, "ui.config") == {"columns": ["symbol", "quantity"]}
        assert PreferenceService.get(db, "ui.missing") is None
        assert set(PreferenceService.get_all(db)) == {"ui.flag", "ui.config"}

    def test_update_keeps_record(self, db):
        first = PreferenceService.set(db, "ui.theme", "light")
        second = PreferenceService.set(db, "ui.theme", "dark")
        assert first.id == second.id
        assert PreferenceService.get(db, "ui.theme") == "dark"

    def test_concurrent_insert_is_retried_as_update(self, db):
        """A rival insert between SELECT and INSERT is absorbed."""
        original_commit = db.commit
        calls = 0

        def commit_side_effect():
            nonlocal calls
            calls += 1
            if calls == 1:
                db.rollback()
                db.add(UserPreference(key="race.key", value='"rival"'))
                original_commit()
                raise IntegrityError(
                    statement="INSERT INTO user_preferences",
                    params={},
                    orig=Exception("UNIQUE constraint failed"),
                )
            original_commit()

        with patch.object(db, "commit", side_effect=commit_side_effect):
            pref = PreferenceService.set(db, "race.key", "winner")

        assert pref.key == "race.key"
        assert PreferenceService.get(db, "race.key") == "winner"

    def test_delete(self, db):
        PreferenceService.set(db, "ui.theme", "dark")
        assert PreferenceService.delete(db, "ui.theme") is True
        assert PreferenceService.delete(db, "ui.theme") is False


class TestTrackingMethod:
    def test_defaults_to_settings(self, db, monkeypatch):
        monkeypatch.setattr("services.preference_service.settings.DEFAULT_TRACKING_METHOD", "LIFO")
        assert PreferenceService.get_tracking_method(db) == TrackingMethod.LIFO

    def test_set_and_get(self, db):
        stored = PreferenceService.set_tracking_method(db, TrackingMethod.SPECIFIC_ID)
        assert stored == TrackingMethod.SPECIFIC_ID
        assert PreferenceService.get(db, TRACKING_METHOD_KEY) == "SPECIFIC_ID"
        assert PreferenceService.get_tracking_method(db) == TrackingMethod.SPECIFIC_ID

    def test_string_input_is_normalized(self, db):
        assert PreferenceService.set_tracking_method(db, " lifo ") == TrackingMethod.LIFO

    def test_unknown_method_rejected(self, db):
        with pytest.raises(ValueError, match="Unknown tracking method"):
            PreferenceService.set_tracking_method(db, "HIFO")
        assert PreferenceService.get(db, TRACKING_METHOD_KEY) is None

    def test_unknown_stored_value_falls_back(self, db, caplog):
        PreferenceService.set(db, TRACKING_METHOD_KEY, "AVERAGE")
        assert PreferenceService.get_tracking_method(db) == TrackingMethod.FIFO
        assert "unknown stored tracking method" in caplog.text
