"""Pydantic schemas and key rules for user preferences."""

import json
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from models.user_preference import UserPreference

# Dot-namespaced key starting with a lowercase segment, e.g. "lots.trackingMethod"
KEY_PATTERN = re.compile(r"^[a-z][a-z0-9]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")
KEY_MAX_LENGTH = 128


def preference_key_error(key: str) -> str | None:
    """Return why ``key`` is not a valid preference key, or None."""
    if len(key) > KEY_MAX_LENGTH:
        return f"Preference key must be at most {KEY_MAX_LENGTH} characters"
    if not KEY_PATTERN.match(key):
        return "Preference key must be a dot-namespaced identifier (e.g. 'lots.trackingMethod')"
    return None


class PreferenceSet(BaseModel):
    """Request body for setting a preference value."""

    value: Any


class PreferenceResponse(BaseModel):
    """A single preference with its decoded value."""

    key: str
    value: Any
    updated_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_record(cls, pref: UserPreference) -> "PreferenceResponse":
        return cls(key=pref.key, value=json.loads(pref.value), updated_at=pref.updated_at)
