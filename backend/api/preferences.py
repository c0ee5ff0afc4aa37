"""Preferences API endpoints.

Values are arbitrary JSON except under ``lots.trackingMethod``, which only
accepts a known lot tracking method.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from schemas.preference import PreferenceResponse, PreferenceSet, preference_key_error
from services.preference_service import TRACKING_METHOD_KEY, PreferenceService

router = APIRouter(prefix="/api/preferences", tags=["preferences"])


def _validate_key(key: str) -> None:
    """Raise 422 for malformed preference keys."""
    error = preference_key_error(key)
    if error:
        raise HTTPException(status_code=422, detail=error)


@router.get("", response_model=dict[str, Any])
def list_preferences(db: Session = Depends(get_db)):
    """Get all preferences as a flat {key: value} dict."""
    return PreferenceService.get_all(db)


@router.get("/{key:path}", response_model=PreferenceResponse)
def get_preference(key: str, db: Session = Depends(get_db)):
    """Get a single preference with metadata."""
    _validate_key(key)
    pref = PreferenceService.get_record(db, key)
    if pref is None:
        raise HTTPException(status_code=404, detail=f"Preference '{key}' not found")
    return PreferenceResponse.from_record(pref)


@router.put("/{key:path}", response_model=PreferenceResponse)
def set_preference(key: str, body: PreferenceSet, db: Session = Depends(get_db)):
    """Create or update a preference (idempotent upsert)."""
    _validate_key(key)
    if key != TRACKING_METHOD_KEY:
        return PreferenceResponse.from_record(PreferenceService.set(db, key, body.value))

    if not isinstance(body.value, str):
        raise HTTPException(status_code=422, detail="Tracking method must be a string")
    try:
        PreferenceService.set_tracking_method(db, body.value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return PreferenceResponse.from_record(PreferenceService.get_record(db, key))


@router.delete("/{key:path}", status_code=204)
def delete_preference(key: str, db: Session = Depends(get_db)):
    """Delete a preference by key."""
    _validate_key(key)
    if not PreferenceService.delete(db, key):
        raise HTTPException(status_code=404, detail=f"Preference '{key}' not found")
