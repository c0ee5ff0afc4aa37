"""Preference service - user preference CRUD and the tracking-method setting."""

import json
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.user_preference import UserPreference
from services.ledger_protocol import TrackingMethod

logger = logging.getLogger(__name__)

TRACKING_METHOD_KEY = "lots.trackingMethod"


class PreferenceService:
    """Service for managing user preferences as a key-value store."""

    @staticmethod
    def get_all(db: Session) -> dict[str, Any]:
        """Get all preferences as a {key: parsed_value} dict."""
        prefs = db.query(UserPreference).all()
        return {p.key: json.loads(p.value) for p in prefs}

    @staticmethod
    def get(db: Session, key: str) -> Any | None:
        """Get a single preference value by key, or None if not found."""
        pref = PreferenceService.get_record(db, key)
        if pref is None:
            return None
        return json.loads(pref.value)

    @staticmethod
    def get_record(db: Session, key: str) -> UserPreference | None:
        """Get the full UserPreference record by key, or None if not found."""
        return db.query(UserPreference).filter(UserPreference.key == key).first()

    @staticmethod
    def set(db: Session, key: str, value: Any) -> UserPreference:
        """Create or update a preference. Returns the UserPreference record."""
        pref = db.query(UserPreference).filter(UserPreference.key == key).first()
        serialized = json.dumps(value)

        if pref is None:
            pref = UserPreference(key=key, value=serialized)
            db.add(pref)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                pref = db.query(UserPreference).filter(
                    UserPreference.key == key
                ).first()
                pref.value = serialized
                db.commit()
                logger.info("Updated preference (concurrent insert): %s", key)
            else:
                logger.info("Created preference: %s", key)
        else:
            pref.value = serialized
            db.commit()
            logger.info("Updated preference: %s", key)

        db.refresh(pref)
        return pref

    @staticmethod
    def delete(db: Session, key: str) -> bool:
        """Delete a preference by key. Returns True if deleted, False if not found."""
        pref = db.query(UserPreference).filter(UserPreference.key == key).first()
        if pref is None:
            return False
        db.delete(pref)
        db.commit()
        logger.info("Deleted preference: %s", key)
        return True

    @staticmethod
    def get_tracking_method(db: Session) -> TrackingMethod:
        """Get the stored disposal tracking method.

        Falls back to ``settings.DEFAULT_TRACKING_METHOD`` when nothing is
        stored or the stored value is no longer a known method.
        """
        stored = PreferenceService.get(db, TRACKING_METHOD_KEY)
        if stored is not None:
            try:
                return TrackingMethod(stored)
            except ValueError:
                logger.warning(
                    "Ignoring unknown stored tracking method %r; using %s",
                    stored, settings.DEFAULT_TRACKING_METHOD,
                )
        return TrackingMethod(settings.DEFAULT_TRACKING_METHOD)

    @staticmethod
    def set_tracking_method(db: Session, method: TrackingMethod | str) -> TrackingMethod:
        """Store the disposal tracking method.

        Raises ValueError for anything other than FIFO, LIFO or SPECIFIC_ID.
        Existing lots are not reordered; only later disposals are affected.
        """
        if isinstance(method, str) and not isinstance(method, TrackingMethod):
            method = method.strip().upper()
        try:
            method = TrackingMethod(method)
        except ValueError:
            raise ValueError(
                f"Unknown tracking method: {method!r}. "
                f"Expected one of {', '.join(m.value for m in TrackingMethod)}"
            ) from None
        PreferenceService.set(db, TRACKING_METHOD_KEY, method.value)
        return method
