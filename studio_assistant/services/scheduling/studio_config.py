"""
Studio config service - loads artists, calendars, translators and consult hours.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import pytz
import yaml

logger = logging.getLogger(__name__)

STUDIO_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "studio.yml"

CONSULT_MODE_ONLINE = "online"
CONSULT_MODE_IN_PERSON = "in_person"


@lru_cache(maxsize=1)
def load_studio_config() -> dict[str, Any]:
    """
    Load studio configuration from YAML file.
    Cached for performance.

    Returns:
        Dict with studio configuration
    """
    try:
        if STUDIO_CONFIG_PATH.exists():
            with open(STUDIO_CONFIG_PATH, encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
                logger.info(f"Loaded studio config from {STUDIO_CONFIG_PATH}")
                return config
        logger.warning(f"Studio config file not found at {STUDIO_CONFIG_PATH}, using defaults")
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load studio config: {e}, using defaults")
    return _get_default_config()


def _get_default_config() -> dict[str, Any]:
    """Get default studio config if file not found."""
    return {
        "timezone": "America/Phoenix",
        "consult": {
            "duration_minutes": 30,
            "window_hours": {"morning": 10, "afternoon": 14, "evening": 17},
            "default_hour": 17,
            "skip_weekends": True,
        },
        "artists": [],
        "translators": [],
    }


def get_timezone() -> pytz.BaseTzInfo:
    """Get the studio timezone."""
    return pytz.timezone(load_studio_config().get("timezone", "America/Phoenix"))


def get_consult_config() -> dict[str, Any]:
    return cast(dict[str, Any], load_studio_config().get("consult") or {})


def get_window_hour(time_window: str | None) -> int:
    """
    Start hour for a preferred time window ("morning", "afternoon", "evening"/"night").

    Unknown or missing windows use the default hour.
    """
    consult = get_consult_config()
    hours = consult.get("window_hours") or {}
    default_hour = int(consult.get("default_hour", 17))
    if not time_window:
        return default_hour
    window = time_window.lower()
    if "morning" in window:
        return int(hours.get("morning", 10))
    if "afternoon" in window:
        return int(hours.get("afternoon", 14))
    if "evening" in window or "night" in window:
        return int(hours.get("evening", 17))
    return default_hour


def get_artists() -> list[dict[str, Any]]:
    return list(load_studio_config().get("artists") or [])


def get_artist_names() -> list[str]:
    return [artist["name"] for artist in get_artists() if artist.get("name")]


def get_calendar_id_for_artist(artist_name: str | None, consult_mode: str = CONSULT_MODE_ONLINE) -> str | None:
    """Calendar id for an artist and consult mode (case-insensitive name match)."""
    if not artist_name:
        return None
    for artist in get_artists():
        if str(artist.get("name", "")).lower() == artist_name.lower():
            calendars = artist.get("calendars") or {}
            return calendars.get(consult_mode) or calendars.get(CONSULT_MODE_ONLINE)
    return None


def get_user_id_for_artist(artist_name: str | None) -> str | None:
    if not artist_name:
        return None
    for artist in get_artists():
        if str(artist.get("name", "")).lower() == artist_name.lower():
            return artist.get("user_id")
    return None


def get_translators() -> list[dict[str, Any]]:
    return list(load_studio_config().get("translators") or [])


def get_translator_user_id(calendar_id: str | None) -> str | None:
    for translator in get_translators():
        if calendar_id and translator.get("calendar_id") == calendar_id:
            return translator.get("user_id")
    return None


def get_artist_calendar_ids() -> set[str]:
    """Every artist calendar id across consult modes."""
    ids: set[str] = set()
    for artist in get_artists():
        ids.update(cid for cid in (artist.get("calendars") or {}).values() if cid)
    return ids


def get_translator_calendar_ids() -> set[str]:
    return {t["calendar_id"] for t in get_translators() if t.get("calendar_id")}
