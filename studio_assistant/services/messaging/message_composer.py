"""
Studio copy - outbound reply text lives in copy/<locale>.yml, not in code.

An entry is either a single template or a list of variants. Variants are picked
per contact so a lead keeps hearing the same phrasing across turns.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

COPY_DIR = Path(__file__).resolve().parent.parent.parent / "copy"
DEFAULT_LOCALE = "en"


class _KeepPlaceholders(dict):
    """format_map mapping that leaves unknown {placeholders} in the text."""

    def __missing__(self, key: str) -> str:
        logger.warning(f"Copy placeholder {{{key}}} has no value")
        return "{" + key + "}"


class CopyBook:
    """Reply copy for one locale."""

    def __init__(self, locale: str = DEFAULT_LOCALE):
        self.locale = locale
        self.path = COPY_DIR / f"{locale}.yml"
        self.entries: dict[str, Any] = self._read()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            logger.warning(f"No copy file for locale {self.locale!r} at {self.path}")
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Unreadable copy file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Copy file {self.path} is not a mapping")
            return {}
        return data

    def has(self, key: str) -> bool:
        return key in self.entries

    def pick(self, key: str, contact_id: str | None = None) -> str:
        """
        Template text for a key.

        Lists are indexed by a hash of key + contact id; without a contact the
        first variant is used. Unknown keys come back as "[MISSING: key]".
        """
        entry = self.entries.get(key)
        if entry is None:
            logger.warning(f"Copy key not found: {key}")
            return f"[MISSING: {key}]"
        if not isinstance(entry, list):
            return str(entry)
        if not entry:
            return ""
        if contact_id is None:
            return str(entry[0])
        digest = hashlib.md5(f"{key}:{contact_id}".encode()).hexdigest()
        return str(entry[int(digest, 16) % len(entry)])

    def render(self, key: str, contact_id: str | None = None, **values: Any) -> str:
        template = self.pick(key, contact_id)
        try:
            return template.format_map(_KeepPlaceholders(values))
        except (IndexError, ValueError) as e:
            logger.error(f"Failed to render copy {key}: {e}")
            return template


_books: dict[str, CopyBook] = {}


def reset_cache() -> None:
    """Forget loaded copy (tests point COPY_DIR elsewhere)."""
    _books.clear()


def copy_book(locale: str = DEFAULT_LOCALE) -> CopyBook:
    book = _books.get(locale)
    if book is None:
        book = _books[locale] = CopyBook(locale)
    return book


def render_message(
    key: str,
    contact_id: str | None = None,
    locale: str = DEFAULT_LOCALE,
    **values: Any,
) -> str:
    """Render one reply from the copy file."""
    return copy_book(locale).render(key, contact_id=contact_id, **values)
