"""Per-language message catalogs.

Every ``locales/<language>.json`` file is one flat key -> template mapping.
Discord hands out locale tags such as ``en-US`` or ``pt-BR``; ``pick_locale``
maps those onto whichever catalogs are loaded, so an interaction in German
gets ``de.json`` and anything unknown gets English.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"
LOCALE_DIR = Path(__file__).resolve().parent.parent / "locales"

_catalogs: dict[str, dict[str, str]] = {}


def load_locales(directory: Path | None = None) -> list[str]:
    """Replace the loaded catalogs with the JSON files in ``directory``.

    Returns the names that loaded. Unreadable files are skipped with a warning.
    """
    directory = directory or LOCALE_DIR
    _catalogs.clear()
    if not directory.is_dir():
        log.warning("No locale directory at %s, messages will show raw keys", directory)
        return []
    for path in sorted(directory.glob("*.json")):
        try:
            catalog = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("Skipping locale file %s: %s", path.name, exc)
            continue
        _catalogs[path.stem] = catalog
    log.info("Loaded locales: %s", ", ".join(available_locales()) or "none")
    return available_locales()


def available_locales() -> list[str]:
    return sorted(_catalogs)


def pick_locale(*tags: Any) -> str:
    """First of ``tags`` with a loaded catalog, by exact tag then language.

    ``None`` entries are skipped; ``discord.Locale`` values work as-is.
    """
    for tag in tags:
        if tag is None:
            continue
        name = str(tag)
        if name in _catalogs:
            return name
        language = name.split("-", 1)[0].lower()
        if language in _catalogs:
            return language
    return DEFAULT_LOCALE


def t(key: str, locale: str = DEFAULT_LOCALE, **fmt: Any) -> str:
    """Render ``key`` in ``locale``, then English, then the bare key."""
    template = _catalogs.get(locale, {}).get(key)
    if template is None:
        template = _catalogs.get(DEFAULT_LOCALE, {}).get(key, key)
    if not fmt:
        return template
    try:
        return template.format(**fmt)
    except (KeyError, IndexError):
        log.debug("Locale %s: template %r is missing a placeholder", locale, key)
        return template
