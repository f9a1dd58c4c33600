from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

_current_locale: ContextVar[str] = ContextVar("current_locale", default="en")
_translators: dict[str, gettext.NullTranslations] = {}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to 'en')."""
    _current_locale.set(locale or "en")


def get_locale() -> str:
    """Get current request locale (default 'en')."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, default: Optional[str] = None, **params) -> str:
    """Translate msgid using current locale and format with params.

    If the catalog has no entry, falls back to `default` (or msgid itself).
    """
    text = _get_translator(get_locale()).gettext(msgid)
    if text == msgid and default is not None:
        text = default
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError):
        # Keep the untranslated text rather than breaking the response
        return text
