from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale

SUPPORTED_LOCALES = ("en", "fr")
DEFAULT_LOCALE = "en"


def _weighted_tags(accept_language: str) -> list[tuple[str, float]]:
    tags: list[tuple[str, float]] = []
    for part in accept_language.split(","):
        tag, _, params = part.strip().partition(";")
        if not tag:
            continue
        weight = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                weight = float(params[2:])
            except ValueError:
                weight = 0.0
        tags.append((tag.strip(), weight))
    # stable sort keeps header order for equal weights
    tags.sort(key=lambda item: item[1], reverse=True)
    return tags


def resolve_locale(explicit: str | None, accept_language: str | None) -> str:
    """Map request hints onto a supported catalog.

    Examples:
      ('fr-FR', None) -> 'fr'
      (None, 'de-DE,fr;q=0.8,en;q=0.5') -> 'fr'
      (None, 'es') -> 'en'
    """
    candidates = [explicit] if explicit else [tag for tag, _ in _weighted_tags(accept_language or "")]
    for tag in candidates:
        primary = tag.replace("_", "-").split("-", 1)[0].lower()
        if primary in SUPPORTED_LOCALES:
            return primary
    return DEFAULT_LOCALE


class LocaleMiddleware(BaseHTTPMiddleware):
    """Pick the message locale for error envelopes and emails.

    Priority: ?lang=xx > X-Lang > Accept-Language > 'en'.
    """

    async def dispatch(self, request: Request, call_next):
        explicit = request.query_params.get("lang") or request.headers.get("X-Lang")
        locale = resolve_locale(explicit, request.headers.get("Accept-Language"))
        set_locale(locale)
        request.state.locale = locale
        return await call_next(request)
