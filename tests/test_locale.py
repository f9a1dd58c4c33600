import pytest

from api.middleware.locale import resolve_locale


@pytest.mark.parametrize(
    "explicit,accept_language,expected",
    [
        ("fr", None, "fr"),
        ("fr_FR", "en", "fr"),
        (None, "de-DE,fr;q=0.8,en;q=0.5", "fr"),
        (None, "en-GB,en;q=0.9", "en"),
        (None, "es-ES", "en"),
        (None, "fr;q=abc,en;q=0.5", "en"),
        (None, None, "en"),
    ],
)
def test_resolve_locale(explicit, accept_language, expected):
    assert resolve_locale(explicit, accept_language) == expected
