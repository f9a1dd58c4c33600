"""Intent domain exports."""
from .entity import Intent
from .repository import IntentRepository

__all__ = ["Intent", "IntentRepository"]
