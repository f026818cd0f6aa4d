"""Intent to cluster command translation."""

from .translator import CommandTranslator

__all__ = ["CommandTranslator"]
