"""Email content reduction."""

from .reducer import ContentReducer, truncate_at_sentence

__all__ = ["ContentReducer", "truncate_at_sentence"]
