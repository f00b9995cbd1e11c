"""Structured record protocol."""

from .record import HEREDOC_SENTINEL, Record, escape_sentinel, validate

__all__ = ["HEREDOC_SENTINEL", "Record", "escape_sentinel", "validate"]
