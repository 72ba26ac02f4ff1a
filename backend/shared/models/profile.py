"""Data model for the Profiles table."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Profile:
    """Customer profile record."""

    id: str
    username: str | None = None
