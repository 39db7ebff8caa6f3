"""Stable identifiers for stored entities."""

from ulid import ULID


def new_id(prefix: str) -> str:
    """Generate a prefixed ULID, e.g. card_01HV..."""
    return f"{prefix}_{ULID()}"
