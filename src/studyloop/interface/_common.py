"""Helpers shared by CLI commands."""

import json
import math
from datetime import datetime
from typing import Any

from fastapi.encoders import jsonable_encoder

from studyloop.application.config import AppConfig, resolve_config
from studyloop.domain.errors import InvalidInput, NotFound, StudyLoopError, Transient


def _resolve_with_overrides(**overrides: Any) -> AppConfig:
    """Resolve config, letting explicit (non-None) CLI values win."""
    return resolve_config(overrides)


def humanize_error(e: Exception) -> str:
    """Turn a studyloop error into a one-line message for the terminal."""
    if isinstance(e, NotFound):
        if e.what == "table":
            return "Store is not set up yet. Run 'studyloop store init' first."
        return f"Not found: {e}"
    if isinstance(e, Transient):
        return f"Store unavailable, nothing was changed. Try again later. ({e})"
    if isinstance(e, InvalidInput):
        return f"Invalid input: {e}"
    if isinstance(e, StudyLoopError):
        return f"Store error: {e}"
    return str(e)


def humanize_last_reviewed(moment: datetime | None, now: datetime) -> str:
    if moment is None:
        return "Never reviewed"
    days = math.ceil(abs((now - moment).total_seconds()) / 86400)
    if days == 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    return f"{days // 30} months ago"


def dump_json(value: Any) -> str:
    return json.dumps(jsonable_encoder(value), indent=2)
