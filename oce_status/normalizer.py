
# Maps any decoded JSON payload from a game-server stats API onto one
# CanonicalStatus.

# Design decisions:
#   - Upstream APIs disagree on key names (allies vs alliedPlayers vs team1,
#     flat vs nested under players/score). Every canonical field has an
#     ordered tuple of candidate key paths in FIELD_ALIASES; supporting a new
#     dialect means appending to a tuple, never adding a branch.
#   - The first candidate that is present AND type-checks wins. A present but
#     wrongly typed value (a dict where a number was expected, "abc" as a
#     count) is skipped so a later alias can still supply the field.
#   - Nothing here raises. Bad values degrade to the field default.
#   - A payload with no recognizable field at all is an ERROR record, never a
#     record of zeros that looks like an empty server.
#   - observed_at comes from the caller; the function reads no clock.

import math
import re
from datetime import datetime
from typing import Any

from oce_status.models import (
    UNKNOWN_MAP,
    UNKNOWN_TIME,
    CanonicalStatus,
    Outcome,
    ServerConfig,
    format_game_time,
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "allies_count": (
        "allies", "alliedPlayers", "alliesPlayers", "alliesCount", "team1",
        "players.allies", "num_allied_players", "player_count_by_team.allied",
    ),
    "axis_count": (
        "axis", "axisPlayers", "axisCount", "team2",
        "players.axis", "num_axis_players", "player_count_by_team.axis",
    ),
    "game_time": (
        "gameTime", "time", "elapsed", "game_time", "time_remaining",
    ),
    "allies_score": (
        "alliesScore", "alliedScore", "team1Score",
        "score.allies", "score.allied", "score.team1",
    ),
    "axis_score": (
        "axisScore", "team2Score", "score.axis", "score.team2",
    ),
    "current_map": (
        "currentMap", "map", "level", "current_map",
        "map.pretty_name", "map.name", "current_map.pretty_name",
    ),
    "next_map": (
        "nextMap", "nextLevel", "upcoming", "next_map",
        "next_map.pretty_name", "next_map.name",
    ),
    "max_players": (
        "maxPlayers", "max_players", "slots", "max_player_count",
    ),
}

# Wrappers some APIs put around the actual stats object.
ENVELOPE_KEYS: tuple[str, ...] = ("result", "data")

SCORE_MIN, SCORE_MAX = 0, 5

# [h:]m:ss; seconds always below 60, minutes too once hours are given
_TIME_RE = re.compile(r"^(?:(\d{1,2}):(?=[0-5]?\d:))?(\d{1,2}):([0-5]\d)$")

_MISSING = object()


def _lookup(payload: dict, path: str) -> Any:
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return _MISSING if node is None else node


def _as_count(value: Any) -> int | None:
    """Non-negative int, truncating floats toward zero. None if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    return max(0, value)


def _as_score(value: Any) -> int | None:
    score = _as_count(value)
    if score is None:
        return None
    # out of range means a bad reading, not "nearly 5": reset rather than clamp
    return score if SCORE_MIN <= score <= SCORE_MAX else SCORE_MIN


def _as_time(value: Any) -> tuple[str, int] | None:
    if isinstance(value, str):
        text = value.strip()
        m = _TIME_RE.match(text)
        if not m:
            return None
        hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
        return text, hours * 3600 + minutes * 60 + seconds
    seconds = _as_count(value)
    if seconds is None:
        return None
    return format_game_time(seconds), seconds


def _as_name(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


_COERCERS = {
    "allies_count": _as_count,
    "axis_count":   _as_count,
    "game_time":    _as_time,
    "allies_score": _as_score,
    "axis_score":   _as_score,
    "current_map":  _as_name,
    "next_map":     _as_name,
    "max_players":  _as_count,
}


def _candidates(payload: dict) -> list[dict]:
    layers = [payload]
    for key in ENVELOPE_KEYS:
        inner = payload.get(key)
        if isinstance(inner, dict):
            layers.append(inner)
    return layers


def _resolve(layers: list[dict], field_name: str) -> Any:
    coerce = _COERCERS[field_name]
    for layer in layers:
        for path in FIELD_ALIASES[field_name]:
            raw = _lookup(layer, path)
            if raw is _MISSING:
                continue
            value = coerce(raw)
            if value is not None:
                return value
    return None


def normalize(raw: Any, config: ServerConfig, observed_at: datetime) -> CanonicalStatus:
    """
    Normalize one decoded payload (or None) into a CanonicalStatus.

    Pure and total: the same input always yields an equal record, and no
    input makes it raise.
    """
    if not isinstance(raw, dict):
        detail = "empty payload" if raw is None or raw == [] or raw == "" else "unrecognized payload"
        return CanonicalStatus.error(config, detail, observed_at)
    if not raw:
        return CanonicalStatus.error(config, "empty payload", observed_at)

    layers = _candidates(raw)
    resolved = {name: _resolve(layers, name) for name in FIELD_ALIASES}

    if all(value is None for value in resolved.values()):
        # e.g. a placeholder API answering {"userId": 1, "id": 1, "title": ...}
        return CanonicalStatus.error(config, "unrecognized payload", observed_at)

    game_time, game_time_seconds = resolved["game_time"] or (UNKNOWN_TIME, None)

    return CanonicalStatus(
        id=config.id,
        name=config.name,
        outcome=Outcome.SUCCESS,
        timestamp=observed_at,
        allies_count=resolved["allies_count"] or 0,
        axis_count=resolved["axis_count"] or 0,
        game_time=game_time,
        game_time_seconds=game_time_seconds,
        allies_score=resolved["allies_score"] or 0,
        axis_score=resolved["axis_score"] or 0,
        current_map=resolved["current_map"] or UNKNOWN_MAP,
        next_map=resolved["next_map"] or UNKNOWN_MAP,
        max_players=resolved["max_players"] or 0,
    )
