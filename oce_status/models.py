import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

UNKNOWN_MAP = "Unknown"
UNKNOWN_TIME = "--:--"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_dt(dt: datetime | None) -> str:
    """Human-readable UTC timestamp for console display."""
    if dt is None:
        return "Never"
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_game_time(seconds: int) -> str:
    """
    Format a non-negative seconds count as MM:SS, or HH:MM:SS from one hour up.

    Matches the text form most upstream APIs already send, so records built
    from numeric and string dialects look identical to the renderer.
    """
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR   = "error"
    LOADING = "loading"


@dataclass(frozen=True)
class ServerConfig:
    """One monitored server. Read-only for the whole engine."""
    id: str
    name: str
    endpoint: str


@dataclass(frozen=True)
class CanonicalStatus:
    """
    The normalized per-server snapshot every upstream dialect is mapped into.

    A record is either a full gameplay observation (SUCCESS) or a failure
    (ERROR) carrying only default gameplay values plus error_detail; the two
    are never mixed. LOADING marks a configured server not yet polled.
    """
    id: str
    name: str
    outcome: Outcome
    timestamp: datetime
    allies_count: int = 0
    axis_count: int = 0
    game_time: str = UNKNOWN_TIME
    game_time_seconds: int | None = None    # None means unknown
    allies_score: int = 0                   # 0-5, best-of-5 round counter
    axis_score: int = 0
    current_map: str = UNKNOWN_MAP
    next_map: str = UNKNOWN_MAP
    max_players: int = 0                    # 0 means unknown
    error_detail: str | None = None
    retry_count: int = 0                    # consecutive failures, set by the poller

    @classmethod
    def error(cls, config: ServerConfig, detail: str, observed_at: datetime) -> "CanonicalStatus":
        return cls(
            id=config.id,
            name=config.name,
            outcome=Outcome.ERROR,
            timestamp=observed_at,
            error_detail=detail,
        )

    @classmethod
    def loading(cls, config: ServerConfig, observed_at: datetime) -> "CanonicalStatus":
        return cls(id=config.id, name=config.name, outcome=Outcome.LOADING, timestamp=observed_at)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def total_players(self) -> int:
        return self.allies_count + self.axis_count


# Fields compared between rounds. timestamp and retry_count describe the
# observation rather than the server, so they never count as a change.
COMPARED_FIELDS: tuple[str, ...] = (
    "name",
    "outcome",
    "allies_count",
    "axis_count",
    "game_time",
    "game_time_seconds",
    "allies_score",
    "axis_score",
    "current_map",
    "next_map",
    "max_players",
    "error_detail",
)


@dataclass(frozen=True)
class RoundNotification:
    """What subscribers receive after every completed round."""
    statuses: Mapping[str, CanonicalStatus]          # id -> record, config order
    changes: Mapping[str, frozenset[str]]            # id -> changed field names
    completed_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        # read-only views so one subscriber cannot alter what the next sees
        object.__setattr__(self, "statuses", MappingProxyType(dict(self.statuses)))
        object.__setattr__(self, "changes", MappingProxyType(dict(self.changes)))

    def changed_ids(self) -> list[str]:
        return [sid for sid, fields in self.changes.items() if fields]
