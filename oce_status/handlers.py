
# Round subscribers: the output end of the pipeline.

# a subscriber receives one RoundNotification per completed round and
# decides what to do with it. All formatting lives here; CanonicalStatus
# stays a plain data container with no display logic.

# to add a new output target, implement a class with:
#     async def handle(self, notification: RoundNotification) -> None: ...
# and pass `instance.handle` to StatusMonitor.subscribe().


import logging

from oce_status.models import CanonicalStatus, Outcome, RoundNotification, format_dt

log = logging.getLogger(__name__)

# ─── ANSI styling (safe to strip if plain output is needed) ──────────────────

_R = "\033[0m"            # reset
_CHANGED = "\033[1;33m"   # bold yellow: value differs from the previous round

_OUTCOME_COLOR: dict[Outcome, str] = {
    Outcome.SUCCESS: "\033[32m",   # green
    Outcome.ERROR:   "\033[31m",   # red
    Outcome.LOADING: "\033[34m",   # blue
}


def _color_outcome(outcome: Outcome) -> str:
    c = _OUTCOME_COLOR.get(outcome, "")
    label = outcome.value.upper()
    return f"{c}{label}{_R}" if c else label


class ConsoleEventHandler:
    """
    Prints one line per server per round to stdout.

    Format:
        [2026-10-19 12:39:08 UTC] EU #1 | SUCCESS | Allies=31 Axis=29 | Score=2-3 | Time=01:12:05 | Map=Carentan | Next=Foy

    Fields that changed since the previous round are highlighted, which is
    the console counterpart of a table cell flashing in the web view.

    only_changed=True prints only servers with at least one changed field.
    """

    def __init__(self, only_changed: bool = False, color: bool = True) -> None:
        self._only_changed = only_changed
        self._color = color

    async def handle(self, notification: RoundNotification) -> None:
        for server_id, status in notification.statuses.items():
            changed = notification.changes.get(server_id, frozenset())
            if self._only_changed and not changed:
                continue
            print(self.format(status, changed), flush=True)

    def format(self, s: CanonicalStatus, changed: frozenset[str] = frozenset()) -> str:
        outcome = _color_outcome(s.outcome) if self._color else s.outcome.value.upper()
        head = f"[{format_dt(s.timestamp)}] {s.name} | {outcome} | "

        if s.outcome is Outcome.ERROR:
            retry = f" (x{s.retry_count})" if s.retry_count > 1 else ""
            return head + f"Error={self._mark(s.error_detail, 'error_detail', changed)}{retry}"
        if s.outcome is Outcome.LOADING:
            return head + "Waiting for first poll"

        allies = self._mark(s.allies_count, "allies_count", changed)
        axis   = self._mark(s.axis_count, "axis_count", changed)
        a_sc   = self._mark(s.allies_score, "allies_score", changed)
        x_sc   = self._mark(s.axis_score, "axis_score", changed)
        gtime  = self._mark(s.game_time, "game_time", changed)
        cur    = self._mark(s.current_map, "current_map", changed)
        nxt    = self._mark(s.next_map, "next_map", changed)

        return (
            head
            + f"Allies={allies} Axis={axis} | "
            + f"Score={a_sc}-{x_sc} | "
            + f"Time={gtime} | "
            + f"Map={cur} | "
            + f"Next={nxt}"
        )

    def _mark(self, value, field_name: str, changed: frozenset[str]) -> str:
        text = str(value)
        if self._color and field_name in changed:
            return f"{_CHANGED}{text}{_R}"
        return text
