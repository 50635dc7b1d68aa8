from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from oce_status.models import COMPARED_FIELDS, CanonicalStatus, utcnow


def diff_fields(previous: CanonicalStatus | None, current: CanonicalStatus) -> frozenset[str]:
    """Names of the compared fields whose value differs. No previous record: all of them."""
    if previous is None:
        return frozenset(COMPARED_FIELDS)
    return frozenset(
        name for name in COMPARED_FIELDS
        if getattr(previous, name) != getattr(current, name)
    )


@dataclass(frozen=True)
class CacheEntry:
    status: CanonicalStatus
    changed: frozenset[str]


class StatusCache:
    """
    Latest record per server id, plus what changed in the round that wrote it.

    Why keep the change-set instead of the previous record?

    The renderer only ever asks "which cells should flash". Keeping the prior
    record around would mean an ever-present second copy of every server for
    a question that is fully answered the moment the round lands. So the
    previous record is read once during apply() and then dropped.

    apply() has no await in it: under asyncio that makes a whole round's
    merge a single step, and no reader can observe a half-updated cache.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._last_updated: datetime | None = None

    def apply(
        self,
        round_results: Mapping[str, CanonicalStatus],
        configured_ids: Iterable[str] | None = None,
    ) -> dict[str, frozenset[str]]:
        """
        Merge one round into the cache and return id -> changed field names.

        Ids outside configured_ids (default: the ids in this round) are evicted
        first, so servers removed from the configuration disappear here and
        nowhere earlier.
        """
        keep = set(round_results) if configured_ids is None else set(configured_ids)
        for stale in self._entries.keys() - keep:
            del self._entries[stale]

        changes: dict[str, frozenset[str]] = {}
        for server_id, status in round_results.items():
            previous = self._entries.get(server_id)
            changed = diff_fields(previous.status if previous else None, status)
            self._entries[server_id] = CacheEntry(status=status, changed=changed)
            changes[server_id] = changed

        self._last_updated = utcnow()
        return changes

    def get(self, server_id: str) -> CanonicalStatus | None:
        entry = self._entries.get(server_id)
        return entry.status if entry else None

    def changes_for(self, server_id: str) -> frozenset[str]:
        entry = self._entries.get(server_id)
        return entry.changed if entry else frozenset()

    def all(self) -> dict[str, CanonicalStatus]:
        return {server_id: entry.status for server_id, entry in self._entries.items()}

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    def clear(self) -> None:
        self._entries.clear()
        self._last_updated = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._entries
