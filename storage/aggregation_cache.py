"""In-memory cache of aggregated events and per-source page state."""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from processor.models import CacheEntry, PageFetchState, ProcessedEvent

logger = logging.getLogger(__name__)


class AggregationCache:
    """
    Session-lifetime store for every event fetched so far.

    The cache is either empty or holds one CacheEntry. Event ids are unique
    within the entry; the first occurrence of an id wins.
    """

    def __init__(self):
        self.entry: Optional[CacheEntry] = None
        self._ids: Set[int] = set()

    @property
    def is_empty(self) -> bool:
        return self.entry is None

    @property
    def events(self) -> List[ProcessedEvent]:
        """All cached events, in merge order."""
        if self.entry is None:
            return []
        return list(self.entry.events)

    def replace(
        self,
        events: Iterable[ProcessedEvent],
        page_state: Dict[str, PageFetchState],
        fetched_at: datetime
    ) -> None:
        """
        Discard the current entry and start over with new contents.

        Args:
            events: Events from the pages recorded in page_state
            page_state: Fetched pages per source name
            fetched_at: Freshness timestamp for the new entry
        """
        self._ids = set()
        unique_events = []
        for event in events:
            if event.id not in self._ids:
                self._ids.add(event.id)
                unique_events.append(event)

        self.entry = CacheEntry(
            events=unique_events,
            fetched_at=fetched_at,
            page_state=page_state
        )
        logger.info(
            f"Cache replaced with {len(unique_events)} events from "
            f"{sum(len(s.fetched) for s in page_state.values())} pages"
        )

    def merge(self, events: Iterable[ProcessedEvent]) -> List[ProcessedEvent]:
        """
        Append events whose id is not already cached.

        Args:
            events: Candidate events from newly fetched pages

        Returns:
            The events that were actually added
        """
        entry = self._require_entry()
        added = []

        for event in events:
            if event.id in self._ids:
                continue
            self._ids.add(event.id)
            entry.events.append(event)
            added.append(event)

        logger.info(
            f"Merged {len(added)} new events; cache now holds "
            f"{len(entry.events)} events"
        )
        return added

    def next_page(self, source: str) -> Optional[int]:
        """Lowest unfetched page for a source, or None when exhausted."""
        return self._require_entry().page_state[source].next_page()

    def mark_fetched(self, source: str, page: int) -> None:
        self._require_entry().page_state[source].mark_fetched(page)

    def fetched_pages(self, source: str) -> Set[int]:
        if self.entry is None:
            return set()
        return set(self.entry.page_state[source].fetched)

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        """Whether an entry exists and is younger than ttl."""
        return self.entry is not None and now - self.entry.fetched_at < ttl

    def has_more_available(self) -> bool:
        """
        Whether any source still has unfetched pages.

        Before the first fetch more events are assumed to exist.
        """
        if self.entry is None:
            return True
        return any(state.has_more() for state in self.entry.page_state.values())

    def remaining_count(self, events_per_page: int) -> int:
        """Rough number of events left on unfetched pages."""
        if self.entry is None:
            return 0
        return sum(
            state.remaining_pages() * events_per_page
            for state in self.entry.page_state.values()
        )

    def _require_entry(self) -> CacheEntry:
        if self.entry is None:
            raise LookupError("No events cache available")
        return self.entry
