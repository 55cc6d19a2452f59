"""Coordinates page fetching, normalization and caching across sources."""
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from processor.event_processor import EventProcessor, utc_now
from processor.models import PageFetchState, ProcessedEvent, SourceConfig
from scraper.event_source import EventSourceClient
from storage.aggregation_cache import AggregationCache

logger = logging.getLogger(__name__)

DisplayedEvents = Iterable[Union[ProcessedEvent, int]]


class EventAggregationError(Exception):
    """Raised when events could not be fetched from the sources."""


class NoEventsFoundError(EventAggregationError):
    """Raised when the initial fetch returns no events from any source."""


class CacheNotInitializedError(EventAggregationError):
    """Raised when loading more events before the initial fetch."""


class PaginationCoordinator:
    """
    Owns the session cache and decides which source pages to fetch.

    Each operation runs one batch at a time: every page request in a batch
    is issued concurrently and joined before the cache is touched. Calls
    are not serialized, so two overlapping load_more calls can race on a
    source's fetched pages and fetch or mark the same page twice. Callers
    are expected to wait for one operation before starting the next.
    """

    INITIAL_PAGES = (1, 2)
    CACHE_TTL = timedelta(minutes=30)
    SAMPLE_SIZE = 15
    CATEGORY_TARGET = 10
    MAX_CATEGORY_ATTEMPTS = 5
    EVENTS_PER_PAGE = 10

    def __init__(
        self,
        client: EventSourceClient,
        processor: EventProcessor,
        sources: Sequence[SourceConfig],
        cache: Optional[AggregationCache] = None,
        lookahead_days: int = EventSourceClient.LOOKAHEAD_DAYS,
        ttl: timedelta = CACHE_TTL,
        sample_size: int = SAMPLE_SIZE,
        category_target: int = CATEGORY_TARGET,
        max_category_attempts: int = MAX_CATEGORY_ATTEMPTS,
        events_per_page: int = EVENTS_PER_PAGE,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the coordinator.

        Args:
            client: Client used to fetch raw pages
            processor: Normalizer for raw records
            sources: Sources to aggregate, in merge order
            cache: Cache to own (default: a new empty cache)
            lookahead_days: Day window requested from every source
            ttl: Age after which initial_fetch refetches instead of resampling
            sample_size: Maximum events returned by initial_fetch
            category_target: Events sought by load_more_in_category
            max_category_attempts: Page advances allowed per category search
            events_per_page: Assumed events per source page for estimates
            rng: Random source for initial sampling
            clock: Callable returning the current aware datetime
        """
        self.client = client
        self.processor = processor
        self.sources = list(sources)
        self.cache = cache if cache is not None else AggregationCache()
        self.lookahead_days = lookahead_days
        self.ttl = ttl
        self.sample_size = sample_size
        self.category_target = category_target
        self.max_category_attempts = max_category_attempts
        self.events_per_page = events_per_page
        self.rng = rng or random.Random()
        self.clock = clock

    def initial_fetch(self, force_refresh: bool = False) -> List[ProcessedEvent]:
        """
        Return a random sample of events, fetching the first pages if needed.

        While the cache is fresh the sample is drawn from everything cached
        so far, so repeated calls reshuffle without touching the network.
        Otherwise the first two pages of every source replace the cache.

        Args:
            force_refresh: Refetch even if the cache is still fresh

        Returns:
            Up to sample_size events in random order

        Raises:
            NoEventsFoundError: If no source returned any event
            EventAggregationError: If a page request failed
        """
        now = self.clock()
        if not force_refresh and self.cache.is_fresh(now, self.ttl):
            logger.info("Serving initial events from cache")
            return self._sample(self.cache.events)

        pages_by_source = {
            source.name: [p for p in self.INITIAL_PAGES if p <= source.page_ceiling]
            for source in self.sources
        }

        try:
            events = self._fetch_batch(pages_by_source)
        except Exception as e:
            logger.error(f"Initial events fetch failed: {e}")
            raise EventAggregationError(f"Failed to fetch events: {e}") from e

        if not events:
            names = ' or '.join(source.name for source in self.sources)
            raise NoEventsFoundError(
                f"Failed to fetch events: no events found from either {names} source"
            )

        page_state = {
            source.name: PageFetchState(
                ceiling=source.page_ceiling,
                fetched=set(pages_by_source[source.name])
            )
            for source in self.sources
        }
        self.cache.replace(events, page_state, fetched_at=now)

        return self._sample(self.cache.events)

    def load_more(self, displayed_events: DisplayedEvents) -> List[ProcessedEvent]:
        """
        Fetch the next page of every source that still has pages.

        Args:
            displayed_events: Events (or ids) the caller already shows

        Returns:
            Newly cached events that are not already displayed, empty when
            every source is exhausted

        Raises:
            CacheNotInitializedError: If initial_fetch has not run
            EventAggregationError: If a page request failed
        """
        self._require_cache()
        displayed_ids = self._displayed_ids(displayed_events)

        try:
            new_events = self._advance()
        except Exception as e:
            logger.error(f"Load more events failed: {e}")
            raise EventAggregationError(f"Failed to load more events: {e}") from e

        if new_events is None:
            logger.info("No more pages available")
            return []

        return [event for event in new_events if event.id not in displayed_ids]

    def load_more_in_category(
        self,
        category: str,
        displayed_events: DisplayedEvents
    ) -> List[ProcessedEvent]:
        """
        Advance through pages until enough events of one category turn up.

        Stops after max_category_attempts page advances, once
        category_target matches were found, or when all sources run out.
        Events merged by earlier advances stay cached if a later one fails.

        Args:
            category: Category to collect
            displayed_events: Events (or ids) the caller already shows

        Returns:
            Up to category_target new events in that category

        Raises:
            CacheNotInitializedError: If initial_fetch has not run
            EventAggregationError: If a page request failed
        """
        self._require_cache()
        displayed_ids = self._displayed_ids(displayed_events)
        found: List[ProcessedEvent] = []
        attempts = 0

        try:
            while len(found) < self.category_target and attempts < self.max_category_attempts:
                new_events = self._advance()
                if new_events is None:
                    break

                found.extend(
                    event for event in new_events
                    if event.category == category and event.id not in displayed_ids
                )
                attempts += 1
        except Exception as e:
            logger.error(f"Load more {category} events failed: {e}")
            raise EventAggregationError(
                f"Failed to load more {category} events: {e}"
            ) from e

        logger.info(
            f"Found {len(found)} {category} events in {attempts} page advances"
        )
        return found[:self.category_target]

    def has_more_available(self) -> bool:
        return self.cache.has_more_available()

    def remaining_count(self) -> int:
        """Estimated events left, assuming events_per_page per unfetched page."""
        return self.cache.remaining_count(self.events_per_page)

    def has_cached_events(self) -> bool:
        return self.cache.is_fresh(self.clock(), self.ttl)

    def cached_events(self) -> List[ProcessedEvent]:
        """Every cached event while the cache is fresh, otherwise empty."""
        if self.has_cached_events():
            return self.cache.events
        return []

    def _advance(self) -> Optional[List[ProcessedEvent]]:
        """
        Fetch one next page per source and merge it into the cache.

        Returns:
            Events newly added to the cache, or None if every source is
            exhausted
        """
        pages_by_source = {}
        for source in self.sources:
            next_page = self.cache.next_page(source.name)
            if next_page is not None:
                pages_by_source[source.name] = [next_page]

        if not pages_by_source:
            return None

        events = self._fetch_batch(pages_by_source)

        for name, pages in pages_by_source.items():
            for page in pages:
                self.cache.mark_fetched(name, page)

        return self.cache.merge(events)

    def _fetch_batch(self, pages_by_source: Dict[str, List[int]]) -> List[ProcessedEvent]:
        """
        Fetch and normalize several pages concurrently.

        Args:
            pages_by_source: Page numbers to fetch, keyed by source name

        Returns:
            Normalized events ordered by instant
        """
        sources = {source.name: source for source in self.sources}
        page_requests = [
            (sources[name], page)
            for name, pages in pages_by_source.items()
            for page in pages
        ]
        if not page_requests:
            return []

        logger.info(
            "Fetching pages: " + ', '.join(
                f"{name}={pages}" for name, pages in pages_by_source.items()
            )
        )

        with ThreadPoolExecutor(max_workers=len(page_requests)) as executor:
            futures = [
                (source, executor.submit(
                    self.client.fetch_page, source, page, self.lookahead_days
                ))
                for source, page in page_requests
            ]
            # Join in submission order so results merge deterministically
            results = [(source, future.result()) for source, future in futures]

        events = []
        for source, raw_events in results:
            events.extend(self.processor.process_events(raw_events, source=source.name))

        events.sort(key=lambda event: event.instant)
        logger.info(f"Batch produced {len(events)} events from {len(page_requests)} pages")
        return events

    def _sample(self, events: List[ProcessedEvent]) -> List[ProcessedEvent]:
        return self.rng.sample(events, min(self.sample_size, len(events)))

    def _require_cache(self) -> None:
        if self.cache.is_empty:
            raise CacheNotInitializedError("No events cache available")

    @staticmethod
    def _displayed_ids(displayed_events: DisplayedEvents) -> Set[int]:
        return {
            event.id if isinstance(event, ProcessedEvent) else int(event)
            for event in displayed_events
        }
