"""Filtering, sorting and paging of processed events."""
import logging
import math
from datetime import datetime, timezone, tzinfo
from typing import List, Optional

from processor.models import ProcessedEvent, ViewPage

logger = logging.getLogger(__name__)

DATE_FILTERS = ('all', 'today', 'upcoming')
POPULAR_PAGES = 2
PAGE_SIZE = 10


def filter_by_date(
    events: List[ProcessedEvent],
    mode: str,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc
) -> List[ProcessedEvent]:
    """
    Filter events by date.

    'today' compares local calendar days while 'upcoming' compares instants,
    so an event later today matches both.

    Args:
        events: Events to filter
        mode: One of 'all', 'today' or 'upcoming'
        now: Reference instant (default: current time)
        tz: Timezone that defines the local calendar day

    Returns:
        Matching events in their original order
    """
    if mode not in DATE_FILTERS:
        raise ValueError(f"Unknown date filter: {mode}")

    if mode == 'all':
        return list(events)

    now = now or datetime.now(timezone.utc)

    if mode == 'today':
        today = now.astimezone(tz).date()
        filtered = [e for e in events if e.instant.astimezone(tz).date() == today]
    else:
        filtered = [e for e in events if e.instant > now]

    logger.debug(f"{mode} filter kept {len(filtered)} of {len(events)} events")
    return filtered


def filter_by_category(events: List[ProcessedEvent], category: str) -> List[ProcessedEvent]:
    if category == 'all':
        return list(events)
    return [e for e in events if e.category == category]


def filter_by_experience(events: List[ProcessedEvent], experience: str) -> List[ProcessedEvent]:
    """Keep events held in person, virtually or hybrid."""
    return [e for e in events if e.experience == experience]


def search_events(events: List[ProcessedEvent], keyword: str) -> List[ProcessedEvent]:
    """Case-insensitive substring search over title, description and location."""
    term = keyword.lower()
    return [
        e for e in events
        if term in e.title.lower()
        or term in e.description.lower()
        or term in e.location.lower()
    ]


def filter_events(
    events: List[ProcessedEvent],
    date_filter: str,
    category_filter: str,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc
) -> List[ProcessedEvent]:
    filtered = filter_by_date(events, date_filter, now=now, tz=tz)
    return filter_by_category(filtered, category_filter)


def sort_by_popularity(events: List[ProcessedEvent]) -> List[ProcessedEvent]:
    """Most popular first; ties keep their original order."""
    return sorted(events, key=lambda e: e.popularity_score, reverse=True)


def sort_chronologically(events: List[ProcessedEvent]) -> List[ProcessedEvent]:
    return sorted(events, key=lambda e: e.instant)


def filter_and_sort_events(
    events: List[ProcessedEvent],
    date_filter: str,
    category_filter: str,
    sort_popular: bool = False,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc
) -> List[ProcessedEvent]:
    filtered = filter_events(events, date_filter, category_filter, now=now, tz=tz)
    if sort_popular:
        filtered = sort_by_popularity(filtered)
    return filtered


def get_event_categories(events: List[ProcessedEvent]) -> List[str]:
    """Unique categories, alphabetically."""
    return sorted({e.category for e in events if e.category})


def build_view_page(
    events: List[ProcessedEvent],
    page: int,
    page_size: int = PAGE_SIZE,
    date_filter: str = 'all',
    category_filter: str = 'all',
    popular_pages: int = POPULAR_PAGES,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc
) -> ViewPage:
    """
    Build one page of the filtered event list.

    The first popular_pages pages are ordered by popularity and later pages
    chronologically, so an event can appear at different positions
    depending on the page requested.

    Args:
        events: Events to present
        page: 1-based page number
        page_size: Events per page
        date_filter: One of 'all', 'today' or 'upcoming'
        category_filter: Category name or 'all'
        popular_pages: Number of leading pages sorted by popularity
        now: Reference instant for date filtering
        tz: Timezone that defines the local calendar day

    Returns:
        ViewPage with the requested slice
    """
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    filtered = filter_events(events, date_filter, category_filter, now=now, tz=tz)

    if page <= popular_pages:
        ordered = sort_by_popularity(filtered)
        ordering = 'popularity'
    else:
        ordered = sort_chronologically(filtered)
        ordering = 'chronological'

    start = (page - 1) * page_size
    return ViewPage(
        events=ordered[start:start + page_size],
        page=page,
        page_size=page_size,
        total_events=len(filtered),
        total_pages=math.ceil(len(filtered) / page_size),
        ordering=ordering
    )
