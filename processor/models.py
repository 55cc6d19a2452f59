"""Data models for event aggregation."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

# Decoded JSON mapping for one event as returned by a remote source
RawSourceEvent = Dict[str, Any]


@dataclass(frozen=True)
class SourceConfig:
    """A paginated remote event source."""
    name: str
    base_url: str
    page_ceiling: int


@dataclass
class Contact:
    """Contact details attached to an event."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class ProcessedEvent:
    """Normalized event ready for display."""
    id: int
    title: str
    date_label: str
    time_label: str
    location: str
    description: str
    cost: str
    instant: datetime
    category: str = 'Other'
    experience: Optional[str] = None
    college: Optional[str] = None
    ranking: int = 0
    attendance_count: int = 0
    popularity_score: int = 0
    contact: Optional[Contact] = None
    url: Optional[str] = None
    image: Optional[str] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a JSON-safe dictionary.

        Returns:
            Dictionary with the instant rendered as ISO 8601
        """
        item = {
            'id': self.id,
            'title': self.title,
            'date': self.date_label,
            'time': self.time_label,
            'location': self.location,
            'description': self.description,
            'cost': self.cost,
            'raw_date': self.instant.isoformat(),
            'category': self.category,
            'ranking': self.ranking,
            'num_attending': self.attendance_count,
            'popularity_score': self.popularity_score
        }

        # Add optional fields if present
        if self.experience:
            item['type'] = self.experience
        if self.college:
            item['college'] = self.college
        if self.contact:
            item['contact'] = {
                'name': self.contact.name,
                'email': self.contact.email,
                'phone': self.contact.phone
            }
        if self.url:
            item['url'] = self.url
        if self.image:
            item['image'] = self.image
        if self.source:
            item['source'] = self.source

        return item


@dataclass
class PageFetchState:
    """Pages already retrieved from one source."""
    ceiling: int
    fetched: Set[int] = field(default_factory=set)

    def next_page(self) -> Optional[int]:
        """Lowest page number not yet fetched, or None when exhausted."""
        for page in range(1, self.ceiling + 1):
            if page not in self.fetched:
                return page
        return None

    def mark_fetched(self, page: int) -> None:
        self.fetched.add(page)

    def has_more(self) -> bool:
        return len(self.fetched) < self.ceiling

    def remaining_pages(self) -> int:
        return max(0, self.ceiling - len(self.fetched))


@dataclass
class CacheEntry:
    """Everything fetched during the current session."""
    events: List[ProcessedEvent]
    fetched_at: datetime
    page_state: Dict[str, PageFetchState]


@dataclass
class ViewPage:
    """One page of a filtered and sorted event view."""
    events: List[ProcessedEvent]
    page: int
    page_size: int
    total_events: int
    total_pages: int
    ordering: str
