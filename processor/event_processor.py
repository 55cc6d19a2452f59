"""Event processor for normalizing raw source events."""
import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from processor.models import Contact, ProcessedEvent, RawSourceEvent

logger = logging.getLogger(__name__)

# Taxonomy groups in the order they are consulted for the category
CATEGORY_PRIORITY = (
    'event_types',
    'event_themes',
    'event_program_area',
    'event_audience',
    'event_academic_college',
)

ENTITY_PATTERN = re.compile(r'&[a-z]+;', re.IGNORECASE)
WHITESPACE_PATTERN = re.compile(r'\s+')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventProcessor:
    """Processor for turning raw source records into ProcessedEvents."""

    MAX_DESCRIPTION_LENGTH = 200

    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utc_now,
        max_description_length: int = MAX_DESCRIPTION_LENGTH
    ):
        """
        Initialize the event processor.

        Args:
            tz: Timezone that defines the local calendar day for labels
            clock: Callable returning the current aware datetime
            max_description_length: Maximum cleaned description length
        """
        self.tz = tz
        self.clock = clock
        self.max_description_length = max_description_length

    def process_events(
        self,
        raw_events: List[RawSourceEvent],
        source: Optional[str] = None
    ) -> List[ProcessedEvent]:
        """
        Normalize a list of raw events, dropping unusable records.

        Args:
            raw_events: Raw event mappings from one or more source pages
            source: Name of the source the records came from

        Returns:
            List of ProcessedEvent objects
        """
        processed_events = []

        for raw in raw_events:
            try:
                processed_event = self.normalize(raw, source=source)
                if processed_event:
                    processed_events.append(processed_event)
            except Exception as e:
                logger.warning(
                    f"Failed to process event '{raw.get('title')}': {e}"
                )
                continue

        logger.info(
            f"Processed {len(processed_events)} valid events out of "
            f"{len(raw_events)} total events"
        )
        return processed_events

    def normalize(
        self,
        raw: RawSourceEvent,
        source: Optional[str] = None
    ) -> Optional[ProcessedEvent]:
        """
        Convert one raw record into a ProcessedEvent.

        Args:
            raw: Raw event mapping
            source: Name of the source the record came from

        Returns:
            ProcessedEvent or None if the record has no schedule instance
        """
        instances = raw.get('event_instances') or []
        if not instances or not instances[0].get('event_instance'):
            return None

        instance = instances[0]['event_instance']
        date_label, time_label, instant = self.format_event_date_time(
            instance.get('start'),
            bool(instance.get('all_day'))
        )

        ranking = int(instance.get('ranking') or 0)
        attendance_count = int(instance.get('num_attending') or 0)
        filters = raw.get('filters') or {}
        colleges = filters.get('event_academic_college') or []

        return ProcessedEvent(
            id=int(raw['id']),
            title=raw.get('title') or '',
            date_label=date_label,
            time_label=time_label,
            location=(
                raw.get('location_name') or raw.get('location') or 'Location TBD'
            ),
            description=self.clean_description(
                raw.get('description_text') or raw.get('description'),
                self.max_description_length
            ),
            cost=self.format_cost(raw.get('ticket_cost')),
            instant=instant,
            category=self.get_event_category(filters),
            experience=raw.get('experience'),
            college=colleges[0].get('name') if colleges else None,
            ranking=ranking,
            attendance_count=attendance_count,
            popularity_score=self.popularity_score(attendance_count, ranking),
            contact=self._build_contact(raw.get('custom_fields')),
            url=raw.get('localist_url'),
            image=raw.get('photo_url'),
            source=source
        )

    def format_event_date_time(
        self,
        start: Optional[str],
        all_day: bool
    ) -> Tuple[str, str, datetime]:
        """
        Build date and time labels for an event start.

        Events without a usable start are placed at the current instant.

        Args:
            start: ISO 8601 start timestamp
            all_day: Whether the instance spans the whole day

        Returns:
            Tuple of (date_label, time_label, instant)
        """
        now = self.clock()

        if not start:
            logger.warning("No start time provided for event")
            return 'Date TBD', 'Time TBD', now

        instant = self._parse_instant(start)
        if instant is None:
            logger.warning(f"Invalid date string: {start}")
            return 'Date TBD', 'Time TBD', now

        local = instant.astimezone(self.tz)
        today = now.astimezone(self.tz).date()

        if local.date() == today:
            date_label = 'Today'
        elif local.date() == today + timedelta(days=1):
            date_label = 'Tomorrow'
        else:
            date_label = f"{local.strftime('%a, %b')} {local.day}"
            if local.year != today.year:
                date_label = f"{date_label}, {local.year}"

        if all_day:
            time_label = 'All Day'
        else:
            hour = local.hour % 12 or 12
            meridiem = 'AM' if local.hour < 12 else 'PM'
            time_label = f"{hour}:{local.minute:02d} {meridiem}"

        return date_label, time_label, instant

    def _parse_instant(self, start: str) -> Optional[datetime]:
        try:
            instant = datetime.fromisoformat(start.strip())
        except ValueError:
            return None

        # Naive timestamps are local to the deployment timezone
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        return instant

    @staticmethod
    def clean_description(
        html: Optional[str],
        max_length: int = MAX_DESCRIPTION_LENGTH
    ) -> str:
        """
        Strip markup from a description and bound its length.

        Args:
            html: Description that may contain HTML tags and entities
            max_length: Maximum length before truncation

        Returns:
            Plain text, truncated at a word boundary with '...' if too long
        """
        if not html:
            return ''

        text = ENTITY_PATTERN.sub(' ', html)
        text = BeautifulSoup(text, 'html.parser').get_text(separator=' ')
        text = WHITESPACE_PATTERN.sub(' ', text).strip()

        if len(text) <= max_length:
            return text

        truncated = text[:max_length]
        last_space = truncated.rfind(' ')
        if last_space > 0:
            return truncated[:last_space] + '...'
        return truncated + '...'

    @staticmethod
    def format_cost(cost: Optional[str]) -> str:
        """
        Label the ticket cost.

        Anything mentioning "free" is labeled Free, even mixed pricing
        such as "$5, free for students".
        """
        if not cost:
            return 'Free'
        if 'free' in cost.lower():
            return 'Free'
        return cost

    @staticmethod
    def get_event_category(filters: Optional[Dict[str, Any]]) -> str:
        """
        Pick the first tag name from the highest priority non-empty group.

        Args:
            filters: Taxonomy tag groups from the raw record

        Returns:
            Category name, or 'Other' when no tags are present
        """
        if not filters:
            return 'Other'

        for group in CATEGORY_PRIORITY:
            tags = filters.get(group)
            if tags:
                return tags[0]['name']

        return 'Other'

    @staticmethod
    def popularity_score(attendance_count: int, ranking: int) -> int:
        return attendance_count * 2 + ranking

    @staticmethod
    def _build_contact(custom_fields: Optional[Dict[str, Any]]) -> Optional[Contact]:
        if not custom_fields:
            return None
        return Contact(
            name=custom_fields.get('contact_name'),
            email=custom_fields.get('contact_email'),
            phone=custom_fields.get('contact_phone')
        )
