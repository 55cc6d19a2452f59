"""Shared fixtures for the events aggregator tests."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.models import ProcessedEvent


FIXED_NOW = datetime(2025, 4, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def make_event():
    """Factory for ProcessedEvent objects with overridable fields."""
    def _make_event(event_id, **overrides):
        fields = {
            'id': event_id,
            'title': f'Event {event_id}',
            'date_label': 'Thu, Apr 17',
            'time_label': '9:00 AM',
            'location': 'Student Union',
            'description': 'Sample description',
            'cost': 'Free',
            'instant': FIXED_NOW + timedelta(days=7),
            'category': 'Other'
        }
        fields.update(overrides)
        if 'popularity_score' not in overrides:
            fields['popularity_score'] = (
                fields.get('attendance_count', 0) * 2 + fields.get('ranking', 0)
            )
        return ProcessedEvent(**fields)

    return _make_event
