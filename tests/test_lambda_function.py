"""Integration tests for Lambda handler."""
import json
import logging
import os
from datetime import timedelta
from unittest.mock import Mock, patch
import pytest
import responses
from responses import matchers

import lambda_function
from lambda_function import JsonFormatter, lambda_handler, setup_logging
from coordinator.pagination_coordinator import (
    CacheNotInitializedError,
    EventAggregationError,
    NoEventsFoundError,
)


MAIN_URL = 'https://events.example.edu/api/2/events'
EXTENSION_URL = 'https://ag-events.example.edu/api/2/events'


@pytest.fixture
def mock_env():
    """Set up environment variables for testing."""
    env_vars = {
        'LOG_LEVEL': 'INFO',
        'MAIN_EVENTS_URL': MAIN_URL,
        'EXTENSION_EVENTS_URL': EXTENSION_URL,
        'MAIN_PAGE_CEILING': '3',
        'EXTENSION_PAGE_CEILING': '2',
        'RANDOM_SEED': '42',
        'MAX_RETRIES': '1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


@pytest.fixture(autouse=True)
def reset_coordinator():
    """Start every test with a cold container."""
    lambda_function._coordinator = None
    yield
    lambda_function._coordinator = None


@pytest.fixture
def mock_context():
    """Create a mock Lambda context."""
    context = Mock()
    context.function_name = 'test-function'
    context.memory_limit_in_mb = 512
    context.aws_request_id = 'test-request-id'
    return context


@pytest.fixture
def mock_coordinator():
    """Replace the wired coordinator with a mock."""
    coordinator = Mock()
    coordinator.has_more_available.return_value = True
    coordinator.remaining_count.return_value = 40
    coordinator.has_cached_events.return_value = True
    coordinator.cache.events = []
    with patch('lambda_function.build_coordinator', return_value=coordinator):
        yield coordinator


def raw_page(ids, category='Academic'):
    return {
        'events': [
            {'event': {
                'id': event_id,
                'title': f'Event {event_id}',
                'location_name': 'Library',
                'ticket_cost': '$5',
                'event_instances': [{'event_instance': {
                    'start': '2025-04-15T10:00:00Z',
                    'all_day': False,
                    'ranking': 1,
                    'num_attending': event_id % 5
                }}],
                'filters': {'event_types': [{'name': category, 'id': 1}]}
            }}
            for event_id in ids
        ],
        'page': {'current': 1, 'size': 10, 'total': 3},
        'date': {'first': '2025-04-10', 'last': '2025-06-09'}
    }


class TestLambdaHandler:
    """Test cases for Lambda handler dispatch."""

    def test_initial_fetch(self, mock_env, mock_context, mock_coordinator, make_event):
        """Test the default action returns the initial sample."""
        mock_coordinator.initial_fetch.return_value = [make_event(1), make_event(2)]

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert [e['id'] for e in body['events']] == [1, 2]
        assert body['has_more'] is True
        assert body['remaining_count'] == 40
        assert 'duration_seconds' in body
        mock_coordinator.initial_fetch.assert_called_once_with(force_refresh=False)

    def test_force_refresh(self, mock_env, mock_context, mock_coordinator):
        mock_coordinator.initial_fetch.return_value = []

        lambda_handler({'action': 'initial', 'force_refresh': True}, mock_context)

        mock_coordinator.initial_fetch.assert_called_once_with(force_refresh=True)

    def test_load_more(self, mock_env, mock_context, mock_coordinator, make_event):
        """Test displayed ids are passed through to load_more."""
        mock_coordinator.load_more.return_value = [make_event(3)]

        response = lambda_handler(
            {'action': 'load_more', 'displayed_ids': [1, '2']}, mock_context
        )

        assert response['statusCode'] == 200
        assert [e['id'] for e in json.loads(response['body'])['events']] == [3]
        mock_coordinator.load_more.assert_called_once_with([1, 2])

    def test_load_more_category(self, mock_env, mock_context, mock_coordinator, make_event):
        mock_coordinator.load_more_in_category.return_value = [
            make_event(4, category='Music')
        ]

        response = lambda_handler(
            {'action': 'load_more_category', 'category': 'Music', 'displayed_ids': [1]},
            mock_context
        )

        assert response['statusCode'] == 200
        mock_coordinator.load_more_in_category.assert_called_once_with('Music', [1])

    def test_load_more_category_requires_category(self, mock_env, mock_context, mock_coordinator):
        response = lambda_handler({'action': 'load_more_category'}, mock_context)

        assert response['statusCode'] == 400
        assert not mock_coordinator.load_more_in_category.called

    def test_view(self, mock_env, mock_context, mock_coordinator, make_event, fixed_now):
        """Test the view action pages over the cached events."""
        mock_coordinator.cache.events = [
            make_event(n, popularity_score=n, category='Music',
                       instant=fixed_now + timedelta(days=n))
            for n in range(1, 6)
        ]

        response = lambda_handler(
            {'action': 'view', 'page': 1, 'page_size': 2, 'category': 'Music'},
            mock_context
        )

        assert response['statusCode'] == 200
        body = json.loads(response['body'])
        assert [e['id'] for e in body['events']] == [5, 4]
        assert body['ordering'] == 'popularity'
        assert body['total_pages'] == 3
        assert body['categories'] == ['Music']

    def test_status(self, mock_env, mock_context, mock_coordinator, make_event):
        mock_coordinator.cache.events = [make_event(1, category='Arts')]

        body = json.loads(lambda_handler({'action': 'status'}, mock_context)['body'])

        assert body['has_more'] is True
        assert body['remaining_count'] == 40
        assert body['cached_events'] == 1
        assert body['cache_fresh'] is True
        assert body['categories'] == ['Arts']

    def test_unknown_action(self, mock_env, mock_context, mock_coordinator):
        response = lambda_handler({'action': 'delete_everything'}, mock_context)

        assert response['statusCode'] == 400
        assert 'Unknown action' in json.loads(response['body'])['error']

    def test_non_object_payload(self, mock_env, mock_context, mock_coordinator):
        """Test a payload that is not a mapping is a bad request."""
        response = lambda_handler(['load_more'], mock_context)

        assert response['statusCode'] == 400
        assert 'JSON object' in json.loads(response['body'])['error']
        assert not mock_coordinator.load_more.called

    def test_load_more_before_initial(self, mock_env, mock_context, mock_coordinator):
        """Test load_more on a cold cache is a conflict."""
        mock_coordinator.load_more.side_effect = CacheNotInitializedError(
            'No events cache available'
        )

        response = lambda_handler({'action': 'load_more'}, mock_context)

        assert response['statusCode'] == 409
        assert json.loads(response['body'])['error_type'] == 'CacheNotInitializedError'

    def test_fetch_failure(self, mock_env, mock_context, mock_coordinator):
        """Test aggregation errors become 500 responses."""
        mock_coordinator.initial_fetch.side_effect = NoEventsFoundError(
            'Failed to fetch events: no events found from either main or extension source'
        )

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Failed to fetch events'
        assert body['error_type'] == 'NoEventsFoundError'
        assert 'main' in body['error'] and 'extension' in body['error']

    def test_load_more_failure(self, mock_env, mock_context, mock_coordinator):
        mock_coordinator.load_more.side_effect = EventAggregationError(
            'Failed to load more events: connection reset'
        )

        response = lambda_handler({'action': 'load_more'}, mock_context)

        assert response['statusCode'] == 500
        assert json.loads(response['body'])['note'] == 'Previously cached events remain available'

    def test_unexpected_error(self, mock_env, mock_context, mock_coordinator):
        mock_coordinator.initial_fetch.side_effect = RuntimeError('boom')

        response = lambda_handler({}, mock_context)

        assert response['statusCode'] == 500
        body = json.loads(response['body'])
        assert body['message'] == 'Request failed'
        assert body['error_type'] == 'RuntimeError'

    def test_coordinator_survives_between_invocations(self, mock_env, mock_context):
        """Test a warm container reuses its coordinator."""
        with patch('lambda_function.build_coordinator') as build:
            build.return_value.initial_fetch.return_value = []
            build.return_value.has_more_available.return_value = False
            build.return_value.remaining_count.return_value = 0

            lambda_handler({}, mock_context)
            lambda_handler({}, mock_context)

        build.assert_called_once()


class TestEndToEnd:
    """Test cases running the real coordinator against mocked HTTP."""

    @responses.activate
    def test_initial_then_load_more(self, mock_env, mock_context):
        """Test a session from initial fetch to exhaustion."""
        pages = {
            (MAIN_URL, '1'): raw_page([1, 2]),
            (MAIN_URL, '2'): raw_page([3, 4]),
            (MAIN_URL, '3'): raw_page([5, 6], category='Music'),
            (EXTENSION_URL, '1'): raw_page([11]),
            (EXTENSION_URL, '2'): raw_page([12]),
        }
        for (url, page_number), payload in pages.items():
            responses.add(
                responses.GET,
                url,
                json=payload,
                status=200,
                match=[matchers.query_param_matcher(
                    {'days': '60', 'page': page_number}
                )]
            )

        initial = json.loads(lambda_handler({}, mock_context)['body'])

        assert sorted(e['id'] for e in initial['events']) == [1, 2, 3, 4, 11, 12]
        assert initial['events'][0]['cost'] == '$5'
        assert initial['has_more'] is True
        assert initial['remaining_count'] == 10

        more = json.loads(lambda_handler(
            {'action': 'load_more', 'displayed_ids': [5]}, mock_context
        )['body'])

        assert [e['id'] for e in more['events']] == [6]
        assert more['has_more'] is False
        assert more['remaining_count'] == 0

        done = json.loads(lambda_handler({'action': 'load_more'}, mock_context)['body'])

        assert done['events'] == []
        assert len(responses.calls) == 5


class TestLogging:
    """Test cases for JSON logging setup."""

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord(
            'events', logging.INFO, __file__, 1, 'Fetched %d pages', (2,), None
        )
        record.action = 'load_more'

        log_data = json.loads(JsonFormatter().format(record))

        assert log_data['message'] == 'Fetched 2 pages'
        assert log_data['level'] == 'INFO'
        assert log_data['logger'] == 'events'
        assert log_data['action'] == 'load_more'
        assert 'exception' not in log_data

    def test_setup_logging_installs_single_json_handler(self):
        setup_logging('DEBUG')
        setup_logging('WARNING')

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
        assert root_logger.level == logging.WARNING
