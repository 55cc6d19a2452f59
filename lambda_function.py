"""AWS Lambda handler serving aggregated campus events."""
import json
import logging
import random
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional

from config import AggregatorSettings
from coordinator.pagination_coordinator import (
    CacheNotInitializedError,
    EventAggregationError,
    PaginationCoordinator,
)
from processor.event_processor import EventProcessor
from processor.models import ProcessedEvent
from scraper.event_source import EventSourceClient
from views.event_views import build_view_page, get_event_categories

# Attributes every LogRecord carries; anything else came in through extra=
RESERVED_LOG_ATTRS = set(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__
) | {'message', 'asctime'}

# One coordinator per warm process; its cache lives as long as the container
_coordinator: Optional[PaginationCoordinator] = None


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_coordinator(settings: AggregatorSettings) -> PaginationCoordinator:
    """
    Wire the client, processor and cache from settings.

    Args:
        settings: Aggregator settings

    Returns:
        A coordinator with an empty cache
    """
    client = EventSourceClient(
        timeout=settings.timeout_seconds,
        max_retries=settings.max_retries
    )
    processor = EventProcessor(
        tz=settings.tz,
        max_description_length=settings.max_description_length
    )
    return PaginationCoordinator(
        client=client,
        processor=processor,
        sources=settings.sources,
        lookahead_days=settings.lookahead_days,
        ttl=timedelta(minutes=settings.cache_ttl_minutes),
        sample_size=settings.initial_sample_size,
        category_target=settings.category_target,
        max_category_attempts=settings.category_max_attempts,
        events_per_page=settings.events_per_page,
        rng=random.Random(settings.random_seed)
    )


def get_coordinator(settings: AggregatorSettings) -> PaginationCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator(settings)
    return _coordinator


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body)
    }


def _events_body(
    coordinator: PaginationCoordinator,
    events: List[ProcessedEvent]
) -> Dict[str, Any]:
    return {
        'events': [event.to_dict() for event in events],
        'has_more': coordinator.has_more_available(),
        'remaining_count': coordinator.remaining_count()
    }


def handle_request(
    request: Dict[str, Any],
    coordinator: PaginationCoordinator,
    settings: AggregatorSettings
) -> Dict[str, Any]:
    """
    Dispatch one request to the coordinator or view builder.

    Args:
        request: Request payload with an 'action' key
        coordinator: Session coordinator
        settings: Aggregator settings

    Returns:
        Response body

    Raises:
        ValueError: If the action or its parameters are invalid
    """
    action = request.get('action', 'initial')
    displayed_ids = [int(i) for i in request.get('displayed_ids') or []]

    if action == 'initial':
        events = coordinator.initial_fetch(
            force_refresh=bool(request.get('force_refresh', False))
        )
        return _events_body(coordinator, events)

    if action == 'load_more':
        return _events_body(coordinator, coordinator.load_more(displayed_ids))

    if action == 'load_more_category':
        category = request.get('category')
        if not category:
            raise ValueError("load_more_category requires a category")
        events = coordinator.load_more_in_category(category, displayed_ids)
        return _events_body(coordinator, events)

    if action == 'view':
        events = coordinator.cache.events
        if displayed_ids:
            wanted = set(displayed_ids)
            events = [event for event in events if event.id in wanted]

        view = build_view_page(
            events,
            page=int(request.get('page', 1)),
            page_size=int(request.get('page_size', settings.events_per_page)),
            date_filter=request.get('date_filter', 'all'),
            category_filter=request.get('category', 'all'),
            tz=settings.tz
        )
        return {
            'events': [event.to_dict() for event in view.events],
            'page': view.page,
            'page_size': view.page_size,
            'total_pages': view.total_pages,
            'total_events': view.total_events,
            'ordering': view.ordering,
            'categories': get_event_categories(events)
        }

    if action == 'status':
        events = coordinator.cache.events
        return {
            'has_more': coordinator.has_more_available(),
            'remaining_count': coordinator.remaining_count(),
            'cached_events': len(events),
            'cache_fresh': coordinator.has_cached_events(),
            'categories': get_event_categories(events)
        }

    raise ValueError(f"Unknown action: {action}")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the events aggregator.

    Args:
        event: Request payload with an 'action' key
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    settings = AggregatorSettings.from_env()

    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    request = event or {}
    action = request.get('action', 'initial') if isinstance(request, dict) else None
    logger.info(
        "Request started",
        extra={'action': action}
    )

    try:
        if not isinstance(request, dict):
            raise ValueError("Request payload must be a JSON object")

        coordinator = get_coordinator(settings)
        body = handle_request(request, coordinator, settings)

    except CacheNotInitializedError as e:
        logger.warning(f"Request rejected: {e}", extra={'action': action})
        return _response(409, {
            'message': 'Initial events must be fetched first',
            'error': str(e),
            'error_type': type(e).__name__
        })

    except EventAggregationError as e:
        logger.error(
            f"Failed to fetch events: {e}",
            extra={'action': action, 'error_type': type(e).__name__},
            exc_info=True
        )
        duration = time.time() - start_time
        return _response(500, {
            'message': 'Failed to fetch events',
            'error': str(e),
            'error_type': type(e).__name__,
            'note': 'Previously cached events remain available',
            'duration_seconds': round(duration, 2)
        })

    except ValueError as e:
        logger.warning(f"Bad request: {e}", extra={'action': action})
        return _response(400, {
            'message': 'Bad request',
            'error': str(e),
            'error_type': type(e).__name__
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Request failed: {str(e)}",
            extra={
                'action': action,
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Request failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    duration = time.time() - start_time
    logger.info(
        "Request completed",
        extra={'action': action, 'duration_seconds': round(duration, 2)}
    )
    body['duration_seconds'] = round(duration, 2)
    return _response(200, body)
