"""HTTP client for paginated remote event sources."""
import logging
import time
from typing import List, Optional

import requests

from processor.models import RawSourceEvent, SourceConfig

logger = logging.getLogger(__name__)


class EventSourceClient:
    """Fetches raw event pages from a Localist-style events API."""

    LOOKAHEAD_DAYS = 60

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        base_delay: float = 1
    ):
        """
        Initialize the source client.

        Args:
            timeout: HTTP request timeout in seconds (default: None, wait forever)
            max_retries: Attempts per page on transport errors (default: 3)
            base_delay: Initial backoff delay in seconds (default: 1)
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    def fetch_page(
        self,
        source: SourceConfig,
        page_number: int,
        lookahead_days: int = LOOKAHEAD_DAYS
    ) -> List[RawSourceEvent]:
        """
        Fetch one page of raw events from a source.

        A non-success response counts as an empty page. Transport errors
        are retried and then re-raised.

        Args:
            source: Source to query
            page_number: 1-based page number
            lookahead_days: Number of days ahead the source should cover

        Returns:
            List of raw event mappings

        Raises:
            ValueError: If page_number is less than 1
            requests.RequestException: If all retry attempts fail
        """
        if page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {page_number}")

        logger.info(f"Fetching {source.name} page {page_number}")
        response = self._get_with_retry(source, page_number, lookahead_days)

        if not response.ok:
            logger.warning(
                f"{source.name} page {page_number} returned HTTP "
                f"{response.status_code}; treating as empty"
            )
            return []

        return self._parse_events(source, page_number, response)

    def _get_with_retry(
        self,
        source: SourceConfig,
        page_number: int,
        lookahead_days: int
    ) -> requests.Response:
        """
        Issue the page request with retry logic.

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        params = {
            'days': lookahead_days,
            'page': page_number
        }

        for attempt in range(self.max_retries):
            try:
                return requests.get(
                    source.base_url,
                    params=params,
                    timeout=self.timeout
                )

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"{source.name} page {page_number} request failed "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts for {source.name} "
                        f"page {page_number} failed. Last error: {e}"
                    )
                    raise

    def _parse_events(
        self,
        source: SourceConfig,
        page_number: int,
        response: requests.Response
    ) -> List[RawSourceEvent]:
        """
        Unwrap the event mappings from a page response.

        Args:
            source: Source the response came from
            page_number: Page number of the response
            response: Successful HTTP response

        Returns:
            List of raw event mappings, empty if the body is malformed
        """
        try:
            payload = response.json()
        except ValueError as e:
            logger.warning(
                f"{source.name} page {page_number} returned invalid JSON: {e}"
            )
            return []

        wrappers = payload.get('events') if isinstance(payload, dict) else None
        if not isinstance(wrappers, list):
            logger.warning(
                f"{source.name} page {page_number} response has no events list"
            )
            return []

        events = []
        for wrapper in wrappers:
            event = wrapper.get('event') if isinstance(wrapper, dict) else None
            if isinstance(event, dict):
                events.append(event)

        logger.info(
            f"Fetched {len(events)} raw events from {source.name} "
            f"page {page_number}"
        )
        return events
