"""Environment-driven settings for the events aggregator."""
import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo

from processor.models import SourceConfig

MAIN_EVENTS_URL = 'https://events.okstate.edu/api/2/events'
EXTENSION_EVENTS_URL = 'https://ag-events.okstate.edu/api/2/events'


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value else None


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


@dataclass
class AggregatorSettings:
    """Settings for the sources, cache and views."""
    log_level: str = 'INFO'
    sources: List[SourceConfig] = field(default_factory=lambda: [
        SourceConfig('main', MAIN_EVENTS_URL, 62),
        SourceConfig('extension', EXTENSION_EVENTS_URL, 23),
    ])
    lookahead_days: int = 60
    cache_ttl_minutes: int = 30
    initial_sample_size: int = 15
    category_target: int = 10
    category_max_attempts: int = 5
    events_per_page: int = 10
    max_description_length: int = 200
    timezone_name: str = 'UTC'
    timeout_seconds: Optional[int] = None
    max_retries: int = 3
    random_seed: Optional[int] = None

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone_name)

    @classmethod
    def from_env(cls) -> 'AggregatorSettings':
        """
        Read settings from environment variables.

        Returns:
            AggregatorSettings with defaults for unset variables
        """
        env = os.environ
        return cls(
            log_level=env.get('LOG_LEVEL', 'INFO'),
            sources=[
                SourceConfig(
                    'main',
                    env.get('MAIN_EVENTS_URL', MAIN_EVENTS_URL),
                    int(env.get('MAIN_PAGE_CEILING', '62'))
                ),
                SourceConfig(
                    'extension',
                    env.get('EXTENSION_EVENTS_URL', EXTENSION_EVENTS_URL),
                    int(env.get('EXTENSION_PAGE_CEILING', '23'))
                ),
            ],
            lookahead_days=int(env.get('LOOKAHEAD_DAYS', '60')),
            cache_ttl_minutes=int(env.get('CACHE_TTL_MINUTES', '30')),
            initial_sample_size=int(env.get('INITIAL_SAMPLE_SIZE', '15')),
            category_target=int(env.get('CATEGORY_TARGET', '10')),
            category_max_attempts=int(env.get('CATEGORY_MAX_ATTEMPTS', '5')),
            events_per_page=int(env.get('EVENTS_PER_PAGE', '10')),
            max_description_length=int(env.get('MAX_DESCRIPTION_LENGTH', '200')),
            timezone_name=env.get('EVENTS_TIMEZONE', 'UTC'),
            timeout_seconds=_optional_int(env.get('TIMEOUT_SECONDS')),
            max_retries=int(env.get('MAX_RETRIES', '3')),
            random_seed=_optional_int(env.get('RANDOM_SEED'))
        )
