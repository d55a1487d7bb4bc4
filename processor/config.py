"""Run configuration for the attendance tracker."""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Mapping, Optional

DEFAULT_TABLE_NAME = 'course-attendance'
DEFAULT_TARGET_RATIO = 0.75
DEFAULT_OPTIONAL_TYPES = 'Tutorial,Exercise'


@dataclass(frozen=True)
class AttendanceConfig:
    """Read-only inputs for a single run."""
    feed_url: str = ''
    table_name: str = DEFAULT_TABLE_NAME
    target_ratio: float = DEFAULT_TARGET_RATIO
    optional_types: FrozenSet[str] = field(
        default_factory=lambda: parse_optional_types(DEFAULT_OPTIONAL_TYPES)
    )
    now: Optional[datetime] = None
    timeout_seconds: int = 30
    fetch_retries: int = 1
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AttendanceConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            AttendanceConfig instance

        Raises:
            ValueError: If a numeric or timestamp variable cannot be parsed
        """
        if environ is None:
            environ = os.environ

        target_ratio = _read_number(environ, 'TARGET_RATIO', str(DEFAULT_TARGET_RATIO), float)
        if target_ratio < 0:
            raise ValueError(f"TARGET_RATIO must not be negative: {target_ratio}")

        now_override = environ.get('NOW_OVERRIDE', '').strip()

        return cls(
            feed_url=environ.get('FEED_URL', ''),
            table_name=environ.get('TABLE_NAME', DEFAULT_TABLE_NAME),
            target_ratio=target_ratio,
            optional_types=parse_optional_types(
                environ.get('OPTIONAL_EVENT_TYPES', DEFAULT_OPTIONAL_TYPES)
            ),
            now=parse_timestamp(now_override) if now_override else None,
            timeout_seconds=_read_number(environ, 'TIMEOUT_SECONDS', '30', int),
            fetch_retries=max(1, _read_number(environ, 'FETCH_RETRIES', '1', int)),
            log_level=environ.get('LOG_LEVEL', 'INFO')
        )

    def current_time(self) -> datetime:
        """Return the configured override, or the current UTC time."""
        if self.now is not None:
            return self.now
        return datetime.now(timezone.utc)


def parse_optional_types(raw: str) -> FrozenSet[str]:
    """Split a comma-separated list of event types, ignoring blanks."""
    return frozenset(part.strip() for part in raw.split(',') if part.strip())


def parse_timestamp(raw: str) -> datetime:
    """
    Parse an ISO-8601 timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    try:
        value = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        raise ValueError(f"NOW_OVERRIDE is not an ISO-8601 timestamp: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _read_number(environ: Mapping[str, str], name: str, default: str, cast):
    raw = environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
