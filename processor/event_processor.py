"""Event processor for validating and normalizing source calendar payloads."""
import logging
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.models import Event, RawEvent

logger = logging.getLogger(__name__)


# Windows zone names Microsoft Graph may return instead of IANA identifiers
WINDOWS_TIMEZONES = {
    'UTC': 'UTC',
    'Coordinated Universal Time': 'UTC',
    'GMT Standard Time': 'Europe/London',
    'W. Europe Standard Time': 'Europe/Berlin',
    'Central Europe Standard Time': 'Europe/Budapest',
    'Romance Standard Time': 'Europe/Paris',
    'E. Europe Standard Time': 'Europe/Chisinau',
    'FLE Standard Time': 'Europe/Kiev',
    'Russian Standard Time': 'Europe/Moscow',
    'Eastern Standard Time': 'America/New_York',
    'Central Standard Time': 'America/Chicago',
    'Mountain Standard Time': 'America/Denver',
    'US Mountain Standard Time': 'America/Phoenix',
    'Pacific Standard Time': 'America/Los_Angeles',
    'Alaskan Standard Time': 'America/Anchorage',
    'Hawaiian Standard Time': 'Pacific/Honolulu',
    'India Standard Time': 'Asia/Kolkata',
    'China Standard Time': 'Asia/Shanghai',
    'Tokyo Standard Time': 'Asia/Tokyo',
    'AUS Eastern Standard Time': 'Australia/Sydney',
}


class EventProcessor:
    """Processor for validating raw events and normalizing their time zones."""

    DATETIME_FORMAT = '%Y-%m-%dT%H:%M:%S'

    def __init__(self, reference_timezone: str = 'UTC'):
        """
        Initialize the processor.

        Args:
            reference_timezone: Zone every start/end is converted to

        Raises:
            ValueError: If the reference zone is unknown
        """
        self.reference_timezone = self.resolve_timezone(reference_timezone)
        if self.reference_timezone is None:
            raise ValueError(f"Unknown reference timezone: {reference_timezone}")

    def process_events(self, raw_events: List[RawEvent]) -> List[Event]:
        """
        Validate and normalize raw events, preserving their order.

        Args:
            raw_events: List of RawEvent objects from the source calendar

        Returns:
            List of valid Event objects
        """
        events = []

        for raw_event in raw_events:
            try:
                event = self._process_single_event(raw_event)
                if event:
                    events.append(event)
            except ValueError as e:
                logger.warning(
                    f"Failed to process event '{raw_event.id}': {e}"
                )
                continue

        logger.info(
            f"Processed {len(events)} valid events out of "
            f"{len(raw_events)} total events"
        )
        return events

    def _process_single_event(self, raw_event: RawEvent) -> Optional[Event]:
        if not self._validate_required_fields(raw_event):
            return None

        return Event(
            id=raw_event.id,
            subject=raw_event.subject or '',
            start=self.normalize_datetime(raw_event.start, raw_event.start_timezone),
            end=self.normalize_datetime(raw_event.end, raw_event.end_timezone),
            organizer=raw_event.organizer or '',
        )

    def _validate_required_fields(self, raw_event: RawEvent) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            raw_event: RawEvent object to validate

        Returns:
            True if valid, False otherwise
        """
        if not raw_event.id or not raw_event.id.strip():
            logger.warning(
                f"Event '{raw_event.subject}' missing required field: id"
            )
            return False

        if not raw_event.start or not raw_event.start.strip():
            logger.warning(f"Event '{raw_event.id}' missing required field: start")
            return False

        if not raw_event.end or not raw_event.end.strip():
            logger.warning(f"Event '{raw_event.id}' missing required field: end")
            return False

        return True

    def normalize_datetime(self, value: str, timezone_name: str) -> datetime:
        """
        Parse a naive source timestamp in its own zone and convert it to the
        reference zone.

        Args:
            value: Timestamp such as ``2024-01-15T10:00:00.0000000``
            timezone_name: IANA or Windows zone name the timestamp is in

        Returns:
            Timezone-aware datetime in the reference zone

        Raises:
            ValueError: If the timestamp or zone cannot be parsed
        """
        zone = self.resolve_timezone(timezone_name or 'UTC')
        if zone is None:
            raise ValueError(f"Unknown timezone: {timezone_name}")

        # Graph sends seven fractional digits, more than strptime accepts
        whole_seconds = value.strip().split('.')[0]
        parsed = datetime.strptime(whole_seconds, self.DATETIME_FORMAT)

        return parsed.replace(tzinfo=zone).astimezone(self.reference_timezone)

    @staticmethod
    def resolve_timezone(name: str) -> Optional[ZoneInfo]:
        """
        Resolve an IANA or Windows zone name.

        Args:
            name: Zone name

        Returns:
            ZoneInfo or None if the name is unknown
        """
        name = WINDOWS_TIMEZONES.get(name, name)
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            return None
