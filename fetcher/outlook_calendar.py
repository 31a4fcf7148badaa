"""Event source reading the signed-in user's Outlook calendar."""
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

import requests

from processor.errors import FetchError
from processor.event_processor import EventProcessor
from processor.models import Event, RawEvent

logger = logging.getLogger(__name__)


class OutlookCalendar:
    """Microsoft Graph calendar view client."""

    CALENDAR_VIEW_URL = "https://graph.microsoft.com/v1.0/me/calendarview"
    SELECT_FIELDS = "id,organizer,subject,start,end"
    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(
        self,
        access_token: str,
        processor: Optional[EventProcessor] = None,
        timeout: int = 30
    ):
        """
        Initialize the calendar client.

        Args:
            access_token: Microsoft Graph bearer token
            processor: Normalizes raw payloads, UTC reference zone by default
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.access_token = access_token
        self.processor = processor or EventProcessor()
        self.timeout = timeout

    def fetch_events(self, start: datetime, end: datetime) -> List[Event]:
        """
        Fetch events overlapping the half-open window [start, end).

        Args:
            start: Window start (timezone-aware)
            end: Window end (timezone-aware)

        Returns:
            List of Event objects in source order

        Raises:
            FetchError: If the calendar view cannot be retrieved
        """
        logger.info(f"Fetching events from {start.isoformat()} to {end.isoformat()}")

        params = {
            'StartDateTime': self._format_rfc3339(start),
            'EndDateTime': self._format_rfc3339(end),
            '$select': self.SELECT_FIELDS,
        }

        raw_events = []
        url = self.CALENDAR_VIEW_URL
        while url:
            try:
                page = self._fetch_page(url, params)
            except (requests.RequestException, ValueError) as e:
                raise FetchError(
                    f"Can't fetch calendar view for [{params['StartDateTime']}, "
                    f"{params['EndDateTime']}): {e}",
                    window=(start, end)
                ) from e

            raw_events.extend(
                self._parse_item(item) for item in page.get('value', [])
            )

            # nextLink already carries the query string
            url = page.get('@odata.nextLink')
            params = None

        events = self.processor.process_events(raw_events)
        logger.info(f"Successfully fetched {len(events)} events")
        return events

    def _fetch_page(self, url: str, params: Optional[dict]) -> dict:
        """
        Fetch one page of the calendar view with retry logic.

        Args:
            url: Calendar view or nextLink URL
            params: Query parameters for the first page, None afterwards

        Returns:
            Decoded JSON page

        Raises:
            requests.RequestException: On a non-retryable error, or once all
                retry attempts fail
        """
        headers = {
            'Authorization': f'Bearer {self.access_token}',
            'Prefer': 'outlook.timezone="UTC"',
        }

        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching calendar view (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = requests.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.json()

            except requests.RequestException as e:
                if not self._is_retryable(e):
                    logger.error(f"Request failed and will not be retried: {e}")
                    raise
                if attempt < self.MAX_RETRIES - 1:
                    # Calculate exponential backoff delay
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise

    @staticmethod
    def _is_retryable(error: requests.RequestException) -> bool:
        """Connection problems, throttling and server errors are worth another try."""
        if isinstance(error, (requests.ConnectionError, requests.Timeout)):
            return True
        response = getattr(error, 'response', None)
        if isinstance(error, requests.HTTPError) and response is not None:
            return response.status_code == 429 or response.status_code >= 500
        return False

    def _parse_item(self, item: dict) -> RawEvent:
        start = item.get('start') or {}
        end = item.get('end') or {}
        organizer = (item.get('organizer') or {}).get('emailAddress') or {}

        return RawEvent(
            id=item.get('id', ''),
            subject=item.get('subject') or '',
            start=start.get('dateTime', ''),
            start_timezone=start.get('timeZone') or 'UTC',
            end=end.get('dateTime', ''),
            end_timezone=end.get('timeZone') or 'UTC',
            organizer=organizer.get('name', '')
        )

    @staticmethod
    def _format_rfc3339(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
