"""Replica target mirroring events into a Google calendar."""
import logging
from datetime import timezone
from typing import Sequence

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from processor.errors import ReplicationError
from processor.models import Event, ReplicationOutcome

logger = logging.getLogger(__name__)


class GoogleCalendarReplica:
    """Creates one Google Calendar event per replicated event."""

    SCOPES = ['https://www.googleapis.com/auth/calendar.events']

    def __init__(self, service, calendar_id: str = 'primary'):
        """
        Args:
            service: Google Calendar v3 service resource
            calendar_id: Destination calendar id
        """
        self.service = service
        self.calendar_id = calendar_id

    @classmethod
    def from_token_file(cls, token_file: str, calendar_id: str = 'primary') -> 'GoogleCalendarReplica':
        """
        Build the replica from an authorized-user token file.

        Args:
            token_file: JSON produced by a completed Google OAuth flow
            calendar_id: Destination calendar id

        Returns:
            GoogleCalendarReplica

        Raises:
            ReplicationError: If the credentials cannot be loaded or refreshed
        """
        try:
            creds = Credentials.from_authorized_user_file(token_file, cls.SCOPES)
            if not creds.valid and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            service = build('calendar', 'v3', credentials=creds, cache_discovery=False)
        except (OSError, ValueError, GoogleAuthError) as e:
            raise ReplicationError(
                f"Can't create Google calendar instance from {token_file}: {e}"
            ) from e
        return cls(service, calendar_id)

    def add_events(self, events: Sequence[Event]) -> ReplicationOutcome:
        """
        Insert every event independently.

        A failure on one event does not stop the others.

        Args:
            events: Events to mirror, in order

        Returns:
            ReplicationOutcome listing each failed event with its error
        """
        outcome = ReplicationOutcome()

        for event in events:
            logger.info(f"Adding event {event.id} to calendar {self.calendar_id}")
            try:
                self.service.events().insert(
                    calendarId=self.calendar_id,
                    body=self._event_to_google(event)
                ).execute()
            except Exception as e:
                logger.warning(f"Failed to add event {event.id}: {e}")
                outcome.add_failure(
                    event,
                    ReplicationError(f"Can't insert event {event.id}: {e}", event_id=event.id)
                )

        logger.info(
            f"Replicated {len(events) - len(outcome.failures)} of {len(events)} events"
        )
        return outcome

    @staticmethod
    def _event_to_google(event: Event) -> dict:
        return {
            'summary': f"{event.subject} by [ {event.organizer} ]",
            'start': {
                'dateTime': event.start.astimezone(timezone.utc).isoformat(),
                'timeZone': 'UTC',
            },
            'end': {
                'dateTime': event.end.astimezone(timezone.utc).isoformat(),
                'timeZone': 'UTC',
            },
        }


class UnavailableReplica:
    """
    Stands in for a replica that could not be built.

    Every event handed to it is reported as failed with the build error, so
    the run still notifies and records while the replication gap shows up
    in the report.
    """

    def __init__(self, error: Exception):
        self.error = error

    def add_events(self, events: Sequence[Event]) -> ReplicationOutcome:
        outcome = ReplicationOutcome()
        for event in events:
            outcome.add_failure(
                event,
                ReplicationError(f"Replica unavailable: {self.error}", event_id=event.id)
            )
        if events:
            logger.warning(f"Skipped replicating {len(events)} events: {self.error}")
        return outcome
