"""Idempotent fetch, dedup, notify, record and replicate pipeline."""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from processor.models import (
    Event,
    ReplicationOutcome,
    RunReport,
    Severity,
    Stage,
)

logger = logging.getLogger(__name__)


DIGEST_TIME_FORMAT = '%d %b %y %H:%M %Z'


def format_duration(duration: timedelta) -> str:
    """
    Render a duration as hours and minutes, e.g. ``1h30m`` or ``-15m``.

    Args:
        duration: Event length; may be negative

    Returns:
        Compact duration string
    """
    seconds = duration.total_seconds()
    hours, minutes = divmod(int(abs(seconds) // 60), 60)
    sign = '-' if seconds < 0 and (hours or minutes) else ''
    if hours:
        return f"{sign}{hours}h{minutes}m"
    return f"{sign}{minutes}m"


def build_digest(events: Sequence[Event]) -> str:
    """
    Build one notification message listing every event.

    Args:
        events: New events in display order

    Returns:
        Message with one emphasized line per event
    """
    lines = []
    for event in events:
        lines.append(
            f"*{event.subject}* at *{event.start.strftime(DIGEST_TIME_FORMAT)}* "
            f"[ {format_duration(event.duration)} ]"
        )
    return '\n'.join(lines) + '\n'


class SyncPipeline:
    """
    Runs one synchronization pass over a rolling time window.

    Stages run strictly in order: fetch, order, filter, notify, record,
    replicate. Fetch and filter failures end the run; notify and record
    failures are reported and the run continues; replication failures are
    collected per event. Every outcome is accumulated in a RunReport.
    """

    def __init__(
        self,
        source,
        store,
        notifier,
        replica,
        interval: timedelta = timedelta(hours=1),
        record_on_notify_failure: bool = True,
        degraded: bool = False
    ):
        """
        Initialize the pipeline with its collaborators.

        Args:
            source: Object with fetch_events(start, end) -> list of Event
            store: DedupStore
            notifier: Notifier
            replica: Object with add_events(events) -> ReplicationOutcome
            interval: Length of the window starting at the run time
            record_on_notify_failure: Record ids even if the digest was not sent
            degraded: The store is the no-op fallback
        """
        self.source = source
        self.store = store
        self.notifier = notifier
        self.replica = replica
        self.interval = interval
        self.record_on_notify_failure = record_on_notify_failure
        self.degraded = degraded

    def window(self, now: Optional[datetime] = None):
        """Return the [start, end) window for a run at ``now``."""
        current = now or datetime.now(timezone.utc)
        start, end = current, current + self.interval
        if start > end:
            start, end = end, start
        return start, end

    def run(self, now: Optional[datetime] = None) -> RunReport:
        """
        Execute one pass.

        Args:
            now: Run time, defaults to the current UTC time

        Returns:
            RunReport describing what happened at each stage
        """
        report = RunReport(degraded=self.degraded)
        report.window_start, report.window_end = self.window(now)

        if self.degraded:
            report.add_issue(
                Stage.STORE_OPEN,
                Severity.DEGRADED,
                "Dedup store unavailable, events are not deduplicated this run"
            )

        events = self._fetch(report)
        if events is None:
            return report

        ordered = self._order(events)

        new_events = self._filter(ordered, report)
        if new_events is None:
            return report

        report.new_events = new_events
        if not new_events:
            logger.info("No new events to process")
            return report

        self._notify_and_record(new_events, report)
        self._replicate(new_events, report)

        logger.info(
            f"Run complete: {report.fetched} fetched, {len(new_events)} new, "
            f"{report.replication_failures} replication failures"
        )
        return report

    def _fetch(self, report: RunReport) -> Optional[List[Event]]:
        start, end = report.window_start, report.window_end
        try:
            events = list(self.source.fetch_events(start, end))
        except Exception as e:
            logger.error(
                f"Failed to fetch events for [{start.isoformat()}, {end.isoformat()}): {e}",
                exc_info=True
            )
            report.abort(
                Stage.FETCH,
                f"Can't fetch events for [{start.isoformat()}, {end.isoformat()}): {e}"
            )
            return None

        report.fetched = len(events)
        logger.info(f"Found {len(events)} events")
        return events

    @staticmethod
    def _order(events: List[Event]) -> List[Event]:
        # sorted() is stable, so events starting together keep fetch order
        return sorted(events, key=lambda event: event.start)

    def _filter(self, events: List[Event], report: RunReport) -> Optional[List[Event]]:
        new_events = []
        batch_ids = set()

        for event in events:
            if event.id in batch_ids:
                continue
            try:
                exists = self.store.exists(event.id)
            except Exception as e:
                message = f"Can't look up ID {event.id}: {e}"
                logger.error(message, exc_info=True)
                self._send_quietly(message, Stage.FILTER)
                report.abort(Stage.FILTER, message)
                return None

            if not exists:
                batch_ids.add(event.id)
                new_events.append(event)

        logger.info(f"{len(new_events)} of {len(events)} events are new")
        return new_events

    def _notify_and_record(self, events: List[Event], report: RunReport) -> None:
        try:
            self.notifier.send(build_digest(events))
            report.notified = True
        except Exception as e:
            logger.error(f"Failed to send digest: {e}", exc_info=True)
            report.add_issue(Stage.NOTIFY, Severity.REPORTED, f"Can't send digest: {e}")

        if not report.notified and not self.record_on_notify_failure:
            report.add_issue(
                Stage.RECORD,
                Severity.REPORTED,
                f"Skipped recording {len(events)} ids because the digest was not sent"
            )
            return

        try:
            self.store.record([event.id for event in events])
            report.recorded = True
        except Exception as e:
            message = f"Can't add ids to the storage: {e}"
            logger.error(message, exc_info=True)
            self._send_quietly(message, Stage.RECORD)
            report.add_issue(Stage.RECORD, Severity.REPORTED, message)

    def _replicate(self, events: List[Event], report: RunReport) -> None:
        try:
            outcome = self.replica.add_events(events)
        except Exception as e:
            logger.error(f"Can't sync calendar: {e}", exc_info=True)
            report.add_issue(Stage.REPLICATE, Severity.REPORTED, f"Can't sync calendar: {e}")
            return

        if outcome is None:
            outcome = ReplicationOutcome.success()
        report.replication = outcome

        for event, error in outcome.failures:
            logger.warning(f"Failed to replicate event {event.id}: {error}")
            report.add_issue(
                Stage.REPLICATE,
                Severity.AGGREGATE,
                f"Can't replicate event {event.id} ({event.subject}): {error}"
            )

    def _send_quietly(self, message: str, stage: Stage) -> None:
        """Send an operator alert; a failure here is only logged."""
        try:
            self.notifier.send(message)
        except Exception as e:
            logger.error(f"Failed to send {stage.value} alert: {e}")
