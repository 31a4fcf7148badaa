"""Data models for calendar synchronization."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class RawEvent:
    """Event payload as returned by the source calendar."""
    id: str
    subject: str
    start: str
    start_timezone: str
    end: str
    end_timezone: str
    organizer: str = ''


@dataclass(frozen=True)
class Event:
    """Normalized calendar event with timezone-aware start and end."""
    id: str
    subject: str
    start: datetime
    end: datetime
    organizer: str = ''

    @property
    def duration(self):
        return self.end - self.start


@dataclass
class ReplicationOutcome:
    """
    Result of mirroring a batch of events into the replica calendar.

    An empty failure list means every event was replicated. Events not
    listed in ``failures`` are assumed to have been replicated.
    """
    failures: List[Tuple[Event, Exception]] = field(default_factory=list)

    @classmethod
    def success(cls) -> 'ReplicationOutcome':
        return cls()

    @property
    def succeeded(self) -> bool:
        return not self.failures

    @property
    def failed_events(self) -> List[Event]:
        return [event for event, _ in self.failures]

    @property
    def errors(self) -> List[Exception]:
        return [error for _, error in self.failures]

    def add_failure(self, event: Event, error: Exception) -> None:
        self.failures.append((event, error))


class Stage(str, Enum):
    """Pipeline stages in execution order."""
    FETCH = 'fetch'
    FILTER = 'filter'
    NOTIFY = 'notify'
    RECORD = 'record'
    REPLICATE = 'replicate'
    STORE_OPEN = 'store_open'


class Severity(str, Enum):
    """How an issue affects the rest of a run."""
    FATAL = 'fatal'
    REPORTED = 'reported'
    AGGREGATE = 'aggregate'
    DEGRADED = 'degraded'


@dataclass
class RunIssue:
    stage: Stage
    severity: Severity
    message: str


@dataclass
class RunReport:
    """Accumulated result of a single pipeline run."""
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    fetched: int = 0
    new_events: List[Event] = field(default_factory=list)
    notified: bool = False
    recorded: bool = False
    degraded: bool = False
    replication: Optional[ReplicationOutcome] = None
    issues: List[RunIssue] = field(default_factory=list)
    aborted_at: Optional[Stage] = None

    @property
    def succeeded(self) -> bool:
        return self.aborted_at is None

    @property
    def replication_failures(self) -> int:
        if self.replication is None:
            return 0
        return len(self.replication.failures)

    def add_issue(self, stage: Stage, severity: Severity, message: str) -> None:
        self.issues.append(RunIssue(stage=stage, severity=severity, message=message))

    def abort(self, stage: Stage, message: str) -> None:
        self.add_issue(stage, Severity.FATAL, message)
        self.aborted_at = stage

    def summary(self) -> dict:
        """Return JSON-serializable statistics for the run."""
        return {
            'window_start': self.window_start.isoformat() if self.window_start else None,
            'window_end': self.window_end.isoformat() if self.window_end else None,
            'events_fetched': self.fetched,
            'new_events': len(self.new_events),
            'notified': self.notified,
            'recorded': self.recorded,
            'degraded': self.degraded,
            'replication_failures': self.replication_failures,
            'aborted_at': self.aborted_at.value if self.aborted_at else None,
        }
