"""AWS Lambda handler for the Outlook to Google calendar relay."""
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from fetcher.outlook_auth import OutlookAuth, TokenFile
from fetcher.outlook_calendar import OutlookCalendar
from notifier.slack_notifier import LogNotifier, Notifier, SlackNotifier
from processor.errors import ConfigError, ReplicationError, StorageError
from processor.event_processor import EventProcessor
from processor.sync_pipeline import SyncPipeline
from replica.google_calendar import GoogleCalendarReplica, UnavailableReplica
from storage.dedup_store import DedupStore, NoopDedupStore
from storage.dynamodb_store import DynamoDBDedupStore
from storage.file_store import FileDedupStore


# Configure JSON logging
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

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


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


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, str(default))
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class RelayConfig:
    """Runtime configuration read from environment variables."""
    log_level: str
    interval_minutes: int
    timeout_seconds: int
    store_backend: str
    table_name: str
    store_path: str
    reference_timezone: str
    record_on_notify_failure: bool
    slack_webhook_url: Optional[str]
    outlook_client_id: str
    outlook_client_secret: str
    outlook_token_file: str
    outlook_refresh_token: str
    google_token_file: str
    google_calendar_id: str

    STORE_BACKENDS = ('dynamodb', 'file')

    @classmethod
    def from_env(cls) -> 'RelayConfig':
        """
        Build configuration from the process environment.

        Raises:
            ConfigError: If a value is invalid
        """
        config = cls(
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            interval_minutes=_env_int('INTERVAL_MINUTES', 60),
            timeout_seconds=_env_int('TIMEOUT_SECONDS', 30),
            store_backend=os.environ.get('STORE_BACKEND', 'dynamodb').lower(),
            table_name=os.environ.get('TABLE_NAME', 'calendar-relay-seen-events'),
            store_path=os.environ.get('STORE_PATH', '/tmp/calendar-relay/seen_ids.txt'),
            reference_timezone=os.environ.get('REFERENCE_TIMEZONE', 'UTC'),
            record_on_notify_failure=_env_bool('RECORD_ON_NOTIFY_FAILURE', True),
            slack_webhook_url=os.environ.get('SLACK_WEBHOOK_URL') or None,
            outlook_client_id=os.environ.get('OUTLOOK_CLIENT_ID', ''),
            outlook_client_secret=os.environ.get('OUTLOOK_CLIENT_SECRET', ''),
            outlook_token_file=os.environ.get(
                'OUTLOOK_TOKEN_FILE', '/tmp/calendar-relay/outlook.json'
            ),
            outlook_refresh_token=os.environ.get('OUTLOOK_REFRESH_TOKEN', ''),
            google_token_file=os.environ.get('GOOGLE_TOKEN_FILE', ''),
            google_calendar_id=os.environ.get('GOOGLE_CALENDAR_ID', 'primary'),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.store_backend not in self.STORE_BACKENDS:
            raise ConfigError(
                f"STORE_BACKEND must be one of {', '.join(self.STORE_BACKENDS)}, "
                f"got {self.store_backend!r}"
            )
        if self.interval_minutes == 0:
            raise ConfigError("INTERVAL_MINUTES must not be zero")
        if self.timeout_seconds <= 0:
            raise ConfigError("TIMEOUT_SECONDS must be positive")
        if not self.outlook_client_id or not self.outlook_client_secret:
            raise ConfigError("OUTLOOK_CLIENT_ID and OUTLOOK_CLIENT_SECRET are required")
        if not self.google_token_file:
            raise ConfigError("GOOGLE_TOKEN_FILE is required")


def build_notifier(config: RelayConfig) -> Notifier:
    if config.slack_webhook_url:
        return SlackNotifier(config.slack_webhook_url, timeout=config.timeout_seconds)
    return LogNotifier()


def open_store(config: RelayConfig, notifier: Notifier) -> Tuple[DedupStore, bool]:
    """
    Open the configured dedup store, falling back to the no-op store.

    The fallback is always announced through the notifier.

    Returns:
        Tuple of (store, degraded)
    """
    logger = logging.getLogger(__name__)
    try:
        if config.store_backend == 'file':
            return FileDedupStore(config.store_path), False
        return DynamoDBDedupStore(config.table_name), False
    except StorageError as e:
        logger.error(f"Can't open storage: {e}", exc_info=True)
        try:
            notifier.send(f"Can't open storage: {e}")
        except Exception as send_error:
            logger.error(f"Failed to announce storage fallback: {send_error}")
        return NoopDedupStore(), True


def _error_response(message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    duration = time.time() - start_time
    return {
        'statusCode': 500,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for one calendar relay pass.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and run statistics
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        config = RelayConfig.from_env()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return _error_response('Invalid configuration', e, start_time)

    logger.info(
        "Lambda execution started",
        extra={
            'store_backend': config.store_backend,
            'interval_minutes': config.interval_minutes,
            'timeout_seconds': config.timeout_seconds
        }
    )

    try:
        notifier = build_notifier(config)

        auth = OutlookAuth(
            config.outlook_client_id,
            config.outlook_client_secret,
            timeout=config.timeout_seconds
        )
        access_token = auth.access_token(
            TokenFile(config.outlook_token_file),
            seed_refresh_token=config.outlook_refresh_token
        )
        source = OutlookCalendar(
            access_token,
            processor=EventProcessor(config.reference_timezone),
            timeout=config.timeout_seconds
        )
        try:
            replica = GoogleCalendarReplica.from_token_file(
                config.google_token_file,
                calendar_id=config.google_calendar_id
            )
        except ReplicationError as e:
            logger.error(f"Replication disabled for this run: {e}")
            replica = UnavailableReplica(e)

        store, degraded = open_store(config, notifier)
        with store:
            pipeline = SyncPipeline(
                source=source,
                store=store,
                notifier=notifier,
                replica=replica,
                interval=timedelta(minutes=config.interval_minutes),
                record_on_notify_failure=config.record_on_notify_failure,
                degraded=degraded
            )
            report = pipeline.run()

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response('Sync failed', e, start_time)

    duration = time.time() - start_time
    statistics = report.summary()
    statistics['duration_seconds'] = round(duration, 2)
    issues = [
        {
            'stage': issue.stage.value,
            'severity': issue.severity.value,
            'message': issue.message
        }
        for issue in report.issues
    ]

    if not report.succeeded:
        logger.error(
            f"Sync aborted at stage {report.aborted_at.value}",
            extra={'duration_seconds': round(duration, 2)}
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': f"Sync aborted at {report.aborted_at.value}",
                'statistics': statistics,
                'issues': issues
            })
        }

    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'new_events': len(report.new_events),
            'replication_failures': report.replication_failures
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Sync completed successfully',
            'statistics': statistics,
            'issues': issues
        })
    }
