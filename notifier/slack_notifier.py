"""Notifiers delivering sync digests to a human-facing channel."""
import logging
from abc import ABC, abstractmethod

import requests

from processor.errors import NotifyError

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers a single text message."""

    @abstractmethod
    def send(self, message: str) -> None:
        """
        Send a message once, without retrying.

        Raises:
            NotifyError: If the message could not be delivered
        """


class SlackNotifier(Notifier):
    """Posts messages to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, timeout: int = 30):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, message: str) -> None:
        try:
            response = requests.post(
                self.webhook_url,
                json={'text': message},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Slack webhook request failed: {e}")
            raise NotifyError(f"Can't send message: {e}") from e

        if response.status_code != 200:
            raise NotifyError(
                f"Can't send message: {response.status_code} : {response.reason}"
            )


class LogNotifier(Notifier):
    """Writes messages to the log; used when no channel is configured."""

    def send(self, message: str) -> None:
        logger.info(message)
