"""Unit tests for notifiers."""
import json
import logging

import pytest
import responses
from requests.exceptions import ConnectionError

from notifier.slack_notifier import LogNotifier, SlackNotifier
from processor.errors import NotifyError


WEBHOOK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


class TestSlackNotifier:
    """Test cases for SlackNotifier."""

    @responses.activate
    def test_send_posts_text(self):
        responses.add(responses.POST, WEBHOOK_URL, body='ok', status=200)

        SlackNotifier(WEBHOOK_URL).send('*Standup* at *15 Jan 24 09:00 UTC* [ 15m ]')

        assert len(responses.calls) == 1
        payload = json.loads(responses.calls[0].request.body)
        assert payload == {'text': '*Standup* at *15 Jan 24 09:00 UTC* [ 15m ]'}

    @responses.activate
    def test_send_non_200(self):
        responses.add(responses.POST, WEBHOOK_URL, body='no_service', status=404)

        with pytest.raises(NotifyError) as exc_info:
            SlackNotifier(WEBHOOK_URL).send('hello')

        assert '404' in str(exc_info.value)

    @responses.activate
    def test_send_connection_error(self):
        responses.add(responses.POST, WEBHOOK_URL, body=ConnectionError('refused'))

        with pytest.raises(NotifyError):
            SlackNotifier(WEBHOOK_URL).send('hello')

        # No retry
        assert len(responses.calls) == 1


class TestLogNotifier:
    """Test cases for LogNotifier."""

    def test_send_logs_message(self, caplog):
        with caplog.at_level(logging.INFO, logger='notifier.slack_notifier'):
            LogNotifier().send('hello')

        assert 'hello' in caplog.text
