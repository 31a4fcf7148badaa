"""Unit tests for Outlook token handling."""
import json
import os
import stat
from urllib.parse import parse_qs

import pytest
import responses

from fetcher.outlook_auth import OutlookAuth, OutlookTokens, TokenFile
from processor.errors import FetchError


TOKEN_URL = OutlookAuth.TOKEN_URL


@pytest.fixture
def token_file(tmp_path):
    return TokenFile(str(tmp_path / 'outlook.json'))


class TestTokenFile:
    """Test cases for TokenFile."""

    def test_load_missing_file(self, token_file):
        assert token_file.load() is None

    def test_save_and_load(self, token_file):
        token_file.save(OutlookTokens(access_token='a', refresh_token='r'))

        loaded = token_file.load()

        assert loaded == OutlookTokens(access_token='a', refresh_token='r')
        assert stat.S_IMODE(os.stat(token_file.path).st_mode) == 0o600

    def test_load_corrupt_file(self, token_file):
        with open(token_file.path, 'w') as f:
            f.write('{not json')

        with pytest.raises(FetchError):
            token_file.load()


class TestOutlookAuth:
    """Test cases for OutlookAuth."""

    @responses.activate
    def test_refresh_tokens(self):
        responses.add(
            responses.POST,
            TOKEN_URL,
            json={'access_token': 'new-access', 'refresh_token': 'new-refresh'},
            status=200
        )

        tokens = OutlookAuth('client', 'secret').refresh_tokens('old-refresh')

        assert tokens == OutlookTokens('new-access', 'new-refresh')
        form = parse_qs(responses.calls[0].request.body)
        assert form['grant_type'] == ['refresh_token']
        assert form['refresh_token'] == ['old-refresh']
        assert form['client_id'] == ['client']

    @responses.activate
    def test_refresh_keeps_old_refresh_token(self):
        responses.add(responses.POST, TOKEN_URL, json={'access_token': 'new-access'}, status=200)

        tokens = OutlookAuth('client', 'secret').refresh_tokens('old-refresh')

        assert tokens.refresh_token == 'old-refresh'

    @responses.activate
    def test_refresh_rejected(self):
        responses.add(responses.POST, TOKEN_URL, json={'error': 'invalid_grant'}, status=400)

        with pytest.raises(FetchError):
            OutlookAuth('client', 'secret').refresh_tokens('old-refresh')

    @responses.activate
    def test_access_token_rotates_stored_tokens(self, token_file):
        token_file.save(OutlookTokens(access_token='', refresh_token='stored'))
        responses.add(
            responses.POST,
            TOKEN_URL,
            json={'access_token': 'fresh', 'refresh_token': 'rotated'},
            status=200
        )

        access_token = OutlookAuth('client', 'secret').access_token(token_file, 'seed')

        assert access_token == 'fresh'
        assert parse_qs(responses.calls[0].request.body)['refresh_token'] == ['stored']
        with open(token_file.path) as f:
            assert json.load(f)['refresh_token'] == 'rotated'

    @responses.activate
    def test_access_token_uses_seed(self, token_file):
        responses.add(responses.POST, TOKEN_URL, json={'access_token': 'fresh'}, status=200)

        OutlookAuth('client', 'secret').access_token(token_file, 'seed')

        assert parse_qs(responses.calls[0].request.body)['refresh_token'] == ['seed']
        assert token_file.load().refresh_token == 'seed'

    def test_access_token_without_refresh_token(self, token_file):
        with pytest.raises(FetchError):
            OutlookAuth('client', 'secret').access_token(token_file)
