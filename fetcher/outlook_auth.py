"""Outlook OAuth token refresh and token file persistence."""
import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Optional

import requests

from processor.errors import FetchError

logger = logging.getLogger(__name__)


@dataclass
class OutlookTokens:
    """Access and refresh token pair issued by Microsoft identity platform."""
    access_token: str
    refresh_token: str


class TokenFile:
    """JSON file holding the latest Outlook token pair."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[OutlookTokens]:
        """
        Load tokens from disk.

        Returns:
            OutlookTokens or None if the file does not exist
        """
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
            return OutlookTokens(
                access_token=data.get('access_token', ''),
                refresh_token=data['refresh_token']
            )
        except (OSError, ValueError, KeyError) as e:
            raise FetchError(f"Can't read token file {self.path}: {e}") from e

    def save(self, tokens: OutlookTokens) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, mode=0o700, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(asdict(tokens), f)
        except OSError as e:
            raise FetchError(f"Can't save token file {self.path}: {e}") from e


class OutlookAuth:
    """Client for the Microsoft identity platform token endpoint."""

    TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    SCOPES = "Calendars.ReadWrite User.Read offline_access openid"

    def __init__(self, client_id: str, client_secret: str, timeout: int = 30):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    def refresh_tokens(self, refresh_token: str) -> OutlookTokens:
        """
        Exchange a refresh token for a new token pair.

        Args:
            refresh_token: Current refresh token

        Returns:
            New OutlookTokens; the refresh token is kept if none is returned

        Raises:
            FetchError: If the token endpoint rejects the request
        """
        form = {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'scope': self.SCOPES,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
        }

        try:
            response = requests.post(self.TOKEN_URL, data=form, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"Outlook token refresh failed: {e}")
            raise FetchError(f"Can't get tokens: {e}") from e
        except ValueError as e:
            raise FetchError(f"Can't decode token response: {e}") from e

        if 'access_token' not in data:
            raise FetchError("Token response did not contain an access token")

        return OutlookTokens(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token', refresh_token)
        )

    def access_token(self, token_file: TokenFile, seed_refresh_token: str = '') -> str:
        """
        Refresh the stored token pair and return a fresh access token.

        The rotated pair is written back so the next run can refresh again.

        Args:
            token_file: Where the token pair is persisted
            seed_refresh_token: Refresh token used when the file is empty

        Returns:
            Access token for Microsoft Graph

        Raises:
            FetchError: If no refresh token is available or refresh fails
        """
        stored = token_file.load()
        refresh_token = stored.refresh_token if stored else seed_refresh_token
        if not refresh_token:
            raise FetchError(
                f"No Outlook refresh token in {token_file.path} or configuration"
            )

        tokens = self.refresh_tokens(refresh_token)
        token_file.save(tokens)
        logger.info("Refreshed Outlook access token")
        return tokens.access_token
