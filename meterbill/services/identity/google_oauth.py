"""
Google Identity Provider

Tokens come from google-auth credentials (a service account key, the same
credentials the Sheets client uses). The identity behind a token is read
from the OAuth userinfo endpoint, and tokens are revoked through the OAuth
revoke endpoint.

LIMITATION: signing in refreshes the service account's own token; there
is no interactive consent step. fetch_identity() therefore reports the
service account, not the person at the keyboard, and the spreadsheets
listed are the ones shared with the service account. An installed-app
OAuth flow can replace this class behind IdentityProviderInterface
without touching the session manager.

All google-auth and requests calls block, so they run in a worker thread
and only the calling coroutine waits on them.
"""

import asyncio
from typing import Optional

import requests
from google.auth.transport.requests import Request
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from meterbill.config import GoogleAuthSettings, get_settings
from meterbill.errors import AuthorizationError, TransientBackendError
from meterbill.models.session import AccessToken, Identity
from meterbill.services.identity.interface import IdentityProviderInterface


REQUEST_TIMEOUT_SECONDS = 10


class GoogleIdentityProvider(IdentityProviderInterface):
    """IdentityProviderInterface backed by google-auth."""

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        auth_settings: Optional[GoogleAuthSettings] = None,
        http: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self._credentials_path = credentials_path or settings.google_sheets.credentials_path
        self._auth_settings = auth_settings or settings.google_auth
        self._http = http or requests.Session()

    @retry(
        retry=retry_if_exception_type(requests.ConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _refresh_credentials(self, scopes: list[str]) -> Credentials:
        try:
            credentials = Credentials.from_service_account_file(
                self._credentials_path,
                scopes=scopes,
            )
        except FileNotFoundError:
            raise TransientBackendError(
                f"Google credentials file not found: {self._credentials_path}"
            )
        credentials.refresh(Request(session=self._http))
        return credentials

    async def exchange_token(self, scopes: list[str]) -> AccessToken:
        """Obtain a fresh access token."""
        credentials = await asyncio.to_thread(self._refresh_credentials, scopes)
        return AccessToken(
            access_token=credentials.token,
            expiry=credentials.expiry,
        )

    def _get_userinfo(self, access_token: str) -> dict:
        response = self._http.get(
            self._auth_settings.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if response.status_code == 401:
            raise AuthorizationError("Authentication token expired")
        response.raise_for_status()
        return response.json()

    async def fetch_identity(self, access_token: str) -> Identity:
        """Read the signed-in identity from the userinfo endpoint."""
        info = await asyncio.to_thread(self._get_userinfo, access_token)
        email = info.get("email", "")
        return Identity(
            id=str(info.get("sub") or info.get("id") or email),
            display_name=info.get("name") or email,
            email=email,
            image_url=info.get("picture"),
        )

    def _post_revoke(self, access_token: str) -> None:
        response = self._http.post(
            self._auth_settings.revoke_url,
            params={"token": access_token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()

    async def revoke(self, access_token: str) -> None:
        """Revoke the token at Google."""
        await asyncio.to_thread(self._post_revoke, access_token)
