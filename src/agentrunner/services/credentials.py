import logging
from typing import Dict

import httpx

from ..errors import AuthSetupError
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


class TokenProvider:
    """Fetches the short-lived WebSocket credential from the HTTP side channel."""

    def __init__(
        self,
        token_url: str,
        *,
        cookies: Dict[str, str] | None = None,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._token_url = token_url
        self._cookies = cookies or {}
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    def _post(self) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self._token_url, headers=self._headers())
        with httpx.Client(timeout=self._timeout, cookies=self._cookies) as client:
            return client.post(self._token_url, headers=self._headers())

    def fetch_token(self) -> str:
        """POST to the token endpoint and return the opaque token.

        Raises:
            AuthSetupError: the request failed, the server answered non-2xx,
                or the response carries no token.
        """
        try:
            response = self._post()
        except httpx.HTTPError as e:
            logger.warning("Token request to %s failed: %s", self._token_url, e)
            raise AuthSetupError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise AuthSetupError(
                _error_message(response)
                or f"Failed to get auth token: {response.reason_phrase}"
            )

        try:
            token = response.json().get("token")
        except (ValueError, AttributeError) as e:
            raise AuthSetupError(f"Invalid token response: {e}") from e
        if not token:
            raise AuthSetupError("Auth token not received from server.")
        logger.debug("WebSocket token obtained")
        return str(token)


def _error_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return None


def get_token_provider(settings: Settings | None = None) -> TokenProvider:
    """Build a TokenProvider from settings."""
    settings = settings or get_settings()
    return TokenProvider(
        settings.token_url,
        cookies=settings.runner_cookies,
        api_key=settings.runner_api_key,
        timeout=settings.token_request_timeout_seconds,
    )
