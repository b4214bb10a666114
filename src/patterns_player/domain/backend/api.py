"""
Backend API operations.

Handles listen recording (session and legacy endpoints), legacy music API key
issuance and the raw music generation request.
"""

from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from ...core.config import BackendConfig
from ..exceptions import GenerationTimeoutError, NetworkError, ServerError
from ..library.models import ListenRecord
from ..session.models import ApiKey
from .schemas import (
    LegacyListenRequest,
    MusicApiKeyResponse,
    SessionListenRequest,
    SessionListenResponse,
)


class BackendApi:
    """Thin async client for the backend collaborator.

    Transport failures raise NetworkError and 5xx responses raise ServerError
    so callers can retry them; 4xx responses are reported as a rejection.
    """

    def __init__(self, client: httpx.AsyncClient, config: Optional[BackendConfig] = None):
        self.client = client
        self.config = config or BackendConfig()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _post(
        self,
        url: str,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        try:
            return await self.client.post(
                url,
                json=json,
                headers=headers,
                timeout=timeout or self.config.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {url} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

    async def record_listen(self, record: ListenRecord, timeout: Optional[float] = None) -> bool:
        """Record a listen through the legacy endpoint.

        Returns:
            True if the backend accepted the listen, False if it rejected it

        Raises:
            NetworkError: Backend unreachable
            ServerError: Backend returned 5xx
        """
        body = LegacyListenRequest(
            nft_address=record.track_address,
            collection_address=record.collection_address,
        ).model_dump(by_alias=True)

        logger.debug(f"Recording listen (legacy API): {record.track_address}")
        response = await self._post(self._url(self.config.listens_path), json=body, timeout=timeout)

        if response.status_code >= 500:
            raise ServerError(response.status_code, response.text[:200])
        if not response.is_success:
            logger.error(
                f"Listen rejected by backend: {response.status_code} {response.text[:200]}"
            )
            return False

        logger.info(f"Listen recorded via legacy API: {record.track_address}")
        return True

    async def record_session_listen(
        self, session_id: str, record: ListenRecord, timeout: Optional[float] = None
    ) -> SessionListenResponse:
        """Record a listen under a wallet session.

        Raises:
            NetworkError: Backend unreachable
            ServerError: Backend returned 5xx
        """
        body = SessionListenRequest(
            nft_address=record.track_address,
            timestamp=int(record.timestamp * 1000),
        ).model_dump(by_alias=True)

        response = await self._post(
            self._url(self.config.session_listens_path),
            json=body,
            headers={"Authorization": f"Bearer {session_id}"},
            timeout=timeout,
        )

        if response.status_code >= 500:
            raise ServerError(response.status_code, response.text[:200])
        if not response.is_success:
            if response.status_code == 401:
                logger.error("Session expired while recording listen")
            elif response.status_code == 429:
                logger.warning("Listen rate limit exceeded")
            else:
                logger.error(f"Session listen rejected: {response.status_code}")
            return SessionListenResponse(success=False, message=f"HTTP {response.status_code}")

        try:
            result = SessionListenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ServerError(response.status_code, f"Malformed listen response: {e}") from e

        logger.info(
            f"Session listen recorded: {record.track_address} (count={result.user_listen_count})"
        )
        return result

    async def generate_music_api_key(self, auth_token: str) -> ApiKey:
        """Issue a legacy music API key for the authenticated backend user.

        Raises:
            NetworkError: Backend unreachable
            ServerError: Non-success response or malformed payload
        """
        response = await self._post(
            self._url(self.config.api_key_path),
            headers={"Authorization": f"Bearer {auth_token}"},
        )
        if not response.is_success:
            raise ServerError(response.status_code, response.text[:200])

        try:
            data = MusicApiKeyResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ServerError(response.status_code, f"Malformed API key response: {e}") from e

        return ApiKey(
            key=data.api_key,
            music_server_url=data.music_server_url,
            expires_at=data.expires_at.timestamp(),
        )

    async def generate_music(
        self,
        server_url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        """Issue a music generation request and return the raw response.

        Raises:
            GenerationTimeoutError: No complete response within timeout
            NetworkError: Music server unreachable
        """
        url = f"{server_url.rstrip('/')}/generate-music-stream"
        try:
            return await self.client.post(url, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(timeout) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Music server unreachable: {e}") from e
