"""Client for the video classification service."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from .schemas import ClassificationResult
from .settings import Settings

logger = logging.getLogger(__name__)


class ClassificationError(RuntimeError):
    pass


class TokenError(ClassificationError):
    pass


class SubmissionError(ClassificationError):
    pass


class PollError(ClassificationError):
    pass


def _json_body(response: httpx.Response, what: str) -> Dict[str, Any]:
    if response.status_code >= 400:
        raise ClassificationError(
            f"{what} returned HTTP {response.status_code}: {response.text[:200]}"
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise ClassificationError(f"{what} returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise ClassificationError(f"{what} returned an unexpected payload")
    return payload


class TokenProvider:
    """Owns the access token and its expiry.

    Only one refresh is in flight at a time; callers that arrive while a
    refresh is running wait for it and reuse its token.
    """

    def __init__(
        self,
        token_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        *,
        refresh_margin: float = 60.0,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.refresh_margin = max(0.0, float(refresh_margin))
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self) -> str:
        if self._valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if self._valid():
                return self._token  # type: ignore[return-value]
            await self._refresh()
            return self._token  # type: ignore[return-value]

    async def _refresh(self) -> None:
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as exc:
            raise TokenError(f"token request failed: {exc}") from exc
        payload = _json_body(response, "token endpoint")
        token = payload.get("access_token")
        if not token:
            raise TokenError("token endpoint response has no access_token")
        try:
            expires_in = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        self._token = str(token)
        self._expires_at = self._clock() + max(0.0, expires_in - self.refresh_margin)
        logger.info("classifier_token_refreshed", extra={"expires_in": expires_in})


class MatroidClient:
    def __init__(
        self,
        api_base: str,
        detector_id: Optional[str],
        tokens: TokenProvider,
        *,
        poll_interval: float = 10.0,
        timeout: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.detector_id = detector_id or ""
        self.tokens = tokens
        self.poll_interval = max(0.0, float(poll_interval))
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "MatroidClient":
        api_base = settings.matroid_api_base.rstrip("/")
        tokens = TokenProvider(
            f"{api_base}/oauth/token",
            settings.matroid_client_id,
            settings.matroid_client_secret,
            refresh_margin=settings.token_refresh_margin_sec,
            timeout=settings.HTTP_CONNECT_TIMEOUT + settings.HTTP_READ_TIMEOUT,
            transport=transport,
        )
        return cls(
            api_base,
            settings.matroid_detector_id,
            tokens,
            poll_interval=settings.poll_interval_sec,
            timeout=settings.HTTP_TOTAL_TIMEOUT,
            transport=transport,
        )

    async def _headers(self) -> Dict[str, str]:
        token = await self.tokens.get_token()
        return {"Authorization": f"Bearer {token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def submit(self, segment_path: str) -> str:
        """Upload a segment and return the service's id for it."""

        url = f"{self.api_base}/detectors/{self.detector_id}/classify_video"
        headers = await self._headers()
        try:
            async with self._client() as client:
                with open(segment_path, "rb") as fh:
                    files = {"file": (os.path.basename(segment_path), fh, "video/mp4")}
                    response = await client.post(url, files=files, headers=headers)
        except (httpx.HTTPError, OSError) as exc:
            raise SubmissionError(f"upload of {segment_path} failed: {exc}") from exc
        payload = _json_body(response, "classify_video")
        video_id = payload.get("video_id")
        if not video_id:
            raise SubmissionError(f"classify_video response has no video_id: {payload}")
        logger.info("segment_submitted", extra={"video_id": video_id})
        return str(video_id)

    async def poll(self, video_id: str) -> ClassificationResult:
        """Wait until the service reports 100% progress and return its result."""

        url = f"{self.api_base}/videos/{video_id}"
        while True:
            headers = await self._headers()
            try:
                async with self._client() as client:
                    response = await client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                raise PollError(f"status request for {video_id} failed: {exc}") from exc
            payload = _json_body(response, "video status")
            progress = payload.get("classification_progress")
            if progress is None:
                raise PollError(f"status for {video_id} has no classification_progress")
            if progress == 100:
                try:
                    return ClassificationResult.model_validate(payload)
                except ValidationError as exc:
                    raise PollError(f"malformed result for {video_id}: {exc}") from exc
            logger.debug(
                "segment_classifying",
                extra={"video_id": video_id, "progress": progress},
            )
            await asyncio.sleep(self.poll_interval)

    async def classify(self, segment_path: str) -> ClassificationResult:
        video_id = await self.submit(segment_path)
        return await self.poll(video_id)
