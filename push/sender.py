from __future__ import annotations

from functools import lru_cache
from threading import Lock
from typing import List, Optional, Protocol, Tuple
from uuid import uuid4

import httpx

from app.schemas import PushMessage
from settings import get_settings


class PushDeliveryError(Exception):
    """The push backend rejected or failed to accept a message."""


class PushSender(Protocol):
    def send(self, token: str, message: PushMessage) -> str:
        """Deliver ``message`` to ``token`` and return the delivery id."""
        ...


class MockPushSender:
    """Records messages in memory instead of delivering them."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, PushMessage]] = []
        self._failure: Optional[str] = None
        self._lock = Lock()

    def fail_next(self, reason: str = "mock delivery failure") -> None:
        with self._lock:
            self._failure = reason

    def send(self, token: str, message: PushMessage) -> str:
        with self._lock:
            if self._failure is not None:
                reason, self._failure = self._failure, None
                raise PushDeliveryError(reason)
            self.sent.append((token, message.model_copy(deep=True)))
        return f"projects/mock/messages/{uuid4().hex}"


class HttpPushSender:
    """Posts ``{"message": ...}`` to a send endpoint and reads back its ``name``."""

    def __init__(
        self,
        endpoint_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
        self.endpoint_url = endpoint_url
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def close(self) -> None:
        self._client.close()

    def send(self, token: str, message: PushMessage) -> str:
        body = {"message": message.model_copy(update={"token": token}).model_dump(by_alias=True)}
        try:
            response = self._client.post(self.endpoint_url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise PushDeliveryError(
                f"Push endpoint returned {exc.response.status_code}: {exc.response.text.strip()}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise PushDeliveryError(f"Push request failed: {exc}") from exc

        delivery_id = None
        if isinstance(payload, dict):
            delivery_id = payload.get("name") or payload.get("id")
        if not isinstance(delivery_id, str) or not delivery_id:
            raise PushDeliveryError("Push endpoint response carried no delivery id.")
        return delivery_id


@lru_cache
def build_default_sender() -> PushSender:
    settings = get_settings()
    if settings.push_backend == "mock":
        return MockPushSender()
    if settings.push_backend == "http":
        if not settings.push_endpoint_url:
            raise ValueError("PUSH_ENDPOINT_URL is required when PUSH_BACKEND=http.")
        return HttpPushSender(
            endpoint_url=settings.push_endpoint_url,
            auth_token=settings.push_auth_token,
            timeout=settings.push_timeout,
        )
    raise ValueError(f"Unknown PUSH_BACKEND {settings.push_backend!r}.")
