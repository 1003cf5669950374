"""Live verification through a Kubernetes TokenReview call.

Every assertion is submitted to the review authority. The call is bounded
by the configured timeout twice over: httpx's own timeouts, and an outer
asyncio.wait_for so a stalled connection can never hang the login.
"""

from __future__ import annotations

__all__ = [
    "TokenReviewClient",
    "TokenReviewResult",
]

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from tenant_vault.config import LiveVerification
from tenant_vault.constants import APP_NAME
from tenant_vault.exceptions import InvalidSignatureError, ValidationUnreachableError

_logger = logging.getLogger(f"{APP_NAME}.security.auth.token_review")

_API_VERSION = "authentication.k8s.io/v1"


@dataclass(frozen=True)
class TokenReviewResult:
    """Outcome of an authenticated review.

    Attributes:
        username: Authenticated username (e.g. "system:serviceaccount:alpha:app").
        audiences: Audiences the authority validated the token for.
        extra: Additional user attributes reported by the authority.
    """

    username: str
    audiences: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)


class TokenReviewClient:
    """Submit assertions to a token-review endpoint.

    Usage:
        client = TokenReviewClient(live_config)
        result = await client.review(token, audiences=["vault"])
    """

    def __init__(
        self,
        config: LiveVerification,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Live verification settings.
            transport: Optional httpx transport (tests inject a mock).
        """
        self._config = config
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._config.reviewer_token_path:
            token = Path(self._config.reviewer_token_path).expanduser().read_text(encoding="utf-8").strip()
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def review(self, token: str, audiences: list[str]) -> TokenReviewResult:
        """Submit one assertion for review.

        Args:
            token: The raw assertion.
            audiences: Audiences the caller accepts.

        Returns:
            TokenReviewResult for an authenticated assertion.

        Raises:
            ValidationUnreachableError: If the authority cannot be reached,
                does not answer within the timeout, or answers with an error.
            InvalidSignatureError: If the authority reports the assertion as
                unauthenticated.
        """
        timeout = self._config.timeout_seconds
        body = {
            "apiVersion": _API_VERSION,
            "kind": "TokenReview",
            "spec": {"token": token, "audiences": audiences},
        }

        try:
            response = await asyncio.wait_for(self._post(body), timeout=timeout)
            response.raise_for_status()
            payload = response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            _logger.warning(
                {
                    "event": "token_review_timeout",
                    "message": f"Token review timed out after {timeout}s",
                    "review_url": self._config.review_url,
                }
            )
            raise ValidationUnreachableError(f"token review timed out after {timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ValidationUnreachableError(
                f"token review returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.RequestError, OSError, ValueError) as e:
            raise ValidationUnreachableError(f"token review failed: {type(e).__name__}") from e

        status = payload.get("status") or {}
        if not status.get("authenticated"):
            raise InvalidSignatureError(status.get("error") or "assertion was not authenticated")

        user = status.get("user") or {}
        return TokenReviewResult(
            username=user.get("username", ""),
            audiences=tuple(status.get("audiences") or ()),
            extra=dict(user.get("extra") or {}),
        )

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        timeout = self._config.timeout_seconds
        verify: ssl.SSLContext | bool = True
        if self._config.ca_bundle_path:
            verify = ssl.create_default_context(cafile=self._config.ca_bundle_path)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout),
            transport=self._transport,
            verify=verify,
        ) as client:
            return await client.post(self._config.review_url, json=body, headers=self._headers())
