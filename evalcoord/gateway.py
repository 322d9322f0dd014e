"""Client for the external decision (eligibility) service."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .constants import DEFAULT_DECISION_TIMEOUT_SECONDS
from .contracts import DecisionRequest, DecisionResult
from .errors import DecisionHttpError, DecisionNetworkError, DecisionTimeoutError

logger = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class DecisionGateway:
    """Calls ``POST {base_url}/evaluate`` and classifies failures.

    Failures are raised as :class:`~evalcoord.errors.DecisionTimeoutError`,
    :class:`~evalcoord.errors.DecisionHttpError` or
    :class:`~evalcoord.errors.DecisionNetworkError`. Anything else is
    re-raised unchanged. There is no retry.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_DECISION_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._log = log or logger

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def evaluate(
        self, request: DecisionRequest | dict[str, Any], correlation_id: str
    ) -> DecisionResult:
        """Ask the decision service for a verdict on ``request``.

        Optional request fields are defaulted so the call is never rejected
        for missing context.
        """
        if isinstance(request, dict):
            request = DecisionRequest.model_validate(
                {k: v for k, v in request.items() if v is not None}
            )
        url = f"{self.base_url}/evaluate"
        self._log.info(
            f"Calling decision service for subject_id={request.subject_id} "
            f"correlation_id={correlation_id}"
        )

        try:
            response = await self._get_client().post(
                url,
                json=request.model_dump(),
                headers={"X-Correlation-ID": correlation_id},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = DecisionResult.model_validate(response.json())
        except httpx.TimeoutException as exc:
            self._log.error(
                f"Decision service timeout after {self.timeout}s "
                f"correlation_id={correlation_id}"
            )
            raise DecisionTimeoutError(int(self.timeout * 1000)) from exc
        except httpx.HTTPStatusError as exc:
            body = _response_body(exc.response)
            self._log.error(
                f"Decision service returned {exc.response.status_code} "
                f"correlation_id={correlation_id}: {body}"
            )
            raise DecisionHttpError(exc.response.status_code, body) from exc
        except httpx.RequestError as exc:
            self._log.error(
                f"Decision service unreachable correlation_id={correlation_id}: {exc}"
            )
            raise DecisionNetworkError(
                str(exc) or exc.__class__.__name__, code=exc.__class__.__name__
            ) from exc
        except Exception as exc:
            self._log.error(
                f"Decision service call failed correlation_id={correlation_id}: {exc}"
            )
            raise

        self._log.info(
            f"Decision received eligible={result.eligible} scheme={result.scheme} "
            f"correlation_id={correlation_id}"
        )
        return result
