"""Router for handling model fallback across the configured models."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from .backend import UpstreamClient, UpstreamResult, format_httpx_error
from .exceptions import ModelsExhaustedError, UpstreamClientError, UpstreamServerError
from .state import ModelState

logger = logging.getLogger("nimbridge")

CLIENT_ERROR_DELAY = 1.0
SERVER_ERROR_DELAY = 2.0


class FallbackRouter:
    """Tries the current model, then every fallback model in declared order.

    A success on any attempt other than the first makes that model the
    current one for later requests.
    """

    def __init__(
        self,
        client: UpstreamClient,
        state: ModelState,
        client_error_delay: float = CLIENT_ERROR_DELAY,
        server_error_delay: float = SERVER_ERROR_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.state = state
        self.client_error_delay = client_error_delay
        self.server_error_delay = server_error_delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return 1 + len(self.state.fallback_models)

    async def dispatch(
        self,
        messages: Sequence[Any],
        temperature: float,
        max_tokens: int,
        stream: bool = False,
    ) -> UpstreamResult:
        payload = {
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }
        attempts = self.max_attempts
        last_error: Optional[BaseException] = None
        attempt = 0

        while True:
            model = self.state.model_for_attempt(attempt)
            if model is None:
                break
            has_next = self.state.model_for_attempt(attempt + 1) is not None
            logger.info(
                "Attempt %d/%d with model %s (stream=%s)", attempt + 1, attempts, model, stream
            )
            attempt += 1

            try:
                if stream:
                    result = await self.client.open_stream(model, payload)
                else:
                    result = await self.client.chat_completion(model, payload)
            except Exception as exc:
                failures = self.state.record_failure()
                if isinstance(exc, httpx.HTTPError):
                    detail = format_httpx_error(exc, timeout=self.client.timeout)
                elif isinstance(exc, UpstreamServerError):
                    detail = f"{exc.message}; body={exc.body!r}"
                else:
                    detail = f"{exc.__class__.__name__}: {exc}"
                logger.warning(
                    "Model %s failed with transport/server error (failures=%d): %s",
                    model,
                    failures,
                    detail,
                )
                if not has_next:
                    logger.error("All %d models failed for this request", attempts)
                    raise
                last_error = exc
                await self._sleep(self.server_error_delay)
                continue

            if result.status_code == 200:
                self.state.record_success(model)
                logger.info("Served by model %s on attempt %d", model, attempt)
                return result

            failures = self.state.record_failure()
            body = result.json()
            logger.warning(
                "Model %s returned status %d (failures=%d): %r",
                model,
                result.status_code,
                failures,
                body,
            )
            error = UpstreamClientError(
                f"{model} returned status {result.status_code}",
                status_code=result.status_code,
                body=body,
                model=model,
            )
            if not has_next:
                logger.error("All %d models failed for this request", attempts)
                raise error
            last_error = error
            await self._sleep(self.client_error_delay)

        raise ModelsExhaustedError("All models exhausted") from last_error
