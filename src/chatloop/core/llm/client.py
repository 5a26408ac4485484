"""Concrete streaming LLM client."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from chatloop.core.cancellation import CancellationToken, is_cancelled
from chatloop.core.conversation import Message
from chatloop.core.errors import BackendUnavailable
from chatloop.core.events import StreamEvent, TurnEnd
from chatloop.core.tools.base import ToolSchema

from .transport import StreamDecoder, build_endpoint, build_headers, build_payload, make_decoder, parse_sse_line
from .types import LLMSettings, StreamOptions

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 503})
MAX_RETRY_AFTER = 60.0


class LLMClient:
    """Streaming model backend over HTTP.

    Connection failures, timeouts and rate-limited responses (429, 503) are
    retried with exponential backoff; a ``Retry-After`` header overrides the
    computed delay.
    """

    def __init__(
        self,
        settings: LLMSettings,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)
        self._sleep = sleep

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    def stream_turn(
        self,
        history: Sequence[Message],
        tool_schemas: Sequence[ToolSchema],
        options: StreamOptions,
        cancel: CancellationToken | None = None,
    ) -> Iterator[StreamEvent]:
        """Dispatch one model request and return its event stream.

        The request is sent before this method returns, so connection and
        HTTP status failures surface here as :class:`BackendUnavailable`.
        """

        if is_cancelled(cancel):
            return iter([TurnEnd(finish_reason="cancelled")])

        request = self._client.build_request(
            "POST",
            build_endpoint(self._settings),
            headers=build_headers(self._settings),
            json=build_payload(self._settings, history, tool_schemas, options),
        )

        attempt = 0
        backoff = 1.5
        last_error: Exception | None = None

        while attempt <= self._settings.max_retries:
            try:
                response = self._client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:  # noqa: PERF203
                last_error = exc
                attempt += 1
                if attempt > self._settings.max_retries:
                    break
                sleep_for = backoff**attempt
                logger.warning("LLM request failed (%s); retrying in %.1fs", type(exc).__name__, sleep_for)
                if self._pause(sleep_for, cancel):
                    return iter([TurnEnd(finish_reason="cancelled")])
                continue
            except httpx.HTTPError as exc:
                raise BackendUnavailable(f"LLM request failed: {exc}") from exc

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                detail = _read_error_detail(exc.response)
                response.close()
                if status in RETRYABLE_STATUSES and attempt < self._settings.max_retries:
                    attempt += 1
                    retry_after = _retry_after_seconds(exc.response)
                    sleep_for = backoff**attempt if retry_after is None else min(retry_after, MAX_RETRY_AFTER)
                    logger.warning("LLM request rate limited (%s); retrying in %.1fs", status, sleep_for)
                    if self._pause(sleep_for, cancel):
                        return iter([TurnEnd(finish_reason="cancelled")])
                    continue
                logger.error("LLM request failed with status %s", status)
                raise BackendUnavailable(f"LLM request failed ({status}): {detail}") from exc
            return self._events(response, make_decoder(self._settings.api), cancel)

        message = f"LLM request failed after {attempt} attempt(s)"
        if last_error:
            message = f"{message}: {str(last_error) or type(last_error).__name__}"
        raise BackendUnavailable(message) from last_error

    def _events(
        self,
        response: httpx.Response,
        decoder: StreamDecoder,
        cancel: CancellationToken | None,
    ) -> Iterator[StreamEvent]:
        start_time = time.perf_counter()
        finish_reason: str | None = None
        try:
            for raw_line in response.iter_lines():
                if is_cancelled(cancel):
                    finish_reason = "cancelled"
                    break
                payload = parse_sse_line(raw_line)
                if payload is None:
                    continue
                yield from decoder.decode(payload)
        except httpx.HTTPError as exc:
            logger.warning("LLM stream interrupted: %s", exc)
            finish_reason = "interrupted"
        finally:
            response.close()
        if finish_reason is None:
            finish_reason = decoder.finish_reason or "stop"
        logger.debug(
            "LLM stream finished (model=%s, latency=%.2fs, finish=%s, usage=%s)",
            self._settings.model,
            time.perf_counter() - start_time,
            finish_reason,
            decoder.usage,
        )
        yield TurnEnd(finish_reason=finish_reason, usage=decoder.usage)

    def close(self) -> None:
        """Dispose the underlying HTTP client if owned by this instance."""

        if self._owns_client:
            self._client.close()

    def _pause(self, seconds: float, cancel: CancellationToken | None) -> bool:
        """Wait before a retry; return ``True`` when the caller cancelled meanwhile."""

        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)
        if is_cancelled(cancel):
            logger.info("LLM retry abandoned after cancellation")
            return True
        return False


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _read_error_detail(response: httpx.Response) -> str:
    try:
        raw = response.read()
    except httpx.HTTPError as read_exc:
        logger.debug("Unable to read error payload: %s", read_exc)
        return response.reason_phrase
    if not raw:
        return response.reason_phrase
    text = raw.decode("utf-8", errors="replace")
    try:
        detail = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(detail, dict) and isinstance(detail.get("error"), dict):
        message = detail["error"].get("message")
        if message:
            return str(message)
    return json.dumps(detail)


__all__ = ["LLMClient"]
