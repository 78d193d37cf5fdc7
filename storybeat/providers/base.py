"""
Provider adapter base.

Each backend implements ``build_payload``, the two endpoint URLs and
``normalize``; the base class owns the HTTP plumbing, SSE framing, the
per-request abort registry and error normalization.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, ClassVar, Optional

import httpx

from storybeat.config import ProviderSettings
from storybeat.core.prompt_assembly import PromptMessage, parse_messages
from storybeat.errors import ConfigurationError, ProviderError, TransportError
from storybeat.providers.sse import SSEFrameBuffer
from storybeat.services.request_log import RequestLog

logger = logging.getLogger(__name__)

STREAM_DONE = "[DONE]"


def new_request_id(provider: str) -> str:
    return f"{provider}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class GenerationRequest:
    """Provider-neutral generation parameters."""

    prompt: str
    model: str
    max_output_tokens: int
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: Optional[list[PromptMessage]] = None
    beat_id: Optional[str] = None
    word_count: Optional[int] = None

    def resolved_messages(self) -> list[PromptMessage]:
        return self.messages if self.messages else parse_messages(self.prompt)


@dataclass
class UniformChunk:
    """One backend frame reduced to what the orchestrator needs."""

    text: str = ""
    is_complete: bool = False
    finish_reason: Optional[str] = None


def _error_message(status_code: int, body: bytes | str) -> tuple[str, dict[str, Any]]:
    text = body.decode(errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return f"HTTP {status_code}: {text[:300]}", {}
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or f"HTTP {status_code}"), error
    if isinstance(error, str):
        return error, {}
    return f"HTTP {status_code}", data if isinstance(data, dict) else {}


class ProviderAdapter(ABC):
    """A text-generation backend reachable over HTTP."""

    name: ClassVar[str] = ""

    def __init__(
        self,
        provider_settings: ProviderSettings,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_log: Optional[RequestLog] = None,
    ):
        self.settings = provider_settings
        self.timeout = timeout
        self.request_log = request_log
        self._client = client
        # request_id -> abort flag for requests currently in flight
        self._active: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Backend specifics
    # ------------------------------------------------------------------

    @abstractmethod
    def stream_url(self, request: GenerationRequest) -> str: ...

    @abstractmethod
    def generate_url(self, request: GenerationRequest) -> str: ...

    @abstractmethod
    def build_payload(self, request: GenerationRequest, stream: bool) -> dict[str, Any]: ...

    @abstractmethod
    def normalize(self, frame: dict[str, Any]) -> Optional[UniformChunk]:
        """Reduce one decoded wire frame to a UniformChunk.

        Returns None for frames that carry nothing (keep-alives, usage).
        Raises ContentFilterError for safety blocks and TransportError for
        in-band errors.
        """

    def headers(self) -> dict[str, str]:
        return {}

    def extract_text(self, data: dict[str, Any]) -> str:
        """Text of a complete non-streaming response."""
        chunk = self.normalize(data)
        return chunk.text if chunk else ""

    # ------------------------------------------------------------------
    # HTTP client
    # ------------------------------------------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def ensure_configured(self) -> None:
        if not self.settings.enabled:
            raise ConfigurationError(f"Provider {self.name} is not enabled")
        if not self.settings.api_key:
            raise ConfigurationError(f"Provider {self.name} has no API key")

    # ------------------------------------------------------------------
    # Abort registry
    # ------------------------------------------------------------------

    def abort(self, request_id: str) -> bool:
        """Stop consuming the response for a request.

        Returns False when the request is not (or no longer) in flight.
        """
        event = self._active.get(request_id)
        if event is None:
            return False
        event.set()
        logger.info(f"[{self.name}] abort requested for {request_id}")
        return True

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active

    @property
    def active_requests(self) -> list[str]:
        return list(self._active)

    def _register(self, request_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self._active[request_id] = event
        return event

    def _unregister(self, request_id: str) -> None:
        self._active.pop(request_id, None)

    # ------------------------------------------------------------------
    # Request log helpers
    # ------------------------------------------------------------------

    def _log_start(self, request: GenerationRequest, endpoint: str, streaming: bool) -> Optional[str]:
        if self.request_log is None:
            return None
        return self.request_log.log_request(
            provider=self.name,
            model=request.model,
            endpoint=endpoint,
            prompt=request.prompt,
            max_tokens=request.max_output_tokens,
            streaming=streaming,
            word_count=request.word_count,
        )

    def _log_error(self, log_id: Optional[str], exc: ProviderError) -> None:
        if self.request_log is not None and log_id is not None:
            self.request_log.log_error(log_id, exc.message, exc.http_status)

    def _log_success(self, log_id: Optional[str], text: str) -> None:
        if self.request_log is not None and log_id is not None:
            self.request_log.log_success(log_id, text)

    def _log_aborted(self, log_id: Optional[str]) -> None:
        if self.request_log is not None and log_id is not None:
            self.request_log.log_aborted(log_id)

    # ------------------------------------------------------------------
    # Frame decoding
    # ------------------------------------------------------------------

    def _decode_frame(self, payload: str) -> list[UniformChunk]:
        """Decode one SSE payload. Malformed JSON is skipped with a warning."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"[{self.name}] skipping malformed stream frame: {payload[:120]!r}")
            return []
        # Some backends send a batch of frames as a JSON array
        frames = data if isinstance(data, list) else [data]
        chunks: list[UniformChunk] = []
        for frame in frames:
            if not isinstance(frame, dict):
                continue
            chunk = self.normalize(frame)
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream_generate(self, request: GenerationRequest) -> AsyncIterator[UniformChunk]:
        """Stream normalized chunks for a request until completion or abort."""
        self.ensure_configured()
        abort_event = self._register(request.request_id)
        url = self.stream_url(request)
        payload = self.build_payload(request, stream=True)
        log_id = self._log_start(request, url, streaming=True)
        received: list[str] = []
        logger.info(f"[{self.name}] streaming request {request.request_id} model={request.model}")

        try:
            async with self.client.stream("POST", url, json=payload, headers=self.headers()) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    message, details = _error_message(response.status_code, body)
                    raise TransportError(
                        message, code="http_error", http_status=response.status_code, details=details
                    )

                buffer = SSEFrameBuffer()
                done = False
                async for text in response.aiter_text():
                    if abort_event.is_set():
                        break
                    for frame in buffer.feed(text):
                        if frame.strip() == STREAM_DONE:
                            done = True
                            break
                        for chunk in self._decode_frame(frame):
                            if abort_event.is_set():
                                break
                            if chunk.text:
                                received.append(chunk.text)
                            yield chunk
                            if chunk.is_complete:
                                done = True
                        if done or abort_event.is_set():
                            break
                    if done:
                        break

                if not done and not abort_event.is_set():
                    for frame in buffer.flush():
                        if frame.strip() == STREAM_DONE:
                            break
                        for chunk in self._decode_frame(frame):
                            if chunk.text:
                                received.append(chunk.text)
                            yield chunk

            if abort_event.is_set():
                self._log_aborted(log_id)
            else:
                self._log_success(log_id, "".join(received))
        except asyncio.CancelledError:
            self._log_aborted(log_id)
            raise
        except ProviderError as exc:
            self._log_error(log_id, exc)
            raise
        except httpx.TimeoutException as exc:
            err = TransportError(f"Request timed out: {exc}", code="timeout")
            self._log_error(log_id, err)
            raise err from exc
        except httpx.HTTPError as exc:
            err = TransportError(f"Network error: {exc}", code="network_error")
            self._log_error(log_id, err)
            raise err from exc
        finally:
            self._unregister(request.request_id)

    async def generate(self, request: GenerationRequest) -> str:
        """Non-streaming completion. Returns an empty string when aborted."""
        self.ensure_configured()
        abort_event = self._register(request.request_id)
        url = self.generate_url(request)
        payload = self.build_payload(request, stream=False)
        log_id = self._log_start(request, url, streaming=False)
        logger.info(f"[{self.name}] non-streaming request {request.request_id} model={request.model}")

        try:
            response = await self.client.post(url, json=payload, headers=self.headers())
            if abort_event.is_set():
                self._log_aborted(log_id)
                return ""
            if response.status_code >= 400:
                message, details = _error_message(response.status_code, response.content)
                raise TransportError(
                    message, code="http_error", http_status=response.status_code, details=details
                )
            try:
                data = response.json()
            except json.JSONDecodeError as exc:
                raise TransportError("Response was not valid JSON", code="parse_error") from exc
            text = self.extract_text(data)
            self._log_success(log_id, text)
            return text
        except asyncio.CancelledError:
            self._log_aborted(log_id)
            raise
        except ProviderError as exc:
            self._log_error(log_id, exc)
            raise
        except httpx.TimeoutException as exc:
            err = TransportError(f"Request timed out: {exc}", code="timeout")
            self._log_error(log_id, err)
            raise err from exc
        except httpx.HTTPError as exc:
            err = TransportError(f"Network error: {exc}", code="network_error")
            self._log_error(log_id, err)
            raise err from exc
        finally:
            self._unregister(request.request_id)
