"""
Generation Orchestrator.

Owns the per-beat generation registry. For each beat at most one
generation is current; events from anything else (a superseded or stopped
request that still delivers late frames) are dropped before they reach a
listener.

Event delivery order for one generation:

    1. chunk events, in arrival order, to synchronous listeners first and
       then to broadcaster subscribers
    2. finalizers (attribute sync, mention tracking) with the cleaned text
    3. exactly one completion event with an empty chunk

Failure policy:

    - TransportError while streaming: one non-streaming retry with the same
      request; only text beyond what already streamed is emitted
    - ContentFilterError, or a failed retry: FAILED with placeholder prose
    - stop(): CANCELLED, no placeholder, logged at info level
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from storybeat.config import Settings, get_settings, parse_model_id
from storybeat.core.postprocess import clean_generated_text
from storybeat.core.prompt_assembly import PromptMessage
from storybeat.errors import ConfigurationError, ContentFilterError, ProviderError, TransportError
from storybeat.protocol.events import GenerationEvent
from storybeat.providers import create_adapter
from storybeat.providers.base import GenerationRequest, ProviderAdapter, new_request_id
from storybeat.services.broadcaster import GenerationBroadcaster
from storybeat.services.fallback_content import build_fallback_text
from storybeat.services.request_log import RequestLog
from storybeat.services.state_machine import GenerationStatus, assert_transition

logger = logging.getLogger(__name__)

GenerationListener = Callable[[GenerationEvent], None]


@dataclass
class GenerationResult:
    """Outcome of one generation, handed to finalizers."""

    beat_id: str
    request_id: str
    status: GenerationStatus
    text: str = ""
    raw_text: str = ""
    error: Optional[dict[str, Any]] = None

    @property
    def cleaned(self) -> bool:
        return self.text != self.raw_text


GenerationFinalizer = Callable[[GenerationResult], None]


@dataclass
class GenerationRecord:
    """Registry entry for the current generation of a beat."""

    beat_id: str
    request: GenerationRequest
    provider: str
    adapter: ProviderAdapter
    status: GenerationStatus = GenerationStatus.IDLE
    task: Optional[asyncio.Task] = None
    emitted: list[str] = field(default_factory=list)
    character_name: Optional[str] = None
    result: Optional[GenerationResult] = None

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def text(self) -> str:
        return "".join(self.emitted)

    def transition(self, to_state: GenerationStatus) -> None:
        assert_transition(self.status, to_state)
        logger.debug(f"Beat {self.beat_id}: {self.status.value} → {to_state.value}")
        self.status = to_state


class GenerationOrchestrator:
    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        *,
        broadcaster: Optional[GenerationBroadcaster] = None,
        request_log: Optional[RequestLog] = None,
        client: Optional[httpx.AsyncClient] = None,
        adapters: Optional[dict[str, ProviderAdapter]] = None,
    ):
        self.settings = app_settings or get_settings()
        self.broadcaster = broadcaster or GenerationBroadcaster()
        self.request_log = request_log or RequestLog(self.settings.request_log_size)
        self._client = client
        self._adapters: dict[str, ProviderAdapter] = dict(adapters or {})
        self._records: dict[str, GenerationRecord] = {}
        self._results: dict[str, GenerationResult] = {}
        self._listeners: list[GenerationListener] = []
        self._finalizers: list[GenerationFinalizer] = []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def add_listener(self, listener: GenerationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: GenerationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_finalizer(self, finalizer: GenerationFinalizer) -> None:
        self._finalizers.append(finalizer)

    def remove_finalizer(self, finalizer: GenerationFinalizer) -> None:
        if finalizer in self._finalizers:
            self._finalizers.remove(finalizer)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def record(self, beat_id: str) -> Optional[GenerationRecord]:
        return self._records.get(beat_id)

    def result(self, beat_id: str) -> Optional[GenerationResult]:
        return self._results.get(beat_id)

    def is_generating(self, beat_id: str) -> bool:
        return beat_id in self._records

    @property
    def active_beats(self) -> list[str]:
        return list(self._records)

    def _is_current(self, record: GenerationRecord) -> bool:
        return self._records.get(record.beat_id) is record

    def reset(self) -> None:
        """Cancel everything in flight and forget all records."""
        for record in list(self._records.values()):
            self._cancel(record)
        self._records.clear()
        self._results.clear()

    async def close(self) -> None:
        self.reset()
        for adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()

    # ------------------------------------------------------------------
    # Provider resolution
    # ------------------------------------------------------------------

    def _adapter(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = create_adapter(
                provider, self.settings, client=self._client, request_log=self.request_log
            )
            self._adapters[provider] = adapter
        return adapter

    def resolve_model(self, model_id: Optional[str] = None) -> tuple[str, str, ProviderAdapter]:
        """
        Resolve ``"<provider>:<model>"`` (or the configured default) to an
        adapter ready for requests.

        Raises ConfigurationError when no usable provider or model results.
        """
        provider, model = parse_model_id(model_id or self.settings.selected_model or "")
        if not provider:
            raise ConfigurationError("No model selected")
        try:
            provider_settings = self.settings.provider_settings(provider)
        except KeyError:
            raise ConfigurationError(f"Unknown provider '{provider}'") from None
        model = model or provider_settings.model
        if not model:
            raise ConfigurationError(f"No model configured for provider {provider}")
        adapter = self._adapter(provider)
        adapter.ensure_configured()
        return provider, model, adapter

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _deliver(self, event: GenerationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Generation listener failed for beat {event.beat_id}")
        self.broadcaster.publish(event)

    def _emit_chunk(self, record: GenerationRecord, text: str) -> bool:
        if not text or not self._is_current(record):
            return False
        if record.status == GenerationStatus.REQUESTING:
            record.transition(GenerationStatus.STREAMING)
        record.emitted.append(text)
        self._deliver(GenerationEvent(beat_id=record.beat_id, chunk=text))
        return True

    def _finalize(self, record: GenerationRecord, status: GenerationStatus, error: Optional[ProviderError] = None) -> GenerationResult:
        record.transition(status)
        raw = record.text
        text = clean_generated_text(raw) if status != GenerationStatus.CANCELLED else raw
        result = GenerationResult(
            beat_id=record.beat_id,
            request_id=record.request_id,
            status=status,
            text=text,
            raw_text=raw,
            error=error.to_dict() if error else None,
        )
        record.result = result
        self._results[record.beat_id] = result
        for finalizer in list(self._finalizers):
            try:
                finalizer(result)
            except Exception:
                logger.exception(f"Generation finalizer failed for beat {record.beat_id}")
        self._deliver(GenerationEvent.completion(record.beat_id))
        record.transition(GenerationStatus.IDLE)
        return result

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def start_generation(
        self,
        beat_id: str,
        prompt: str,
        *,
        model_id: Optional[str] = None,
        messages: Optional[list[PromptMessage]] = None,
        word_count: Optional[int] = None,
        character_name: Optional[str] = None,
    ) -> GenerationRecord:
        """
        Register and launch a generation for a beat.

        An active generation for the same beat is cancelled first, silently.
        Raises ConfigurationError before any network attempt.
        """
        provider, model, adapter = self.resolve_model(model_id)
        word_count = self.settings.clamp_word_count(word_count)
        provider_settings = self.settings.provider_settings(provider)
        request = GenerationRequest(
            prompt=prompt,
            model=model,
            max_output_tokens=self.settings.max_output_tokens(word_count),
            temperature=provider_settings.temperature,
            top_p=provider_settings.top_p,
            request_id=new_request_id(provider),
            messages=messages,
            beat_id=beat_id,
            word_count=word_count,
        )
        record = GenerationRecord(
            beat_id=beat_id,
            request=request,
            provider=provider,
            adapter=adapter,
            character_name=character_name,
        )

        previous = self._records.get(beat_id)
        if previous is not None:
            logger.info(f"Superseding generation {previous.request_id} for beat {beat_id}")
            self._cancel(previous)
        self._records[beat_id] = record
        record.transition(GenerationStatus.REQUESTING)

        record.task = asyncio.create_task(self._run(record), name=f"beat-{beat_id}")
        record.task.add_done_callback(lambda task: self._task_done(record, task))
        logger.info(f"Started generation {request.request_id} for beat {beat_id} with {provider}:{model}")
        return record

    async def generate(self, beat_id: str, prompt: str, **kwargs: Any) -> Optional[GenerationResult]:
        """Start a generation and wait for it.

        Returns None when it was superseded by a newer generation.
        """
        record = self.start_generation(beat_id, prompt, **kwargs)
        assert record.task is not None
        try:
            return await asyncio.shield(record.task)
        except asyncio.CancelledError:
            # Stopped or superseded; the caller itself was not cancelled
            if record.task.cancelled():
                return record.result
            raise

    async def _run(self, record: GenerationRecord) -> Optional[GenerationResult]:
        adapter = record.adapter
        request = record.request
        try:
            try:
                async for chunk in adapter.stream_generate(request):
                    if not self._is_current(record):
                        return None
                    self._emit_chunk(record, chunk.text)
            except TransportError as exc:
                if not self._is_current(record):
                    return None
                logger.warning(
                    f"Stream for beat {record.beat_id} failed ({exc.code}: {exc.message}), "
                    f"retrying without streaming"
                )
                text = await adapter.generate(request)
                if not self._is_current(record):
                    return None
                self._emit_chunk(record, self._fallback_remainder(record.text, text))
        except ProviderError as exc:
            if not self._is_current(record):
                return None
            return self._fail(record, exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._is_current(record):
                return None
            logger.exception(f"Unexpected error generating beat {record.beat_id}")
            return self._fail(record, ProviderError(str(exc), code="internal_error"))

        if not self._is_current(record):
            return None
        del self._records[record.beat_id]
        result = self._finalize(record, GenerationStatus.COMPLETED)
        logger.info(f"Completed generation {record.request_id} for beat {record.beat_id} ({len(result.text)} chars)")
        return result

    @staticmethod
    def _fallback_remainder(streamed: str, text: str) -> str:
        if not streamed:
            return text
        if text.startswith(streamed):
            return text[len(streamed):]
        # The retry produced different prose; keep it as a new paragraph.
        return f"\n{text}" if text else ""

    def _fail(self, record: GenerationRecord, exc: ProviderError) -> GenerationResult:
        if isinstance(exc, ContentFilterError):
            logger.warning(f"Generation for beat {record.beat_id} was blocked: {exc.message}")
        else:
            logger.error(f"Generation for beat {record.beat_id} failed: {exc.code}: {exc.message}")
        placeholder = build_fallback_text(record.request.prompt, record.character_name)
        self._emit_chunk(record, f"\n{placeholder}" if record.emitted else placeholder)
        del self._records[record.beat_id]
        return self._finalize(record, GenerationStatus.FAILED, exc)

    def _task_done(self, record: GenerationRecord, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Generation task for beat {record.beat_id} crashed: {exc!r}")

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _cancel(self, record: GenerationRecord) -> None:
        """Abort the provider request and the task without emitting anything."""
        if self._records.get(record.beat_id) is record:
            del self._records[record.beat_id]
        record.adapter.abort(record.request_id)
        if record.task is not None and not record.task.done():
            record.task.cancel()

    def stop(self, beat_id: str) -> bool:
        """
        Stop the current generation for a beat.

        Emits exactly one completion event. Returns False when nothing was
        generating.
        """
        record = self._records.get(beat_id)
        if record is None:
            return False
        self._cancel(record)
        self._finalize(record, GenerationStatus.CANCELLED)
        logger.info(f"Generation {record.request_id} for beat {beat_id} stopped by user")
        return True

    def complete_unstarted(self, beat_id: str) -> None:
        """Emit the completion event for a beat stopped before its request was started."""
        logger.info(f"Beat {beat_id} stopped before its request started")
        self._deliver(GenerationEvent.completion(beat_id))

    def abort(self, request_id: str) -> bool:
        """Stop the generation that owns a request id."""
        for record in self._records.values():
            if record.request_id == request_id:
                return self.stop(record.beat_id)
        return False
