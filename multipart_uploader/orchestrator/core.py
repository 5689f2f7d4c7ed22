"""Core orchestrator - drives one multipart upload attempt end to end."""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import (
    FinalizeFailed,
    InitiateFailed,
    InvalidInput,
    PartUploadFailed,
    TargetsFailed,
    TargetsIncomplete,
    TransferFailed,
    UploadCancelled,
    UploadError,
)
from ..models import (
    CompletionToken,
    FileMetadata,
    PartDescriptor,
    UploadConfig,
    UploadOutcome,
    UploadSession,
    UploadState,
    UploadTarget,
)
from ..planner import plan_parts
from ..protocols import IBackendClient, IByteSource, ITransport
from ..services.api_client import HTTPAPIClient
from ..services.backend import BackendClient
from ..services.source import FileByteSource
from ..services.transport import HTTPTransport
from ..utils.events import EventEmitter, PartEvent, PartEventKind
from .part_uploader import PartUploader
from .progress import ProgressAggregator

logger = logging.getLogger(__name__)


def match_targets(
    parts: Sequence[PartDescriptor],
    targets: Sequence[UploadTarget],
) -> Dict[int, UploadTarget]:
    """
    Index targets by part number, requiring exactly one per planned part.

    Raises:
        TargetsIncomplete: On missing, duplicated or unknown part numbers
    """
    expected = {part.part_number for part in parts}
    seen = Counter(target.part_number for target in targets)
    missing = sorted(expected - seen.keys())
    duplicated = sorted(n for n, count in seen.items() if count > 1)
    unexpected = sorted(seen.keys() - expected)

    if missing or duplicated or unexpected:
        details = []
        if missing:
            details.append(f"missing {missing}")
        if duplicated:
            details.append(f"duplicated {duplicated}")
        if unexpected:
            details.append(f"unexpected {unexpected}")
        raise TargetsIncomplete(
            f"Got {len(targets)} upload targets for {len(parts)} parts: {', '.join(details)}",
            missing=missing,
            duplicated=duplicated,
            unexpected=unexpected,
        )

    return {target.part_number: target for target in targets}


@dataclass
class _Attempt:
    """State owned by one upload attempt."""
    number: int
    state: UploadState = UploadState.IDLE
    session: Optional[UploadSession] = None
    progress: ProgressAggregator = field(default_factory=ProgressAggregator)
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)


class UploadOrchestrator:
    """
    Orchestrates multipart uploads using injected services.

    State machine per attempt:
        IDLE -> INITIATING -> PLANNING_PARTS -> REQUESTING_TARGETS
             -> UPLOADING_PARTS -> FINALIZING -> SUCCEEDED | FAILED

    Usage:
        async with UploadOrchestrator(api_url) as uploader:
            uploader.on("progress", lambda percent, counts: print(percent))
            outcome = await uploader.upload(path)

        # With custom backend / transport
        uploader = UploadOrchestrator(backend=my_backend, transport=my_transport)
        outcome = await uploader.upload_source(source, metadata)

    Events:
        state_change(state), part_start(record), part_progress(record),
        part_complete(record), part_fail(record, error),
        progress(overall_percent, counts), finish(outcome)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        config: Optional[UploadConfig] = None,
        backend: Optional[IBackendClient] = None,
        transport: Optional[ITransport] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            api_url: Base URL of the coordination API (unused if backend given)
            config: Upload configuration
            backend: Pre-built backend client
            transport: Pre-built part transport
        """
        self._api_url = api_url
        self._config = config or UploadConfig()
        self._backend = backend
        self._transport = transport
        self._events = EventEmitter()

        # Owned resources (initialized in __aenter__)
        self._api_client: Optional[HTTPAPIClient] = None
        self._http_transport: Optional[HTTPTransport] = None

        self._attempt_counter = 0
        self._current = _Attempt(number=0)

        if self._config.below_backend_minimum:
            logger.warning(
                f"chunk_size {self._config.chunk_size} is below the 5 MiB minimum part size; "
                "S3-compatible backends will reject the upload"
            )

    async def __aenter__(self):
        """Initialize HTTP services that were not injected."""
        if self._backend is None:
            if not self._api_url:
                raise ValueError("Either api_url or backend must be provided")
            self._api_client = HTTPAPIClient(
                self._api_url,
                timeout=self._config.timeout,
                max_attempts=self._config.max_attempts,
                backoff=self._config.retry_backoff,
                headers=self._config.headers,
            )
            await self._api_client.__aenter__()
            self._backend = BackendClient(self._api_client, self._config)

        if self._transport is None:
            self._http_transport = HTTPTransport(timeout=self._config.timeout)
            await self._http_transport.__aenter__()
            self._transport = self._http_transport

        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        self.reset()
        if self._http_transport:
            await self._http_transport.__aexit__(*args)
            self._transport = None
            self._http_transport = None
        if self._api_client:
            await self._api_client.__aexit__(*args)
            self._backend = None
            self._api_client = None

    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def state(self) -> UploadState:
        return self._current.state

    @property
    def session(self) -> Optional[UploadSession]:
        return self._current.session

    @property
    def progress(self) -> ProgressAggregator:
        return self._current.progress

    def on(self, event_name: str, callback: Callable) -> None:
        self._events.on(event_name, callback)

    def off(self, event_name: str, callback: Callable) -> None:
        self._events.off(event_name, callback)

    def reset(self) -> None:
        """
        Abandon the current attempt and return to IDLE.

        In-flight part transfers are not interrupted; their results are
        ignored and no further events are emitted for them.
        """
        self._current.cancelled.set()
        self._attempt_counter += 1
        self._current = _Attempt(number=self._attempt_counter)

    async def upload(self, path: Path, content_type: Optional[str] = None) -> UploadOutcome:
        """Upload a local file."""
        path = Path(path)
        try:
            metadata = FileMetadata.from_path(path, content_type)
        except OSError as exc:
            error = InvalidInput(f"Cannot read {path}: {exc}", exc)
            logger.error(f"Upload of {path.name} failed: {error}")
            return UploadOutcome.fail(path.name, UploadState.IDLE, error)
        return await self.upload_source(FileByteSource(path), metadata)

    async def upload_source(self, source: IByteSource, metadata: FileMetadata) -> UploadOutcome:
        """
        Run one full attempt for ``source``.

        Never raises for upload failures; they are returned as a failed
        UploadOutcome carrying the stage and the cause.
        """
        if self._backend is None or self._transport is None:
            raise RuntimeError("UploadOrchestrator not initialized. Use 'async with' context.")

        self.reset()
        attempt = self._current

        try:
            self._validate(metadata)

            await self._enter(attempt, UploadState.INITIATING)
            attempt.session = await self._call(
                attempt,
                self._backend.initiate(metadata),
                InitiateFailed,
                "Failed to create multipart upload",
            )
            logger.info(f"Initiated upload {attempt.session.upload_id} for {metadata.name} ({metadata.size} bytes)")

            await self._enter(attempt, UploadState.PLANNING_PARTS)
            parts = plan_parts(metadata.size, self._config.chunk_size)
            attempt.progress.initialize(parts)

            await self._enter(attempt, UploadState.REQUESTING_TARGETS)
            targets = await self._call(
                attempt,
                self._backend.request_targets(attempt.session, len(parts)),
                TargetsFailed,
                "Failed to get upload targets",
            )
            targets_by_part = match_targets(parts, targets)

            await self._enter(attempt, UploadState.UPLOADING_PARTS)
            tokens = await self._upload_parts(attempt, source, parts, targets_by_part)

            await self._enter(attempt, UploadState.FINALIZING)
            location = await self._call(
                attempt,
                self._backend.complete(attempt.session, tokens),
                FinalizeFailed,
                "Failed to complete multipart upload",
            )
            await self._enter(attempt, UploadState.SUCCEEDED)
        except UploadError as exc:
            return await self._fail(attempt, metadata.name, exc)

        logger.info(f"Upload of {metadata.name} complete: {location}")
        outcome = UploadOutcome.ok(metadata.name, location, attempt.session)
        await self._events.emit("finish", outcome)
        return outcome

    def _validate(self, metadata: FileMetadata) -> None:
        if not metadata.name:
            raise InvalidInput("File name is required")
        size = metadata.size
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise InvalidInput(f"File size must be a positive integer, got {size!r}")
        chunk_size = self._config.chunk_size
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
            raise InvalidInput(f"chunk_size must be a positive integer, got {chunk_size!r}")
        concurrency = self._config.max_concurrency
        if concurrency is not None and (
            isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1
        ):
            raise InvalidInput(f"max_concurrency must be a positive integer or None, got {concurrency!r}")

    def _is_current(self, attempt: _Attempt) -> bool:
        return attempt is self._current and not attempt.cancelled.is_set()

    def _ensure_current(self, attempt: _Attempt) -> None:
        if not self._is_current(attempt):
            raise UploadCancelled(attempt.state)

    async def _enter(self, attempt: _Attempt, state: UploadState) -> None:
        self._ensure_current(attempt)
        logger.debug(f"Upload state: {attempt.state.value} -> {state.value}")
        attempt.state = state
        await self._events.emit("state_change", state)

    async def _call(self, attempt: _Attempt, coro, error_cls, message: str):
        """Await a backend call, mapping foreign errors to the stage error."""
        try:
            result = await coro
        except UploadError:
            raise
        except Exception as exc:
            raise error_cls(f"{message}: {exc}", exc) from exc
        self._ensure_current(attempt)
        return result

    async def _upload_parts(
        self,
        attempt: _Attempt,
        source: IByteSource,
        parts: List[PartDescriptor],
        targets: Dict[int, UploadTarget],
    ) -> List[CompletionToken]:
        """
        Fan out one transfer per part and join on all of them.

        Returns tokens sorted by part number; raises PartUploadFailed with
        the first observed failure otherwise.
        """
        limit = self._config.max_concurrency
        if limit is None:
            limit = len(parts)
        logger.info(f"Uploading {len(parts)} parts ({min(limit, len(parts))} at a time)")

        uploader = PartUploader(self._transport, source, self._config)
        semaphore = asyncio.Semaphore(limit)
        events: asyncio.Queue = asyncio.Queue()
        failures: List[TransferFailed] = []

        def on_progress(part_number: int, percent: int) -> None:
            events.put_nowait(PartEvent(PartEventKind.PROGRESS, part_number, percent))

        async def run(part: PartDescriptor) -> Optional[CompletionToken]:
            async with semaphore:
                # Don't start new transfers once the attempt is lost
                if failures or not self._is_current(attempt):
                    return None
                events.put_nowait(PartEvent(PartEventKind.STARTED, part.part_number))
                try:
                    token = await uploader.upload(part, targets[part.part_number], on_progress)
                except Exception as exc:
                    if not isinstance(exc, TransferFailed):
                        exc = TransferFailed(part.part_number, f"unexpected error: {exc!r}", exc)
                    failures.append(exc)
                    events.put_nowait(PartEvent(PartEventKind.FAILED, part.part_number, error=exc))
                    return None
                events.put_nowait(PartEvent(PartEventKind.COMPLETED, part.part_number))
                return token

        consumer = asyncio.create_task(self._consume(attempt, events))
        tasks = [asyncio.create_task(run(part)) for part in parts]
        barrier = asyncio.gather(*tasks, return_exceptions=True)
        cancelled = asyncio.create_task(attempt.cancelled.wait())

        try:
            await asyncio.wait({barrier, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            events.put_nowait(None)
            await consumer

        if not barrier.done() or not self._is_current(attempt):
            # Reset mid-upload: transfers keep running, their outcome is ignored
            raise UploadCancelled(attempt.state)

        if failures:
            first = failures[0]
            if len(failures) > 1:
                logger.error(f"{len(failures)} parts failed, reporting part {first.part_number}")
            raise PartUploadFailed(first.part_number, first)

        tokens = [token for token in barrier.result() if isinstance(token, CompletionToken)]
        return sorted(tokens, key=lambda t: t.part_number)

    async def _consume(self, attempt: _Attempt, events: asyncio.Queue) -> None:
        """Single owner of the attempt's progress records."""
        progress = attempt.progress
        while True:
            event = await events.get()
            if event is None:
                return
            if not self._is_current(attempt):
                continue

            if event.kind == PartEventKind.STARTED:
                record = progress.on_part_started(event.part_number)
                await self._events.emit("part_start", record)
            elif event.kind == PartEventKind.PROGRESS:
                if progress.on_part_progress(event.part_number, event.percent):
                    await self._events.emit("part_progress", progress.record(event.part_number))
                continue
            elif event.kind == PartEventKind.COMPLETED:
                record = progress.on_part_completed(event.part_number)
                logger.debug(
                    f"Part {event.part_number}/{progress.total} completed, "
                    f"{progress.completed_bytes()} bytes acknowledged"
                )
                await self._events.emit("part_complete", record)
            elif event.kind == PartEventKind.FAILED:
                record = progress.on_part_failed(event.part_number)
                logger.warning(str(event.error))
                await self._events.emit("part_fail", record, event.error)

            await self._events.emit("progress", progress.overall_percent(), progress.counts())

    async def _fail(self, attempt: _Attempt, filename: str, error: UploadError) -> UploadOutcome:
        stage = error.stage
        outcome = UploadOutcome.fail(filename, stage, error, attempt.session)

        if isinstance(error, UploadCancelled):
            logger.info(f"Upload of {filename} abandoned while {stage.value}")
            return outcome

        logger.error(f"Upload of {filename} failed while {stage.value}: {error}")
        if self._config.abort_on_failure and attempt.session is not None and stage in (
            UploadState.UPLOADING_PARTS,
            UploadState.FINALIZING,
        ):
            await self._abort(attempt.session)

        if self._is_current(attempt):
            attempt.state = UploadState.FAILED
            await self._events.emit("state_change", UploadState.FAILED)
            await self._events.emit("finish", outcome)
        return outcome

    async def _abort(self, session: UploadSession) -> None:
        try:
            await self._backend.abort(session)
            logger.info(f"Aborted upload {session.upload_id}")
        except Exception as e:
            logger.warning(f"Failed to abort upload {session.upload_id}: {e}")
