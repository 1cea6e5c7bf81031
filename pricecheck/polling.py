import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from opentelemetry import trace as trace_api

from pricecheck.models.itinerary import ItineraryRequest
from pricecheck.models.session import ProgressEvent, SessionSnapshot, SessionStatus
from pricecheck.observability import get_tracer
from pricecheck.results_store import ResultsStore
from pricecheck.session_client import SessionClient

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

_CLOSED = object()

# Share of one poll interval the last-chance fetch may take, leaving room for the reply
FINAL_FETCH_SHARE = 0.8


class PollingState(str, Enum):
    SUBMITTING = "SUBMITTING"
    POLLING = "POLLING"
    DONE = "DONE"


class ProgressChannel:
    """Bounded queue carrying progress events from the orchestrator to a transport writer.

    Publishing never blocks the polling loop: when the writer falls behind the
    oldest queued event is dropped. Events are cumulative snapshots, so the
    newest one always supersedes what was dropped.
    """

    def __init__(self, maxsize: int = 16):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._put(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._put(_CLOSED)

    def _put(self, item) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                logger.debug("Progress channel full, dropped the oldest event")

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class PollingOrchestrator:
    """Submit an itinerary, then poll the session until it completes or the budget runs out.

    Running out of budget is not an error: the last snapshot seen (possibly
    still IN_PROGRESS) is the answer. Only a failed submit is fatal.
    """

    def __init__(
        self,
        client: SessionClient,
        budget_seconds: float,
        poll_interval_seconds: float,
        results_store: Optional[ResultsStore] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.budget_seconds = budget_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.results_store = results_store
        self.clock = clock
        self.sleep = sleep

    async def run(
        self, request: ItineraryRequest, progress: Optional[ProgressChannel] = None
    ) -> SessionSnapshot:
        with tracer.start_as_current_span("poll_session") as span:
            self._transition(PollingState.SUBMITTING, "-")
            try:
                request_id = await self.client.submit(request)
            except Exception as e:
                span.set_status(trace_api.StatusCode.ERROR, str(e))
                logger.error(f"Submit failed, aborting: {e}")
                raise
            span.set_attribute("request_id", request_id)

            snapshot = await self.poll(request_id, progress, span)

            span.set_attribute("status", snapshot.status.value)
            span.set_attribute("result_count", snapshot.total_results)
            if self.results_store is not None:
                self.results_store.put(snapshot)
            return snapshot

    async def poll(
        self,
        request_id: str,
        progress: Optional[ProgressChannel] = None,
        span=None,
    ) -> SessionSnapshot:
        """Poll an existing session. The budget starts counting now."""
        self._transition(PollingState.POLLING, request_id)
        started = self.clock()
        deadline = started + self.budget_seconds
        last: Optional[SessionSnapshot] = None
        reported_count = 0
        attempt = 0

        while self.clock() < deadline:
            attempt += 1
            elapsed = self.clock() - started
            logger.info(f"Poll attempt {attempt} for {request_id} ({elapsed:.0f}s elapsed)")

            try:
                # A slow backend must not carry the loop past the deadline
                snapshot = await asyncio.wait_for(
                    self.client.fetch_results(request_id), timeout=deadline - self.clock()
                )
            except asyncio.TimeoutError:
                logger.warning(f"Poll attempt {attempt} for {request_id} still pending at the deadline, abandoned")
            except Exception as e:
                logger.warning(f"Poll attempt {attempt} for {request_id} failed: {e}")
            else:
                last = snapshot
                count = snapshot.total_results
                completed = snapshot.status is SessionStatus.COMPLETED
                logger.info(f"Poll {attempt}: status={snapshot.status.value}, results={count}")

                if count > reported_count or completed:
                    self._emit(progress, snapshot)
                    reported_count = count

                if snapshot.status.is_terminal:
                    self._finish(request_id, snapshot, attempt, span)
                    return snapshot

            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            await self.sleep(min(self.poll_interval_seconds, remaining))

        logger.info(f"Polling budget of {self.budget_seconds:.0f}s reached for {request_id}")
        if last is None:
            last = await self._final_fetch(request_id)
            if last.total_results > reported_count or last.status is SessionStatus.COMPLETED:
                self._emit(progress, last)
        self._finish(request_id, last, attempt, span)
        return last

    async def _final_fetch(self, request_id: str) -> SessionSnapshot:
        timeout = self.poll_interval_seconds * FINAL_FETCH_SHARE
        try:
            return await asyncio.wait_for(self.client.fetch_results(request_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Final fetch for {request_id} took longer than {timeout:.1f}s, no results known")
            return SessionSnapshot(request_id=request_id, status=SessionStatus.IN_PROGRESS)
        except Exception as e:
            logger.warning(f"Final fetch for {request_id} failed, no results known: {e}")
            return SessionSnapshot(request_id=request_id, status=SessionStatus.IN_PROGRESS)

    def _emit(self, progress: Optional[ProgressChannel], snapshot: SessionSnapshot) -> None:
        event = ProgressEvent.from_snapshot(snapshot)
        logger.info(event.message)
        if progress is not None:
            progress.publish(event)

    def _finish(self, request_id: str, snapshot: SessionSnapshot, attempts: int, span) -> None:
        if span is not None:
            span.set_attribute("poll_attempts", attempts)
        self._transition(PollingState.DONE, request_id)
        logger.info(
            f"Returning {request_id}: status={snapshot.status.value}, "
            f"results={snapshot.total_results} after {attempts} poll(s)"
        )

    def _transition(self, state: PollingState, request_id: str) -> None:
        logger.debug(f"Session {request_id} -> {state.value}")
