"""Query scheduler - keeps every active query refreshed.

one listener task consumes the control bus and dispatches commands. each
active time-series query gets its own worker task that polls on its own
interval and publishes onto the result bus. log queries run once and that's
it - they are usually big and the operator re-runs them by hand.

Usage:
    scheduler = Scheduler(client, results, control)
    scheduler.start()
    control.publish(AddQuery(text="SELECT count(*) FROM Transaction TIMESERIES"))
    ...
    await scheduler.close()

cancellation is cooperative. deleting a query sets the worker's token, and
the worker notices at the top of its loop or while waiting for the next poll.
a request that's already in flight always runs to completion, so one stale
payload can still land after a delete - the consumer drops it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from pulseboard.aggregator import aggregate_logs, aggregate_timeseries
from pulseboard.bus import ControlBus, ResultBus, Subscription
from pulseboard.client.telemetry import TelemetrySource
from pulseboard.errors import BusClosedError, ResponseFormatError, TransportError
from pulseboard.models.payload import (
    AddQuery,
    Command,
    DeleteQuery,
    ErrorPayload,
    NoDataPayload,
    Payload,
    RefreshQuery,
)
from pulseboard.models.query import ActiveQuery, QueryKind
from pulseboard.models.results import TimeseriesRow
from pulseboard.parser.nrql import resolve

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    """Lifecycle of one time-series worker. CANCELLED is terminal."""

    IDLE = "idle"
    POLLING = "polling"
    CANCELLED = "cancelled"


@dataclass
class SchedulerConfig:
    """Timing knobs for the scheduler.

    Attributes:
        poll_interval: Seconds between polls of one time-series query.
        max_consecutive_failures: Transport failures in a row before the
            worker reports an error payload instead of plain "no data".
        stop_timeout: Seconds close() waits for workers before cancelling them.
    """

    poll_interval: float = 2.0
    max_consecutive_failures: int = 3
    stop_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive: {self.poll_interval}")
        if self.max_consecutive_failures < 1:
            raise ValueError(
                f"max_consecutive_failures must be at least 1: {self.max_consecutive_failures}"
            )
        if self.stop_timeout <= 0:
            raise ValueError(f"stop_timeout must be positive: {self.stop_timeout}")


@dataclass
class Worker:
    """Book-keeping for one polling task.

    cancelled is the worker's own cancellation token, handed over at spawn
    time. wakeup cuts the interval wait short - set on cancel and on refresh.
    """

    query: ActiveQuery
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    wakeup: asyncio.Event = field(default_factory=asyncio.Event)
    state: WorkerState = WorkerState.IDLE
    task: asyncio.Task | None = None
    polls: int = 0
    failures: int = 0  # consecutive transport failures, reset by any good poll

    def cancel(self) -> None:
        self.query.cancel()
        self.cancelled.set()
        self.wakeup.set()


class Scheduler:
    """Owns the set of active queries and their workers."""

    def __init__(
        self,
        client: TelemetrySource,
        results: ResultBus,
        control: ControlBus,
        config: SchedulerConfig | None = None,
    ) -> None:
        self.client = client
        self.results = results
        self.control = control
        self.config = config or SchedulerConfig()

        self._active: dict[str, ActiveQuery] = {}  # identity -> query
        self._workers: dict[str, Worker] = {}  # identity -> live worker (time series only)
        self._tasks: set[asyncio.Task] = set()  # every worker task not yet finished
        self._subscription: Subscription | None = None
        self._listener: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None

    # --- introspection ---

    @property
    def active(self) -> dict[str, ActiveQuery]:
        """Snapshot of active queries keyed by identity."""
        return dict(self._active)

    def is_active(self, identity: str) -> bool:
        return identity in self._active

    def worker(self, identity: str) -> Worker | None:
        return self._workers.get(identity)

    # --- control plane ---

    def start(self) -> None:
        """Subscribe to the control bus and start the listener task."""
        if self._listener is not None:
            logger.warning("Scheduler already started")
            return
        self._subscription = self.control.subscribe()
        self._listener = asyncio.create_task(self.run(self._subscription))
        logger.info("Scheduler started")

    async def run(self, subscription: Subscription) -> None:
        """Listener loop: dispatch every command until cancelled."""
        while True:
            command = await subscription.get()
            try:
                await self.dispatch(command)
            except BusClosedError:
                logger.info("Result bus closed, listener exiting")
                return
            except Exception as e:
                logger.exception(f"Failed to dispatch {command!r}: {e}")

    async def dispatch(self, command: Command) -> None:
        if isinstance(command, AddQuery):
            await self.add_query(command.text)
        elif isinstance(command, DeleteQuery):
            self.delete_query(command.text)
        elif isinstance(command, RefreshQuery):
            self.refresh()
        else:
            raise ValueError(f"Unknown command: {command!r}")

    def start_refresh(self, interval: float) -> None:
        """Broadcast RefreshQuery on the control bus every `interval` seconds."""
        if interval <= 0:
            raise ValueError(f"refresh interval must be positive: {interval}")
        if self._ticker is not None:
            self._ticker.cancel()
        self._ticker = asyncio.create_task(self._tick(interval))

    async def _tick(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.control.publish(RefreshQuery())
            except BusClosedError:
                return

    # --- commands ---

    async def add_query(self, raw: str) -> ActiveQuery:
        """Start servicing a query.

        time series get a polling worker; log queries run once, right here.
        adding an identity that's already active just returns it.
        """
        existing = self._active.get(raw)
        if existing is not None:
            logger.debug(f"Query already active: {raw!r}")
            return existing

        parsed, effective = resolve(raw)
        active = ActiveQuery(
            identity=raw,
            effective_text=effective,
            kind=parsed.kind,
            parsed=parsed,
        )
        self._active[raw] = active

        if active.kind == QueryKind.TIMESERIES:
            self._spawn(active)
        else:
            logger.info(f"Running log query once: {effective!r}")
            self._publish(await self._execute(active))

        return active

    def delete_query(self, raw: str) -> bool:
        """Stop servicing a query. Returns False if it wasn't active."""
        active = self._active.pop(raw, None)
        if active is None:
            return False

        worker = self._workers.pop(raw, None)
        if worker is not None:
            worker.cancel()
        else:
            active.cancel()
        logger.info(f"Deleted query {raw!r}")
        return True

    def refresh(self) -> int:
        """Poll every active time-series query once more, right away.

        works by waking each worker early rather than issuing a second
        request next to it, so one query never has two requests in flight.
        log queries are left alone. returns how many workers were woken.
        """
        woken = 0
        for worker in self._workers.values():
            if not worker.cancelled.is_set():
                worker.wakeup.set()
                woken += 1
        logger.debug(f"Refresh woke {woken} workers")
        return woken

    async def execute_once(self, raw: str) -> Payload:
        """Resolve and run a query a single time without registering it."""
        parsed, effective = resolve(raw)
        active = ActiveQuery(
            identity=raw,
            effective_text=effective,
            kind=parsed.kind,
            parsed=parsed,
        )
        return await self._execute(active)

    # --- workers ---

    def _spawn(self, active: ActiveQuery) -> Worker:
        worker = Worker(query=active)
        worker.task = asyncio.create_task(self._poll(worker))
        self._workers[active.identity] = worker
        self._tasks.add(worker.task)
        worker.task.add_done_callback(self._tasks.discard)
        logger.info(f"Spawned worker for {active.effective_text!r}")
        return worker

    async def _poll(self, worker: Worker) -> None:
        """Worker loop for one time-series query."""
        identity = worker.query.identity
        try:
            while not worker.cancelled.is_set():
                worker.state = WorkerState.POLLING
                worker.wakeup.clear()

                payload = await self._execute(worker.query, worker)
                worker.polls += 1
                try:
                    self._publish(payload)
                except BusClosedError:
                    logger.info(f"Result bus closed, stopping worker for {identity!r}")
                    return

                worker.state = WorkerState.IDLE
                try:
                    await asyncio.wait_for(worker.wakeup.wait(), timeout=self.config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            worker.state = WorkerState.CANCELLED
            worker.query.cancel()
            logger.debug(f"Worker for {identity!r} stopped after {worker.polls} polls")

    async def _execute(self, active: ActiveQuery, worker: Worker | None = None) -> Payload:
        """Run a query once and turn whatever happens into a payload.

        the failure streak lives on the worker, so one-shot runs (log queries,
        execute_once) always count as a first attempt.
        """
        identity = active.identity
        try:
            if active.kind == QueryKind.TIMESERIES:
                rows = await self.client.execute(active.effective_text, TimeseriesRow)
                payload = aggregate_timeseries(identity, rows)
            else:
                rows = await self.client.execute(active.effective_text)
                payload = aggregate_logs(identity, rows)
        except TransportError as e:
            failures = 1
            if worker is not None:
                worker.failures += 1
                failures = worker.failures
            logger.warning(f"Transport error for {identity!r} ({failures} in a row): {e}")
            if failures >= self.config.max_consecutive_failures:
                return ErrorPayload(
                    query=identity,
                    message=f"No response after {failures} attempts: {e}",
                )
            return NoDataPayload(query=identity)
        except ResponseFormatError as e:
            logger.error(f"Malformed response for {identity!r}: {e}")
            return ErrorPayload(query=identity, message=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error running {identity!r}: {e}")
            return ErrorPayload(query=identity, message=f"Unexpected error: {e}")

        if worker is not None:
            worker.failures = 0
        return payload

    def _publish(self, payload: Payload) -> None:
        self.results.publish(payload)

    # --- shutdown ---

    async def close(self) -> None:
        """Stop the listener, the ticker and every worker.

        workers get stop_timeout to finish their in-flight request and exit
        on their own, after that they're cancelled outright.
        """
        for task in (self._ticker, self._listener):
            if task is not None:
                task.cancel()
        for task in (self._ticker, self._listener):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._ticker = None
        self._listener = None

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        for worker in self._workers.values():
            worker.cancel()
        self._workers.clear()
        self._active.clear()

        pending = list(self._tasks)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self.config.stop_timeout)
            for task in still_running:
                logger.warning("Worker did not stop in time, cancelling")
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("Scheduler stopped")
