"""Per-table dispatch of record mutations to the automation engine."""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.core.automation.engine import AutomationEngine
from app.core.db.session import SessionLocal
from app.core.pubsub.models import RecordMutationEvent
from app.schemas.automation import ChainReport

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Session], AutomationEngine]

_STOP = object()


class MutationDispatcher:
    """Serialises mutations per table while tables proceed concurrently.

    Each table gets its own queue and worker task, created on first use and
    dropped once the queue runs empty, so only tables with pending mutations
    hold a worker. A worker opens a fresh database session for every chain.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        engine_factory: EngineFactory = AutomationEngine,
    ):
        """Initialize dispatcher.

        Args:
            session_factory: Creates the session a chain runs in
            engine_factory: Builds an engine on that session
        """
        self.session_factory = session_factory
        self.engine_factory = engine_factory
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Accept submissions."""
        self._running = True
        logger.info("Mutation dispatcher started")

    async def submit(self, event: RecordMutationEvent) -> asyncio.Future:
        """Queue a mutation behind earlier mutations of the same table.

        Returns:
            Future resolved with the chain report (or the chain's exception)

        Raises:
            RuntimeError: If the dispatcher is not running
        """
        if not self._running:
            raise RuntimeError("Mutation dispatcher is not running")

        queue = self._queues.get(event.table_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[event.table_id] = queue
            self._workers[event.table_id] = asyncio.create_task(
                self._worker(event.table_id, queue), name=f"automation-{event.table_id}"
            )

        future = asyncio.get_running_loop().create_future()
        # No await between the lookup and the put: an idle worker cannot retire in between
        queue.put_nowait((event, future))
        return future

    async def dispatch(self, event: RecordMutationEvent) -> ChainReport:
        """Submit a mutation and wait for its chain to finish."""
        future = await self.submit(event)
        return await future

    async def join(self) -> None:
        """Wait until every queued mutation has been processed."""
        await asyncio.gather(*(queue.join() for queue in list(self._queues.values())))

    async def stop(self) -> None:
        """Drain the queues and stop the workers."""
        self._running = False
        for queue in list(self._queues.values()):
            queue.put_nowait((_STOP, None))
        workers = list(self._workers.values())
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._queues.clear()
        self._workers.clear()
        logger.info("Mutation dispatcher stopped")

    async def _worker(self, table_id: str, queue: asyncio.Queue) -> None:
        logger.debug(f"Worker for table {table_id} started")
        while True:
            event, future = await queue.get()
            try:
                if event is _STOP:
                    return
                report = await self._process(event)
                if not future.done():
                    future.set_result(report)
            except Exception as e:
                logger.error(
                    f"Chain of event {event.event_id} on table {table_id} failed: {e}",
                    exc_info=True,
                )
                if not future.done():
                    future.set_exception(e)
            finally:
                queue.task_done()
            if queue.empty():
                self._queues.pop(table_id, None)
                self._workers.pop(table_id, None)
                logger.debug(f"Worker for table {table_id} idle, stopped")
                return

    async def _process(self, event: RecordMutationEvent) -> ChainReport:
        db = self.session_factory()
        try:
            engine = self.engine_factory(db)
            return await engine.process_event(event)
        finally:
            db.close()
