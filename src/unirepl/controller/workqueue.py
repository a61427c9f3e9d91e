"""Work queue and worker pool that drive the reconciliation controller.

ARCHITECTURE
────────────
::

    store change ──► WorkQueue.add(key) ──► worker 1..N ──► controller.reconcile(key)
                         ▲                                     │
                         └──── add_after(key, requeue_after) ◄─┘

A key is queued at most once. A key re-added while a worker holds it is
marked dirty and handed out again when that worker calls ``done``, so
the same key is never reconciled by two workers at once.

Example::

    runner = ControllerRunner(controller)
    store.subscribe(runner.enqueue)
    await runner.start()
    ...
    await runner.stop()
"""

from __future__ import annotations

import asyncio

from unirepl.controller.reconciler import ReconciliationController
from unirepl.core.logging import get_logger

logger = get_logger(__name__)


class WorkQueue:
    """Deduplicating asyncio work queue keyed by intent key."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutdown = False

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def shutting_down(self) -> bool:
        return self._shutdown

    def processing(self) -> set[str]:
        return set(self._processing)

    def pending_delayed(self) -> list[str]:
        return sorted(self._timers)

    def add(self, key: str) -> None:
        """Queue ``key`` unless it is already waiting."""
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        self._idle.clear()
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds; an earlier pending timer wins."""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        when = loop.time() + delay
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def get(self) -> str | None:
        """Next key to process, or ``None`` once the queue is shut down."""
        key = await self._queue.get()
        if key is None or self._shutdown:
            # pass the sentinel on to the next waiting worker
            self._queue.put_nowait(None)
            return None
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: str) -> None:
        """Release ``key``; a key re-added meanwhile goes back on the queue."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutdown:
            self._queue.put_nowait(key)
        elif self._queue.empty() and not self._processing:
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until nothing is queued or in flight. Delayed keys don't count."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._queue.put_nowait(None)
        self._idle.set()


class ControllerRunner:
    """Runs ``max_concurrent_reconciles`` workers over a :class:`WorkQueue`."""

    def __init__(
        self,
        controller: ReconciliationController,
        queue: WorkQueue | None = None,
        *,
        workers: int | None = None,
    ):
        self.controller = controller
        self.queue = queue or WorkQueue()
        self.workers = workers or controller.settings.max_concurrent_reconciles
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    async def start(self) -> None:
        """Start the workers and queue every stored intent once."""
        if self.running:
            return
        for index in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(index), name=f"reconcile-worker-{index}"))
        for key in await self.controller.store.list_keys():
            self.queue.add(key)
        logger.info("controller_started", workers=self.workers)

    async def stop(self) -> None:
        await self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("controller_stopped")

    async def _worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                result = await self.controller.reconcile(key)
            except Exception:
                # a bug in reconcile must not kill the worker
                logger.exception("reconcile_crashed", key=key, worker=index)
                self.queue.add_after(key, self.controller.settings.error_requeue_interval)
            else:
                if result.requeue_after is not None:
                    self.queue.add_after(key, result.requeue_after)
            finally:
                self.queue.done(key)


__all__ = ["WorkQueue", "ControllerRunner"]
