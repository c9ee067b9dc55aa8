import asyncio
from typing import Awaitable, Callable, Optional, Set

import httpx

from solver.models import describe_error, log, logger

CHAIN_TIMEOUT = 15.0

TaskRunner = Callable[[str, "TaskSupervisor"], Awaitable[None]]


class TaskSupervisor:
    """Runs tasks detached from whoever started them and logs how they end.

    Chained successors go through ``chain``: when a public ``self_url`` is
    configured the successor is requested over HTTP exactly like an inbound
    task (same ``x-secret`` header), otherwise it is started in-process.
    """

    def __init__(self, settings, runner: TaskRunner,
                 client_factory: Optional[Callable[[], httpx.AsyncClient]] = None):
        self.settings = settings
        self._runner = runner
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=CHAIN_TIMEOUT))
        self._running: Set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._running)

    async def run(self, url: str) -> None:
        log("[TASK]", "Starting task:", url)
        try:
            await self._runner(url, self)
        except Exception:
            logger.exception("[SOLVER] [BACKGROUND ERROR] task for %s crashed", url)
        else:
            log("[TASK]", "Finished task:", url)

    def _watch(self, task: asyncio.Task, label: str) -> asyncio.Task:
        self._running.add(task)

        def _done(t: asyncio.Task):
            self._running.discard(t)
            if t.cancelled():
                log("[TASK]", "Cancelled:", label)
                return
            exc = t.exception()
            if exc is not None:
                log("[TASK]", "Failed:", label, describe_error(exc))

        task.add_done_callback(_done)
        return task

    def spawn(self, url: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.run(url))
        return self._watch(task, url)

    async def request_task(self, url: str) -> None:
        endpoint = f"{self.settings.self_url}/task"
        async with self._client_factory() as client:
            resp = await client.post(
                endpoint,
                json={"url": url},
                headers={"x-secret": self.settings.secret},
            )
        log("[CHAIN]", "Next task request status:", resp.status_code)
        resp.raise_for_status()

    def chain(self, url: str) -> asyncio.Task:
        log("[CHAIN]", "Triggering next task:", url)
        if self.settings.self_url:
            task = asyncio.get_running_loop().create_task(self.request_task(url))
            return self._watch(task, f"chain request for {url}")
        return self.spawn(url)

    async def join(self) -> None:
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
