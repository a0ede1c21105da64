"""
Progress Monitor — client-side polling of a document's pipeline status.

There is no push channel: the monitor polls the status record and keeps its
own elapsed time since attach. Past `health_check_after` it checks backend
liveness once; past `restart_after` it offers a restart; past `stuck_after`
it reports the job as stuck. Restarting or attaching to another document
resets all of it.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass

import httpx

from trustee_docs.client.api_client import PipelineClient
from trustee_docs.core.entities.document import ProcessingStatus

logger = logging.getLogger(__name__)


@dataclass
class MonitorSnapshot:
    document_id: str
    status: ProcessingStatus | None
    progress: int = 0
    stage: str | None = None
    elapsed: float = 0.0
    stuck: bool = False
    restart_available: bool = False
    backend_reachable: bool = True
    warning: str | None = None
    error: str | None = None
    error_message: str | None = None

    @property
    def done(self) -> bool:
        return self.status is not None and self.status.is_terminal


class ProgressMonitor:

    def __init__(
        self,
        client: PipelineClient,
        poll_interval: float = 2.0,
        health_check_after: float = 45.0,
        restart_after: float = 90.0,
        stuck_after: float = 120.0,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self._client = client
        self.poll_interval = poll_interval
        self.health_check_after = health_check_after
        self.restart_after = restart_after
        self.stuck_after = stuck_after
        self._clock = clock
        self._sleep = sleep

        self.document_id: str | None = None
        self._started = 0.0
        self._health_checked = False
        self._backend_ok = True

    def attach(self, document_id: str):
        """Start monitoring a document; resets all client-local state."""
        self.document_id = document_id
        self._reset()
        logger.debug(f"Monitoring document {document_id}")

    def _reset(self):
        self._started = self._clock()
        self._health_checked = False
        self._backend_ok = True

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    async def poll_once(self) -> MonitorSnapshot:
        if self.document_id is None:
            raise RuntimeError("attach() a document before polling")

        elapsed = self.elapsed
        try:
            payload = await self._client.get_status(self.document_id)
        except httpx.HTTPError as e:
            logger.warning(f"Status poll for {self.document_id} failed: {e}")
            return self._decorate(MonitorSnapshot(
                document_id=self.document_id,
                status=None,
                elapsed=elapsed,
                warning="Could not reach the document service; will keep trying.",
            ))

        status = ProcessingStatus(payload["status"])
        snapshot = MonitorSnapshot(
            document_id=self.document_id,
            status=status,
            progress=int(payload.get("progress") or 0),
            stage=payload.get("stage"),
            elapsed=elapsed,
            error=payload.get("error"),
            error_message=payload.get("error_message"),
        )

        if status == ProcessingStatus.FAILED:
            snapshot.restart_available = True
            return snapshot
        if status.is_terminal:
            return snapshot

        if elapsed > self.health_check_after and not self._health_checked:
            self._health_checked = True
            self._backend_ok = await self._client.health()
            if not self._backend_ok:
                logger.warning("Analysis service health check failed")

        return self._decorate(snapshot)

    def _decorate(self, snapshot: MonitorSnapshot) -> MonitorSnapshot:
        snapshot.backend_reachable = self._backend_ok
        if not self._backend_ok and snapshot.warning is None:
            snapshot.warning = "Connection to the analysis service appears to be slow. This may delay processing."
        snapshot.restart_available = snapshot.elapsed > self.restart_after
        snapshot.stuck = snapshot.elapsed > self.stuck_after
        if snapshot.restart_available and snapshot.warning is None:
            snapshot.warning = "Analysis is taking longer than expected. You can restart it."
        return snapshot

    async def restart(self, force: bool = False) -> MonitorSnapshot:
        """
        Ask the backend to restart the run, then start counting from zero again.

        A 409 means the document moved on by itself (for example it completed
        meanwhile); the counter is still reset and the snapshot says so.
        """
        if self.document_id is None:
            raise RuntimeError("attach() a document before restarting")
        try:
            await self._client.retry(self.document_id, force=force, restart=True)
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 409:
                raise
            logger.warning(f"Restart of document {self.document_id} refused: {e.response.text}")
            self._reset()
            snapshot = await self.poll_once()
            snapshot.warning = "The document changed state before the restart; showing its current status."
            return snapshot
        self._reset()
        logger.info(f"Restarted analysis of document {self.document_id}")
        return await self.poll_once()

    async def watch(self, document_id: str, on_update=None, max_polls: int | None = None) -> MonitorSnapshot:
        """
        Poll until a terminal status is observed.

        `on_update` receives every snapshot and may be sync or async.
        `max_polls` bounds the loop (None polls forever).
        """
        self.attach(document_id)
        polls = 0
        while True:
            snapshot = await self.poll_once()
            polls += 1
            if on_update is not None:
                result = on_update(snapshot)
                if inspect.isawaitable(result):
                    await result
            if snapshot.done or (max_polls is not None and polls >= max_polls):
                return snapshot
            await self._sleep(self.poll_interval)
