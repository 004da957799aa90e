"""Out-of-band triggering of pipeline runs.

With a site URL configured, processing is requested through the HTTP
trigger endpoint so a fresh request handles it; otherwise the run is
scheduled on the current event loop after a short delay.
"""

import asyncio

import httpx

from utility_bills.utils.config import TriggerConfig
from utility_bills.utils.logger import get_logger

from .orchestrator import BillPipeline

logger = get_logger(__name__)

TRIGGER_PATH = "/utility-bills/process"


def build_base_url(site_url: str) -> str:
    """Add a scheme to a bare host, using http only for localhost."""
    if site_url.startswith(("http://", "https://")):
        return site_url.rstrip("/")
    scheme = "http" if "localhost" in site_url else "https"
    return f"{scheme}://{site_url}".rstrip("/")


class ProcessingTrigger:
    """Fire-and-forget scheduling of :meth:`BillPipeline.process`.

    Args:
        config: Trigger configuration.
        pipeline: Pipeline used for in-process runs.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        config: TriggerConfig,
        pipeline: BillPipeline,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.pipeline = pipeline
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def trigger(self, job_id: str) -> asyncio.Task:
        """Schedule processing of a job without waiting for it.

        Must be called from within a running event loop.
        """
        if self.config.site_url:
            return self._spawn(self._request(job_id))
        return self._spawn(self._run_local(job_id))

    async def _request(self, job_id: str) -> None:
        url = build_base_url(self.config.site_url or "") + TRIGGER_PATH
        params = {"id": job_id, "secret": self.config.secret}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(url, params=params)
            response.raise_for_status()
            logger.info("Triggered processing of bill %s via %s", job_id, url)
        except httpx.HTTPError as exc:
            logger.error("Failed to trigger processing of bill %s: %s", job_id, exc)

    async def _run_local(self, job_id: str) -> None:
        await asyncio.sleep(self.config.local_delay_seconds)
        try:
            await self.pipeline.process(job_id)
        except Exception as exc:
            logger.error("In-process run for bill %s failed: %s", job_id, exc)

    async def drain(self) -> None:
        """Wait for every scheduled trigger to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
