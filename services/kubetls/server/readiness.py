"""Wait for a freshly deployed TLS server to become ready.

The server is ready once, on a single check:

1. its Deployment reports at least one available replica,
2. some pod matching the server label selector is Ready, and
3. that pod runs exactly the expected image reference.

Checks run in a background task every ``interval`` seconds until one
succeeds. The caller races that task against the deadline. Success is
delivered through a one-shot future that is only set if nobody has resolved
it yet, and the task is cancelled and awaited on timeout, so a check that
completes late has nowhere to block.
"""

import asyncio
import contextlib
import enum
from typing import Any

from kubetls.config import settings
from kubetls.kube.client import KubernetesClient, is_pod_ready
from kubetls.kube.errors import KubernetesAPIError
from kubetls.logging_config import get_logger

from .errors import ServerReadinessTimeoutError

logger = get_logger(__name__)


class PollState(enum.Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"


def pod_images(pod: dict[str, Any]) -> list[str]:
    return [container.get("image", "") for container in (pod.get("spec") or {}).get("containers") or []]


class ServerReadinessPoller:
    """Deadline-bounded readiness check for the server deployment."""

    def __init__(
        self,
        client: KubernetesClient,
        namespace: str,
        deployment_name: str,
        expected_image: str,
        *,
        timeout: float | None = None,
        interval: float | None = None,
    ):
        self.client = client
        self.namespace = namespace
        self.deployment_name = deployment_name
        self.expected_image = expected_image
        self.timeout = timeout if timeout is not None else settings.server.readiness_timeout_seconds
        self.interval = interval if interval is not None else settings.server.readiness_interval_seconds
        self.state = PollState.POLLING
        self.checks = 0
        self._log = logger.bind(namespace=namespace, deployment=deployment_name, image=expected_image)

    async def check(self) -> dict[str, Any] | None:
        """Run one check. Returns the ready pod, or None with the reason logged."""
        self.checks += 1
        try:
            deployment = await self.client.get_deployment(self.namespace, self.deployment_name)
            if ((deployment.get("status") or {}).get("availableReplicas") or 0) < 1:
                self._log.info("Deployment has no available replicas yet")
                return None

            pods = await self.client.list_pods(self.namespace, settings.server.pod_label_selector)
        except KubernetesAPIError as e:
            self._log.warning("Readiness check failed", error=str(e))
            return None

        ready_pods = [pod for pod in pods if is_pod_ready(pod)]
        if not ready_pods:
            self._log.info("No ready server pods yet", pods=len(pods))
            return None

        for pod in ready_pods:
            if self.expected_image in pod_images(pod):
                return pod

        self._log.info(
            "Ready server pods are not running the expected image",
            images=sorted({image for pod in ready_pods for image in pod_images(pod)}),
        )
        return None

    async def _monitor(self, ready: asyncio.Future) -> None:
        while True:
            pod = await self.check()
            if pod is not None:
                if not ready.done():
                    ready.set_result(pod)
                return
            await asyncio.sleep(self.interval)

    async def wait(self) -> dict[str, Any]:
        """Block until the server is ready or the deadline passes.

        Returns the ready pod. Raises ServerReadinessTimeoutError on timeout.
        """
        self.state = PollState.POLLING
        self._log.info("Waiting for TLS server", timeout=self.timeout, interval=self.interval)

        ready: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        monitor = asyncio.create_task(self._monitor(ready))
        try:
            await asyncio.wait({ready, monitor}, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not monitor.done():
                monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await monitor

        if ready.done():
            self.state = PollState.SUCCEEDED
            pod = ready.result()
            self._log.info(
                "TLS server is ready",
                pod=(pod.get("metadata") or {}).get("name", ""),
                checks=self.checks,
            )
            return pod

        self.state = PollState.TIMED_OUT
        self._log.error("Timed out waiting for TLS server", checks=self.checks)
        raise ServerReadinessTimeoutError(self.namespace)


async def wait_for_server(
    client: KubernetesClient,
    namespace: str,
    deployment_name: str,
    expected_image: str,
    *,
    timeout: float | None = None,
    interval: float | None = None,
) -> dict[str, Any]:
    """Wait for the server deployment in ``namespace`` to run ``expected_image``."""
    poller = ServerReadinessPoller(
        client,
        namespace,
        deployment_name or settings.server.deployment_name,
        expected_image,
        timeout=timeout,
        interval=interval,
    )
    return await poller.wait()
