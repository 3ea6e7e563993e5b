"""
volumes.py
----------
Attach/detach of persistent disks.

A running pod's volume list cannot be changed in place, so attaching or
detaching a disk recreates the VM's pod:

    1. fetch the pod
    2. rewrite ``disks.persistent`` in the settings config map
    3. splice the disk volume/mount into (or out of) the pod spec
    4. strip the pod to its identity, delete it, create it again
    5. watch until the agent container is running and ready, or time out
    6. optionally give the agent a moment to come up before returning

Any failure aborts the sequence; the director retries the whole operation.
"""
from __future__ import annotations

import logging
import math
import queue
import threading
import time
from enum import Enum
from typing import Callable, Optional

import httpx
from kubernetes.client import ApiException, V1ObjectMeta, V1Pod, V1PodStatus

from . import labels
from .cluster import Client, ClientProvider
from .errors import (
    ContextMismatch,
    RecreateTimeout,
    UnexpectedObjectType,
    UnexpectedWatchEvent,
)
from .identifiers import new_disk_cid, parse_disk_cid, parse_vm_cid
from .resources import AGENT_CONTAINER, add_disk_volume, remove_disk_volume
from .settings import SETTINGS_KEY, add_persistent_disk, decode, encode, remove_persistent_disk

logger = logging.getLogger(__name__)

AGENT_PORT = 2825
PROBE_INTERVAL = 1.0
POD_RUNNING = "Running"
MODIFIED = "MODIFIED"

_END_OF_STREAM = object()


class Operation(str, Enum):
    ATTACH = "attach"
    DETACH = "detach"


def is_agent_container_running(pod: V1Pod) -> bool:
    """True once the pod is Running and its agent container is ready with a running state."""
    status = pod.status
    if status is None or status.phase != POD_RUNNING:
        return False

    for container_status in status.container_statuses or []:
        if container_status.name == AGENT_CONTAINER:
            state = container_status.state
            return bool(container_status.ready) and state is not None and state.running is not None
    return False


def _pump(pod_watch, events: "queue.Queue") -> None:
    """Feed watch events into *events*; runs on a daemon thread."""
    try:
        for event in pod_watch:
            events.put(event)
    except Exception as exc:  # noqa: BLE001
        events.put(exc)
    else:
        events.put(_END_OF_STREAM)


class VolumeManager:
    def __init__(
        self,
        client_provider: ClientProvider,
        pod_ready_timeout: float = 300.0,
        post_recreate_delay: float = 0.0,
        agent_probe: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client_provider = client_provider
        self.pod_ready_timeout = pod_ready_timeout
        self.post_recreate_delay = post_recreate_delay
        self.agent_probe = agent_probe
        self.clock = clock
        self.sleep = sleep

    def attach_disk(self, vm_cid: str, disk_cid: str) -> None:
        self._change_disk(Operation.ATTACH, vm_cid, disk_cid)

    def detach_disk(self, vm_cid: str, disk_cid: str) -> None:
        self._change_disk(Operation.DETACH, vm_cid, disk_cid)

    def _change_disk(self, op: Operation, vm_cid: str, disk_cid: str) -> None:
        vm_context, agent_id = parse_vm_cid(vm_cid)
        context, disk_id = parse_disk_cid(disk_cid)
        if context != vm_context:
            raise ContextMismatch(
                f"Kubernetes disk and resource pool contexts must be the same: "
                f"disk: {context!r}, resource pool: {vm_context!r}"
            )

        client = self.client_provider.new(context)
        logger.info("Starting %s of disk %s on agent %s", op.value, disk_id, agent_id)
        self._recreate_pod(client, op, agent_id, disk_id)
        logger.info("Finished %s of disk %s on agent %s", op.value, disk_id, agent_id)

    # ------------------------------------------------------------------
    # Recreate sequence
    # ------------------------------------------------------------------

    def _recreate_pod(self, client: Client, op: Operation, agent_id: str, disk_id: str) -> None:
        name = labels.agent_object_name(agent_id)
        pod = client.core.read_namespaced_pod(name, client.namespace)

        self._update_settings(client, op, agent_id, disk_id)

        if op is Operation.ATTACH:
            add_disk_volume(pod.spec, disk_id)
        else:
            remove_disk_volume(pod.spec, disk_id)

        annotations = dict(pod.metadata.annotations or {})
        if not annotations.get(labels.IP_ADDRESS_ANNOTATION):
            annotations[labels.IP_ADDRESS_ANNOTATION] = (pod.status.pod_ip if pod.status else None) or ""

        pod.metadata = V1ObjectMeta(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            annotations=annotations,
            labels=pod.metadata.labels,
        )
        pod.status = V1PodStatus()

        client.core.delete_namespaced_pod(name, client.namespace, grace_period_seconds=0)
        logger.info("Deleted pod '%s' for recreate", name)
        created = client.core.create_namespaced_pod(client.namespace, pod)
        logger.info("Recreated pod '%s', waiting up to %ss for it to be ready", name, self.pod_ready_timeout)

        self._wait_for_pod(client, agent_id, created.metadata.resource_version)
        self._post_recreate_delay(client, name)

    def _update_settings(self, client: Client, op: Operation, agent_id: str, disk_id: str) -> None:
        name = labels.agent_object_name(agent_id)
        config_map = client.core.read_namespaced_config_map(name, client.namespace)

        settings = decode((config_map.data or {}).get(SETTINGS_KEY))
        disk_cid = new_disk_cid(client.context, disk_id)
        if op is Operation.ATTACH:
            add_persistent_disk(settings, disk_cid, labels.disk_mount_path(disk_id))
        else:
            remove_persistent_disk(settings, disk_cid)

        config_map.data = dict(config_map.data or {})
        config_map.data[SETTINGS_KEY] = encode(settings)
        client.core.replace_namespaced_config_map(name, client.namespace, config_map)
        logger.debug("Updated persistent disk map in config map '%s'", name)

    # ------------------------------------------------------------------
    # Readiness wait
    # ------------------------------------------------------------------

    def _wait_for_pod(self, client: Client, agent_id: str, resource_version: Optional[str]) -> None:
        """Block until the agent container is ready or ``pod_ready_timeout`` elapses.

        The watch is read on a helper thread; this thread waits on the event
        queue with the remaining time as its timeout, so whichever comes first
        (a ready pod or the deadline) wins.  The watch is stopped on every exit.
        """
        pod_watch = client.watch_pods(
            labels.agent_selector(agent_id),
            resource_version,
            timeout_seconds=max(1, math.ceil(self.pod_ready_timeout)),
        )
        events: "queue.Queue" = queue.Queue()
        reader = threading.Thread(target=_pump, args=(pod_watch, events), name=f"watch-{agent_id}", daemon=True)
        deadline = self.clock() + self.pod_ready_timeout

        reader.start()
        try:
            while True:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    break
                try:
                    event = events.get(timeout=remaining)
                except queue.Empty:
                    break

                if isinstance(event, BaseException):
                    raise event
                if event is _END_OF_STREAM:
                    raise UnexpectedWatchEvent(f"pod watch for agent {agent_id} closed before the pod was ready")

                event_type = event.get("type")
                if event_type != MODIFIED:
                    raise UnexpectedWatchEvent(f"Unexpected pod watch event: {event_type}")

                pod = event.get("object")
                if not isinstance(pod, V1Pod):
                    raise UnexpectedObjectType(f"Unexpected object type: {type(pod).__name__}")

                if is_agent_container_running(pod):
                    logger.info("Pod for agent %s is running and ready", agent_id)
                    return
        finally:
            pod_watch.stop()

        logger.error("Pod for agent %s not ready after %ss", agent_id, self.pod_ready_timeout)
        raise RecreateTimeout("Pod recreate failed with a timeout")

    def _post_recreate_delay(self, client: Client, name: str) -> None:
        """Give the agent time to start; with probing enabled, return as soon as it answers."""
        if self.post_recreate_delay <= 0:
            return
        if not self.agent_probe:
            self.sleep(self.post_recreate_delay)
            return

        deadline = self.clock() + self.post_recreate_delay
        try:
            pod = client.core.read_namespaced_pod(name, client.namespace)
        except ApiException as exc:
            logger.warning("Cannot read pod '%s' to reach the agent: %s %s", name, exc.status, exc.reason)
            self.sleep(self.post_recreate_delay)
            return
        pod_ip = pod.status.pod_ip if pod.status else None
        if not pod_ip:
            logger.warning("Pod '%s' has no IP yet, sleeping out the post-recreate delay", name)
            self.sleep(self.post_recreate_delay)
            return

        url = f"http://{pod_ip}:{AGENT_PORT}"
        with httpx.Client(timeout=PROBE_INTERVAL) as http:
            while True:
                try:
                    http.get(url)
                    logger.info("Agent in pod '%s' is answering on %s", name, url)
                    return
                except httpx.TransportError as exc:
                    logger.debug("Agent in pod '%s' not answering yet: %s", name, exc)

                remaining = deadline - self.clock()
                if remaining <= 0:
                    logger.warning("Agent in pod '%s' did not answer within %ss", name, self.post_recreate_delay)
                    return
                self.sleep(min(PROBE_INTERVAL, remaining))
