"""
disks.py
--------
Disk lifecycle: a disk is nothing more than a PersistentVolumeClaim named
``disk-<id>`` and labeled with its disk ID.  Attaching turns the claim into a
pod volume (see ``volumes.py``); everything here works on claims alone.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from kubernetes.client import ApiException, V1PersistentVolumeClaim

from . import labels
from .cluster import Client, ClientProvider
from .identifiers import create_guid, new_disk_cid, parse_disk_cid, parse_vm_cid
from .properties import DiskCloudProperties
from .resources import build_disk_claim

logger = logging.getLogger(__name__)

CLAIM_BOUND = "Bound"


def wait_for_claim_bound(
    client: Client,
    name: str,
    interval: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> V1PersistentVolumeClaim:
    """Poll claim *name* until its phase is Bound.

    There is no deadline: the call blocks until the storage
    provisioner binds the claim or the API returns an error.
    """
    claim = client.core.read_namespaced_persistent_volume_claim(name, client.namespace)
    while (claim.status.phase if claim.status else None) != CLAIM_BOUND:
        logger.debug("Claim '%s' is %s, waiting %ss", name, claim.status and claim.status.phase, interval)
        sleep(interval)
        claim = client.core.read_namespaced_persistent_volume_claim(name, client.namespace)
    logger.info("Claim '%s' is bound", name)
    return claim


class DiskCreator:
    """Creates a sized claim and waits for it to bind."""

    def __init__(
        self,
        client_provider: ClientProvider,
        guid_generator: Callable[[], str] = create_guid,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client_provider = client_provider
        self.guid_generator = guid_generator
        self.poll_interval = poll_interval
        self.sleep = sleep

    def create_disk(self, size: int, cloud_props: DiskCloudProperties, vm_cid: Optional[str] = None) -> str:
        disk_id = self.guid_generator()
        client = self.client_provider.new(cloud_props.context)

        claim = build_disk_claim(client.namespace, disk_id, size)
        client.core.create_namespaced_persistent_volume_claim(client.namespace, claim)
        logger.info("Created claim '%s' (%sMi) in %s", claim.metadata.name, size, client.namespace)

        wait_for_claim_bound(client, claim.metadata.name, self.poll_interval, self.sleep)
        return new_disk_cid(client.context, disk_id)


class DiskDeleter:
    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def delete_disk(self, disk_cid: str) -> None:
        context, disk_id = parse_disk_cid(disk_cid)
        client = self.client_provider.new(context)
        name = labels.disk_claim_name(disk_id)
        try:
            client.core.delete_namespaced_persistent_volume_claim(name, client.namespace, grace_period_seconds=0)
            logger.info("Deleted claim '%s'", name)
        except ApiException as exc:
            if exc.status != 404:
                raise
            logger.info("Claim '%s' already deleted or not found.", name)


class DiskFinder:
    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def has_disk(self, disk_cid: str) -> bool:
        context, disk_id = parse_disk_cid(disk_cid)
        client = self.client_provider.new(context)
        return len(labels.find_disk_claims(client, disk_id)) > 0


class DiskGetter:
    """Lists the disks wired into a VM's pod."""

    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def get_disks(self, vm_cid: str) -> List[str]:
        context, agent_id = parse_vm_cid(vm_cid)
        client = self.client_provider.new(context)

        try:
            pod = client.core.read_namespaced_pod(labels.agent_object_name(agent_id), client.namespace)
        except ApiException as exc:
            if exc.status == 404:
                return []
            raise

        disk_cids = []
        for volume in pod.spec.volumes or []:
            source = volume.persistent_volume_claim
            if source is None:
                continue
            try:
                claim = client.core.read_namespaced_persistent_volume_claim(source.claim_name, client.namespace)
            except ApiException as exc:
                if exc.status != 404:
                    raise
                logger.debug("Claim '%s' referenced by pod is gone", source.claim_name)
                continue

            disk_id = (claim.metadata.labels or {}).get(labels.DISK_ID_LABEL)
            if disk_id:
                disk_cids.append(new_disk_cid(context, disk_id))
        return disk_cids
