"""
vms.py
------
VM lifecycle.  A VM is a pod named ``agent-<agentID>`` plus:

* a config map of the same name carrying the agent settings document,
* a ``var-vcap-<agentID>`` claim backing /var/vcap,
* zero or more services selecting the pod by its agent label.

Creation is a straight sequence with no rollback; a half-created VM is
cleaned up by a later ``delete_vm``, whose steps each tolerate the object
already being gone.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes.client import ApiException, V1Namespace, V1ObjectMeta, V1Pod

from . import labels
from .cluster import ClientProvider
from .config import DEFAULT_VAR_VCAP_SIZE, AgentConfig
from .disks import wait_for_claim_bound
from .identifiers import new_vm_cid, parse_vm_cid
from .properties import Network, VMCloudProperties
from .resources import (
    build_config_map,
    build_pod,
    build_services,
    build_var_vcap_claim,
    get_network,
)
from .settings import encode, instance_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers -------------------------------------------------------------------
# ---------------------------------------------------------------------------

def ensure_namespace(client) -> None:
    """Create the client's namespace unless it already exists."""
    try:
        client.core.read_namespace(client.namespace)
        return
    except ApiException as exc:
        if exc.status != 404:
            raise

    try:
        client.core.create_namespace(V1Namespace(metadata=V1ObjectMeta(name=client.namespace)))
        logger.info("Created namespace '%s'", client.namespace)
    except ApiException as exc:
        if exc.status != 409:
            raise
        logger.debug("Namespace '%s' already present", client.namespace)


def _delete_ignoring_missing(delete: Callable[..., Any], name: str, namespace: str, what: str) -> None:
    try:
        delete(name, namespace, grace_period_seconds=0)
        logger.info("Successfully initiated deletion for %s '%s'.", what, name)
    except ApiException as exc:
        if exc.status not in (404, 410):
            logger.error("Failed to delete %s '%s': %s %s", what, name, exc.status, exc.reason)
            raise
        logger.info("%s '%s' already deleted or not found.", what.capitalize(), name)

# ---------------------------------------------------------------------------
# Actions -------------------------------------------------------------------
# ---------------------------------------------------------------------------

class VMCreator:
    def __init__(
        self,
        agent_config: AgentConfig,
        client_provider: ClientProvider,
        var_vcap_size: str = DEFAULT_VAR_VCAP_SIZE,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.agent_config = agent_config
        self.client_provider = client_provider
        self.var_vcap_size = var_vcap_size
        self.poll_interval = poll_interval
        self.sleep = sleep

    def create(
        self,
        agent_id: str,
        stemcell_cid: str,
        cloud_props: VMCloudProperties,
        networks: Dict[str, Network],
        disk_cids: Optional[List[str]] = None,
        env: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create the VM's objects in order and return its CID."""
        _, network = get_network(networks)

        client = self.client_provider.new(cloud_props.context)
        ensure_namespace(client)
        ns = client.namespace

        settings = instance_settings(self.agent_config, agent_id, networks, env)
        client.core.create_namespaced_config_map(ns, build_config_map(ns, agent_id, encode(settings)))
        logger.info("Created settings config map for agent %s", agent_id)

        for service in build_services(ns, agent_id, cloud_props.services):
            client.core.create_namespaced_service(ns, service)
            logger.info("Created service '%s' for agent %s", service.metadata.name, agent_id)

        claim = build_var_vcap_claim(ns, agent_id, self.var_vcap_size)
        client.core.create_namespaced_persistent_volume_claim(ns, claim)
        wait_for_claim_bound(client, claim.metadata.name, self.poll_interval, self.sleep)

        pod = build_pod(ns, agent_id, stemcell_cid, network, cloud_props.resources)
        client.core.create_namespaced_pod(ns, pod)
        logger.info("Created pod '%s' in %s from stemcell %s", pod.metadata.name, ns, stemcell_cid)

        return new_vm_cid(client.context, agent_id)


class VMDeleter:
    """Tears a VM down: pod, services, settings, then the /var/vcap claim."""

    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def delete(self, vm_cid: str) -> None:
        context, agent_id = parse_vm_cid(vm_cid)
        client = self.client_provider.new(context)
        name = labels.agent_object_name(agent_id)

        _delete_ignoring_missing(client.core.delete_namespaced_pod, name, client.namespace, "pod")
        labels.delete_services(client, agent_id)
        _delete_ignoring_missing(client.core.delete_namespaced_config_map, name, client.namespace, "config map")
        labels.delete_var_vcap_claims(client, agent_id)


class VMFinder:
    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def has_vm(self, vm_cid: str) -> bool:
        _, pod = self.find_vm(vm_cid)
        return pod is not None

    def find_vm(self, vm_cid: str) -> Tuple[Optional[str], Optional[V1Pod]]:
        """Return ``(context, pod)`` for the VM, or ``(None, None)`` if no pod carries its label."""
        context, agent_id = parse_vm_cid(vm_cid)
        client = self.client_provider.new(context)
        pods = labels.find_pods(client, agent_id)
        if pods:
            return context, pods[0]
        return None, None
