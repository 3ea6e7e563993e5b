"""
resources.py
------------
Pure translation of cloud properties into Kubernetes object specs.  Nothing
here talks to the cluster; every function returns ``kubernetes.client``
models ready to be handed to ``CoreV1Api``.

Pod layout (volume order matters to readers of ``get_disks``):
    1. ``bosh-config``  – settings config map, read-only file mount
    2. ``var-vcap``     – ephemeral claim mounted at /var/vcap
    3. ``disk-<id>``    – persistent disks, spliced in by attach/detach
"""
from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Tuple

from kubernetes.client import (
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1KeyToPath,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimVolumeSource,
    V1Pod,
    V1PodSpec,
    V1ResourceRequirements,
    V1SecurityContext,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
    V1VolumeResourceRequirements,
)
from kubernetes.utils import parse_quantity

from . import labels
from .errors import InvalidQuantity, MissingNetwork, UnsupportedResourceKind, UnsupportedTopology
from .properties import Network, Resources, Service
from .settings import SETTINGS_FILE, SETTINGS_KEY

# ---------------------------------------------------------------------------
# Constants -----------------------------------------------------------------
# ---------------------------------------------------------------------------
AGENT_CONTAINER = "bosh-job"
AGENT_COMMAND = ["/usr/sbin/runsvdir-start"]
SETTINGS_VOLUME = "bosh-config"
SETTINGS_MOUNT_PATH = "/var/vcap/bosh/" + SETTINGS_FILE
VAR_VCAP_VOLUME = "var-vcap"
VAR_VCAP_MOUNT_PATH = "/var/vcap"
VAR_VCAP_SUB_PATH = "vcap"
READ_WRITE_ONCE = "ReadWriteOnce"
SUPPORTED_RESOURCES = ("cpu", "memory")

# ---------------------------------------------------------------------------
# Network -------------------------------------------------------------------
# ---------------------------------------------------------------------------

def get_network(networks: Mapping[str, Network]) -> Tuple[str, Network]:
    """Return the single ``(name, network)`` pair; multi-network VMs are not supported."""
    if not networks:
        raise MissingNetwork("a network is required")
    if len(networks) > 1:
        raise UnsupportedTopology("multiple networks not supported")
    return next(iter(networks.items()))


def pod_annotations(network: Network) -> Dict[str, str]:
    if network.ip:
        return {labels.IP_ADDRESS_ANNOTATION: network.ip}
    return {}

# ---------------------------------------------------------------------------
# Resource requirements -----------------------------------------------------
# ---------------------------------------------------------------------------

def _resource_list(resource_list: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if resource_list is None:
        return None

    result = {}
    for kind, quantity in resource_list.items():
        if kind not in SUPPORTED_RESOURCES:
            raise UnsupportedResourceKind(f"{kind} is not a supported resource type")
        try:
            parse_quantity(quantity)
        except ValueError as exc:
            raise InvalidQuantity(f"invalid quantity {quantity!r} for {kind}: {exc}") from exc
        result[kind] = quantity
    return result


def resource_requirements(resources: Resources) -> V1ResourceRequirements:
    """Translate limits/requests into container resource requirements."""
    return V1ResourceRequirements(
        limits=_resource_list(resources.limits),
        requests=_resource_list(resources.requests),
    )

# ---------------------------------------------------------------------------
# Object builders -----------------------------------------------------------
# ---------------------------------------------------------------------------

def build_config_map(namespace: str, agent_id: str, encoded_settings: str) -> V1ConfigMap:
    return V1ConfigMap(
        metadata=V1ObjectMeta(
            name=labels.agent_object_name(agent_id),
            namespace=namespace,
            labels={labels.AGENT_ID_LABEL: agent_id},
        ),
        data={SETTINGS_KEY: encoded_settings},
    )


def build_claim(namespace: str, name: str, size: str, label: str, label_value: str) -> V1PersistentVolumeClaim:
    """A single-writer claim of *size* labeled ``label=label_value``."""
    return V1PersistentVolumeClaim(
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels={label: label_value}),
        spec=V1PersistentVolumeClaimSpec(
            access_modes=[READ_WRITE_ONCE],
            resources=V1VolumeResourceRequirements(requests={"storage": size}),
        ),
    )


def build_disk_claim(namespace: str, disk_id: str, size_mb: int) -> V1PersistentVolumeClaim:
    return build_claim(
        namespace, labels.disk_claim_name(disk_id), f"{size_mb}Mi", labels.DISK_ID_LABEL, disk_id
    )


def build_var_vcap_claim(namespace: str, agent_id: str, size: str) -> V1PersistentVolumeClaim:
    return build_claim(
        namespace, labels.var_vcap_claim_name(agent_id), size, labels.VAR_VCAP_ID_LABEL, agent_id
    )


def build_services(namespace: str, agent_id: str, services: List[Service]) -> List[V1Service]:
    """One service per cloud-property entry, all selecting the VM's pod by agent label."""
    result = []
    for svc in services:
        service_type = "NodePort" if svc.type == "NodePort" else "ClusterIP"
        ports = [
            V1ServicePort(
                name=port.name or None,
                protocol=port.protocol or None,
                port=port.port,
                node_port=port.node_port or None,
            )
            for port in svc.ports
        ]
        result.append(
            V1Service(
                metadata=V1ObjectMeta(
                    name=svc.name,
                    namespace=namespace,
                    labels={labels.AGENT_ID_LABEL: agent_id},
                ),
                spec=V1ServiceSpec(
                    type=service_type,
                    cluster_ip=svc.cluster_ip or None,
                    ports=ports or None,
                    selector={labels.AGENT_ID_LABEL: agent_id},
                ),
            )
        )
    return result


def build_pod(
    namespace: str,
    agent_id: str,
    image: str,
    network: Network,
    resources: Resources,
) -> V1Pod:
    """The VM's pod: one privileged agent container plus the settings and /var/vcap volumes."""
    name = labels.agent_object_name(agent_id)
    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations=pod_annotations(network),
            labels={labels.AGENT_ID_LABEL: agent_id},
        ),
        spec=V1PodSpec(
            hostname=agent_id,
            containers=[
                V1Container(
                    name=AGENT_CONTAINER,
                    image=image,
                    image_pull_policy="Always",
                    command=list(AGENT_COMMAND),
                    args=[],
                    resources=resource_requirements(resources),
                    security_context=V1SecurityContext(privileged=True, run_as_user=0),
                    volume_mounts=[
                        V1VolumeMount(
                            name=SETTINGS_VOLUME,
                            mount_path=SETTINGS_MOUNT_PATH,
                            sub_path=SETTINGS_FILE,
                            read_only=True,
                        ),
                        V1VolumeMount(
                            name=VAR_VCAP_VOLUME,
                            mount_path=VAR_VCAP_MOUNT_PATH,
                            sub_path=VAR_VCAP_SUB_PATH,
                        ),
                    ],
                )
            ],
            volumes=[
                V1Volume(
                    name=SETTINGS_VOLUME,
                    config_map=V1ConfigMapVolumeSource(
                        name=name,
                        items=[V1KeyToPath(key=SETTINGS_KEY, path=SETTINGS_FILE)],
                    ),
                ),
                V1Volume(
                    name=VAR_VCAP_VOLUME,
                    persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                        claim_name=labels.var_vcap_claim_name(agent_id),
                    ),
                ),
            ],
        ),
    )

# ---------------------------------------------------------------------------
# Persistent-disk splicing --------------------------------------------------
# ---------------------------------------------------------------------------

def _agent_container(spec: V1PodSpec) -> Optional[V1Container]:
    for container in spec.containers or []:
        if container.name == AGENT_CONTAINER:
            return container
    return None


def add_disk_volume(spec: V1PodSpec, disk_id: str) -> None:
    """Append the disk's claim volume and mount it on the agent container.

    Entries already present by name are left alone, so repeating an attach
    after a timed-out recreate does not duplicate them.
    """
    volume_name = labels.disk_claim_name(disk_id)
    if not any(v.name == volume_name for v in spec.volumes or []):
        spec.volumes = list(spec.volumes or []) + [
            V1Volume(
                name=volume_name,
                persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(claim_name=volume_name),
            )
        ]
    container = _agent_container(spec)
    if container is not None and not any(m.name == volume_name for m in container.volume_mounts or []):
        container.volume_mounts = list(container.volume_mounts or []) + [
            V1VolumeMount(name=volume_name, mount_path=labels.disk_mount_path(disk_id))
        ]


def remove_disk_volume(spec: V1PodSpec, disk_id: str) -> None:
    """Drop the disk's volume and mount by name; absent entries are left alone."""
    volume_name = labels.disk_claim_name(disk_id)
    if spec.volumes:
        spec.volumes = [v for v in spec.volumes if v.name != volume_name]
    container = _agent_container(spec)
    if container is not None and container.volume_mounts:
        container.volume_mounts = [m for m in container.volume_mounts if m.name != volume_name]
