"""
labels.py
---------
Label taxonomy, deterministic object names and the label-selector queries the
lifecycle code relies on.  Every object this CPI creates carries exactly one
identity label; existence checks and cascading deletes are expressed as
exact-match selectors over those labels, never as name patterns.
"""
from __future__ import annotations

import logging
import re
from typing import List

from kubernetes.client import ApiException, V1PersistentVolumeClaim, V1Pod

from .errors import MalformedIdentifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants -----------------------------------------------------------------
# ---------------------------------------------------------------------------
LABEL_PREFIX = "bosh.cloudfoundry.org/"
AGENT_ID_LABEL = LABEL_PREFIX + "agent-id"
DISK_ID_LABEL = LABEL_PREFIX + "disk-id"
VAR_VCAP_ID_LABEL = LABEL_PREFIX + "var-vcap-id"
IP_ADDRESS_ANNOTATION = LABEL_PREFIX + "ip-address"

_NAME_MAX = 63
_PREFIX_MAX = 253
_NAME_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_DNS_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

# ---------------------------------------------------------------------------
# Object names --------------------------------------------------------------
# ---------------------------------------------------------------------------

def agent_object_name(agent_id: str) -> str:
    """Name shared by the pod and the settings config map of one VM."""
    return "agent-" + agent_id


def disk_claim_name(disk_id: str) -> str:
    return "disk-" + disk_id


def var_vcap_claim_name(agent_id: str) -> str:
    return "var-vcap-" + agent_id


def disk_mount_path(disk_id: str) -> str:
    return "/mnt/" + disk_id

# ---------------------------------------------------------------------------
# Selectors & validation -----------------------------------------------------
# ---------------------------------------------------------------------------

def selector(label: str, value: str) -> str:
    """Exact-match selector string for *label* = *value*."""
    if not is_valid_label_value(value):
        raise MalformedIdentifier(f"{value!r} cannot be used as a value for label {label}")
    return f"{label}={value}"


def agent_selector(agent_id: str) -> str:
    return selector(AGENT_ID_LABEL, agent_id)


def disk_selector(disk_id: str) -> str:
    return selector(DISK_ID_LABEL, disk_id)


def var_vcap_selector(agent_id: str) -> str:
    return selector(VAR_VCAP_ID_LABEL, agent_id)


def is_qualified_name(key: str) -> bool:
    """Mirror of the API server's rule for label keys: ``[prefix/]name``."""
    prefix, sep, name = key.rpartition("/")
    if sep:
        if not prefix or len(prefix) > _PREFIX_MAX or not _DNS_SUBDOMAIN_RE.match(prefix):
            return False
    if not name or len(name) > _NAME_MAX:
        return False
    return bool(_NAME_RE.match(name))


def is_valid_label_value(value: str) -> bool:
    if value == "":
        return True
    return len(value) <= _NAME_MAX and bool(_NAME_RE.match(value))

# ---------------------------------------------------------------------------
# Lookups -------------------------------------------------------------------
# ---------------------------------------------------------------------------

def find_pods(client, agent_id: str) -> List[V1Pod]:
    """Return the pods labeled with *agent_id* (normally zero or one)."""
    pods = client.core.list_namespaced_pod(client.namespace, label_selector=agent_selector(agent_id))
    return list(pods.items or [])


def find_disk_claims(client, disk_id: str) -> List[V1PersistentVolumeClaim]:
    claims = client.core.list_namespaced_persistent_volume_claim(
        client.namespace, label_selector=disk_selector(disk_id)
    )
    return list(claims.items or [])


def delete_services(client, agent_id: str) -> None:
    """Delete every service selected by the agent label; stop on the first failure."""
    services = client.core.list_namespaced_service(client.namespace, label_selector=agent_selector(agent_id))
    for service in services.items or []:
        name = service.metadata.name
        client.core.delete_namespaced_service(name, client.namespace, grace_period_seconds=0)
        logger.info("Deleted service '%s' for agent %s", name, agent_id)


def delete_var_vcap_claims(client, agent_id: str) -> None:
    claims = client.core.list_namespaced_persistent_volume_claim(
        client.namespace, label_selector=var_vcap_selector(agent_id)
    )
    for claim in claims.items or []:
        name = claim.metadata.name
        try:
            client.core.delete_namespaced_persistent_volume_claim(name, client.namespace, grace_period_seconds=0)
            logger.info("Deleted ephemeral claim '%s' for agent %s", name, agent_id)
        except ApiException as exc:
            if exc.status != 404:
                raise
            logger.debug("Ephemeral claim '%s' already gone", name)
