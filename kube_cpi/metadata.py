"""
metadata.py
-----------
Best-effort tagging of pods and disk claims with director metadata.

Keys are namespaced under ``bosh.cloudfoundry.org/`` and lowercased; pairs
that would not make a valid label are dropped without complaint.  The change
is sent as a JSON merge patch computed between the object as read and the
object with the new labels.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping

from kubernetes.client import ApiClient

from . import labels
from .cluster import ClientProvider
from .identifiers import parse_disk_cid, parse_vm_cid

logger = logging.getLogger(__name__)

_serializer = ApiClient()


def valid_labels(metadata: Mapping[str, Any]) -> Dict[str, str]:
    """Namespace and lowercase *metadata* keys, keeping only valid label pairs."""
    result = {}
    for key, value in (metadata or {}).items():
        label_key = labels.LABEL_PREFIX + str(key).lower()
        label_value = str(value)
        if labels.is_qualified_name(label_key) and labels.is_valid_label_value(label_value):
            result[label_key] = label_value
        else:
            logger.debug("Skipping metadata %r=%r: not a valid label", key, value)
    return result


def create_merge_patch(old: Any, new: Any) -> Dict[str, Any]:
    """RFC 7386 merge patch turning *old* into *new* (both JSON objects)."""
    patch: Dict[str, Any] = {}
    for key in old.keys() - new.keys():
        patch[key] = None
    for key, value in new.items():
        if key not in old:
            patch[key] = value
        elif isinstance(value, dict) and isinstance(old[key], dict):
            nested = create_merge_patch(old[key], value)
            if nested:
                patch[key] = nested
        elif value != old[key]:
            patch[key] = value
    return patch


def label_patch(obj: Any, metadata: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge patch adding the valid subset of *metadata* to *obj*'s labels."""
    old = _serializer.sanitize_for_serialization(obj)
    new = copy.deepcopy(old)
    meta = new.setdefault("metadata", {})
    meta["labels"] = {**(meta.get("labels") or {}), **valid_labels(metadata)}
    return create_merge_patch(old, new)


class VMMetadataSetter:
    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def set_vm_metadata(self, vm_cid: str, metadata: Mapping[str, Any]) -> None:
        context, agent_id = parse_vm_cid(vm_cid)
        client = self.client_provider.new(context)

        pod = client.core.read_namespaced_pod(labels.agent_object_name(agent_id), client.namespace)
        patch = label_patch(pod, metadata)
        client.core.patch_namespaced_pod(pod.metadata.name, client.namespace, patch)
        logger.info("Patched pod '%s' labels: %s", pod.metadata.name, sorted((patch.get("metadata") or {}).get("labels", {})))


class DiskMetadataSetter:
    def __init__(self, client_provider: ClientProvider) -> None:
        self.client_provider = client_provider

    def set_disk_metadata(self, disk_cid: str, metadata: Mapping[str, Any]) -> None:
        context, disk_id = parse_disk_cid(disk_cid)
        client = self.client_provider.new(context)

        claim = client.core.read_namespaced_persistent_volume_claim(labels.disk_claim_name(disk_id), client.namespace)
        patch = label_patch(claim, metadata)
        client.core.patch_namespaced_persistent_volume_claim(claim.metadata.name, client.namespace, patch)
        logger.info("Patched claim '%s' labels", claim.metadata.name)
