"""
dispatch.py
-----------
Director command surface.  A request is a JSON object::

    {"method": "create_vm", "arguments": [...], "context": {"director_uuid": "..."}}

and every request gets exactly one response::

    {"result": <value or null>, "error": null | {"type", "message", "ok_to_retry"}, "log": ""}

The dispatcher owns no state beyond the action objects it wires together from
the CPI configuration and the injected client provider.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from kubernetes.client import ApiException

from . import stemcell
from .cluster import ClientProvider
from .config import CPIConfig
from .disks import DiskCreator, DiskDeleter, DiskFinder, DiskGetter
from .errors import CLOUD_ERROR, NOT_IMPLEMENTED, CPIError
from .metadata import DiskMetadataSetter, VMMetadataSetter
from .properties import (
    DiskCloudProperties,
    StemcellCloudProperties,
    VMCloudProperties,
    parse,
    parse_networks,
)
from .vms import VMCreator, VMDeleter, VMFinder
from .volumes import VolumeManager

logger = logging.getLogger(__name__)


def _response(result: Any = None, error: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"result": result, "error": error, "log": ""}


def error_response(error_type: str, message: str, ok_to_retry: bool = False) -> Dict[str, Any]:
    return _response(error={"type": error_type, "message": message, "ok_to_retry": ok_to_retry})


class Dispatcher:
    """Routes director verbs to the lifecycle actions."""

    def __init__(self, cfg: CPIConfig, client_provider: ClientProvider) -> None:
        self.vm_creator = VMCreator(
            cfg.agent, client_provider, var_vcap_size=cfg.var_vcap_size, poll_interval=cfg.claim_poll_interval
        )
        self.vm_deleter = VMDeleter(client_provider)
        self.vm_finder = VMFinder(client_provider)
        self.disk_creator = DiskCreator(client_provider, poll_interval=cfg.claim_poll_interval)
        self.disk_deleter = DiskDeleter(client_provider)
        self.disk_finder = DiskFinder(client_provider)
        self.disk_getter = DiskGetter(client_provider)
        self.volume_manager = VolumeManager(
            client_provider,
            pod_ready_timeout=cfg.pod_ready_timeout,
            post_recreate_delay=cfg.post_recreate_delay,
            agent_probe=cfg.agent_probe,
        )
        self.vm_metadata = VMMetadataSetter(client_provider)
        self.disk_metadata = DiskMetadataSetter(client_provider)

        self.methods: Dict[str, Callable[..., Any]] = {
            "info": stemcell.info,
            "create_stemcell": self.create_stemcell,
            "delete_stemcell": stemcell.delete_stemcell,
            "create_vm": self.create_vm,
            "delete_vm": self.vm_deleter.delete,
            "has_vm": self.vm_finder.has_vm,
            "create_disk": self.create_disk,
            "delete_disk": self.disk_deleter.delete_disk,
            "attach_disk": self.volume_manager.attach_disk,
            "detach_disk": self.volume_manager.detach_disk,
            "has_disk": self.disk_finder.has_disk,
            "get_disks": self.disk_getter.get_disks,
            "set_vm_metadata": self.vm_metadata.set_vm_metadata,
            "set_disk_metadata": self.disk_metadata.set_disk_metadata,
        }

    # --- argument adapters ---

    def create_stemcell(self, image_path: str, cloud_properties: Dict[str, Any]) -> str:
        return stemcell.create_stemcell(image_path, parse(StemcellCloudProperties, cloud_properties))

    def create_vm(
        self,
        agent_id: str,
        stemcell_cid: str,
        cloud_properties: Dict[str, Any],
        networks: Dict[str, Any],
        disk_cids: Optional[List[str]] = None,
        env: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self.vm_creator.create(
            agent_id,
            stemcell_cid,
            parse(VMCloudProperties, cloud_properties),
            parse_networks(networks),
            disk_cids,
            env,
        )

    def create_disk(self, size: int, cloud_properties: Dict[str, Any], vm_cid: Optional[str] = None) -> str:
        return self.disk_creator.create_disk(int(size), parse(DiskCloudProperties, cloud_properties), vm_cid)

    # --- entrypoint ---

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Run one request and return its response; never raises."""
        method = request.get("method")
        arguments = request.get("arguments") or []

        handler = self.methods.get(method)
        if handler is None:
            logger.warning("Unsupported method %r", method)
            return error_response(NOT_IMPLEMENTED, f"method {method!r} is not implemented")

        logger.info("Handling %s", method)
        try:
            result = handler(*arguments)
        except CPIError as exc:
            logger.error("%s failed: %s", method, exc)
            return error_response(exc.error_type, str(exc), exc.ok_to_retry)
        except ApiException as exc:
            logger.error("%s failed with Kubernetes API error: %s %s", method, exc.status, exc.reason)
            return error_response(CLOUD_ERROR, f"Kubernetes API error: {exc.status} {exc.reason}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error handling %s", method)
            return error_response(CLOUD_ERROR, str(exc) or type(exc).__name__)

        return _response(result)
