"""
settings.py
-----------
The agent settings document.  It lives as compact JSON under the
``instance_settings`` key of the VM's config map and is projected into the
pod as ``/var/vcap/bosh/instance_settings.json``.

Documents are handled as plain dicts so that attach/detach rewrites leave
every key (including ones this package does not know about) in place and in
order; only ``disks.persistent`` is ever mutated after creation.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

from .config import AgentConfig
from .errors import CorruptSettings
from .properties import Network

SETTINGS_KEY = "instance_settings"
SETTINGS_FILE = "instance_settings.json"


def instance_settings(
    agent: AgentConfig,
    agent_id: str,
    networks: Mapping[str, Network],
    env: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the settings document for a new VM with an empty persistent-disk map."""
    agent_networks = {}
    for name, network in networks.items():
        agent_network = network.model_dump(exclude_none=True)
        agent_network["preconfigured"] = True
        agent_networks[name] = agent_network

    return {
        "agent_id": agent_id,
        "blobstore": agent.blobstore,
        "disks": {"persistent": {}},
        "env": env or {},
        "mbus": agent.mbus,
        "networks": agent_networks,
        "ntp": agent.ntp,
        "vm": {"name": agent_id},
    }


def encode(settings: Mapping[str, Any]) -> str:
    return json.dumps(settings, separators=(",", ":"), ensure_ascii=False)


def decode(raw: Optional[str]) -> Dict[str, Any]:
    if raw is None:
        raise CorruptSettings(f"config map has no {SETTINGS_KEY!r} entry")
    try:
        settings = json.loads(raw)
    except ValueError as exc:
        raise CorruptSettings(f"cannot decode agent settings: {exc}") from exc
    if not isinstance(settings, dict):
        raise CorruptSettings("agent settings must be a JSON object")
    return settings


def _persistent(settings: Dict[str, Any]) -> Dict[str, str]:
    disks = settings.get("disks")
    if not isinstance(disks, dict):
        disks = settings["disks"] = {}
    if disks.get("persistent") is None:
        disks["persistent"] = {}
    return disks["persistent"]


def add_persistent_disk(settings: Dict[str, Any], disk_cid: str, mount_path: str) -> None:
    _persistent(settings)[disk_cid] = mount_path


def remove_persistent_disk(settings: Dict[str, Any], disk_cid: str) -> None:
    _persistent(settings).pop(disk_cid, None)
