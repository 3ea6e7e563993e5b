"""Composite ``context:id`` identifiers for VMs and disks."""
from __future__ import annotations

import uuid
from typing import Tuple

from .errors import MalformedIdentifier

SEPARATOR = ":"


def _join(context: str, local_id: str) -> str:
    return f"{context}{SEPARATOR}{local_id}"


def _split(cid: str, kind: str) -> Tuple[str, str]:
    context, sep, local_id = str(cid).partition(SEPARATOR)
    if not sep:
        raise MalformedIdentifier(f"{kind} CID {cid!r} is not of the form 'context:id'")
    return context, local_id


def new_vm_cid(context: str, agent_id: str) -> str:
    return _join(context, agent_id)


def parse_vm_cid(vm_cid: str) -> Tuple[str, str]:
    """Return ``(context, agent_id)`` for *vm_cid*."""
    return _split(vm_cid, "VM")


def new_disk_cid(context: str, disk_id: str) -> str:
    return _join(context, disk_id)


def parse_disk_cid(disk_cid: str) -> Tuple[str, str]:
    """Return ``(context, disk_id)`` for *disk_cid*."""
    return _split(disk_cid, "disk")


def create_guid() -> str:
    return str(uuid.uuid4())
