"""Director-supplied cloud properties and network definitions."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidCloudProperties

# --- Resources & services ---

class Port(BaseModel):
    """A single port exposed by a VM service."""

    name: str = ""
    node_port: int = 0
    port: int
    protocol: str = "TCP"


class Service(BaseModel):
    """Service fronting a VM; ``NodePort`` exposes it on the nodes, anything else stays in-cluster."""

    name: str
    type: str = "ClusterIP"
    cluster_ip: str = ""
    ports: List[Port] = Field(default_factory=list)


class Resources(BaseModel):
    """Open maps of resource kind (``cpu``/``memory``) to quantity strings."""

    limits: Optional[Dict[str, str]] = None
    requests: Optional[Dict[str, str]] = None


# --- Cloud properties per verb ---

class VMCloudProperties(BaseModel):
    """Cloud properties for ``create_vm``."""

    context: str = ""
    services: List[Service] = Field(default_factory=list)
    resources: Resources = Field(default_factory=Resources)


class DiskCloudProperties(BaseModel):
    """Cloud properties for ``create_disk``."""

    context: str = ""


class StemcellCloudProperties(BaseModel):
    """Cloud properties for ``create_stemcell``; the image reference is the stemcell CID."""

    image: str


class Network(BaseModel):
    """One entry of the director's network map."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    ip: Optional[str] = None
    netmask: Optional[str] = None
    gateway: Optional[str] = None
    dns: Optional[List[str]] = None
    default: Optional[List[str]] = None
    mac: Optional[str] = None
    cloud_properties: Dict[str, Any] = Field(default_factory=dict)


def parse(model: type[BaseModel], raw: Any) -> Any:
    """Validate *raw* into *model*, converting pydantic errors into ``InvalidCloudProperties``."""
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        raise InvalidCloudProperties(f"invalid {model.__name__}: {exc}") from exc


def parse_networks(raw: Optional[Dict[str, Any]]) -> Dict[str, Network]:
    return {name: parse(Network, spec) for name, spec in (raw or {}).items()}
