"""
config.py
---------
CPI configuration: which kubeconfig to use, the static agent settings
(blobstore, message bus, NTP) copied into every VM, and the timing knobs of
the attach/detach protocol.  The file is YAML (JSON is accepted too, being a
YAML subset).  Environment variables from a local ``.env`` are honoured.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CPI_CONFIG"
DEFAULT_VAR_VCAP_SIZE = "3Gi"


class AgentConfig(BaseModel):
    """Settings handed verbatim to every agent."""

    blobstore: Dict[str, Any] = Field(default_factory=dict)
    mbus: str = Field(..., description="Message bus URL the agent connects to")
    ntp: List[str] = Field(default_factory=list)


class CPIConfig(BaseModel):
    """Top-level CPI configuration."""

    kubeconfig: Optional[str] = Field(
        None, description="Path to a kubeconfig; falls back to $KUBECONFIG, ~/.kube/config, then in-cluster"
    )
    agent: AgentConfig
    pod_ready_timeout: float = Field(300.0, gt=0, description="Seconds to wait for a recreated pod")
    post_recreate_delay: float = Field(0.0, ge=0, description="Seconds to wait after a recreated pod is ready")
    agent_probe: bool = Field(False, description="Probe the agent endpoint during the post-recreate delay")
    claim_poll_interval: float = Field(1.0, gt=0, description="Seconds between claim phase polls")
    var_vcap_size: str = DEFAULT_VAR_VCAP_SIZE

    @field_validator("kubeconfig")
    def _expand_kubeconfig(cls, value: Optional[str]) -> Optional[str]:
        return os.path.expanduser(value) if value else value


def load_config(path: Optional[str] = None) -> CPIConfig:
    """Read and validate the configuration at *path* (or ``$CPI_CONFIG``)."""
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        raise InvalidConfiguration(f"no configuration path given and {CONFIG_ENV_VAR} is not set")

    try:
        raw = yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise InvalidConfiguration(f"cannot read configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InvalidConfiguration(f"cannot parse configuration {path}: {exc}") from exc

    try:
        cfg = CPIConfig.model_validate(raw or {})
    except ValidationError as exc:
        raise InvalidConfiguration(f"invalid configuration {path}: {exc}") from exc

    logger.debug("Loaded CPI configuration from %s", path)
    return cfg


__all__ = ["AgentConfig", "CPIConfig", "load_config", "CONFIG_ENV_VAR"]
