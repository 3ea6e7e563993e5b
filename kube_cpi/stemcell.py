"""Stemcells are container image references; nothing is uploaded or deleted."""
from __future__ import annotations

from typing import Any, Dict

from .properties import StemcellCloudProperties

STEMCELL_FORMATS = ["raw"]


def create_stemcell(image_path: str, cloud_props: StemcellCloudProperties) -> str:
    return cloud_props.image


def delete_stemcell(stemcell_cid: str) -> None:
    return None


def info() -> Dict[str, Any]:
    return {"stemcell_formats": list(STEMCELL_FORMATS)}
