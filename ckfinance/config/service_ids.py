"""Load remote service id overrides from YAML.

Optional file path via env `CKF_SERVICE_IDS_FILE`, default `configs/service_ids.yaml`.
Returns a dict mapping service name -> service id string.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict

import yaml

# Mainnet ids of the deployed services.
DEFAULT_SERVICE_IDS: Dict[str, str] = {
    "iso_dapp": "43vhz-yiaaa-aaaai-q3uoq-cai",
    "dex": "44ubn-vqaaa-aaaai-q3uoa-cai",
    "ckBTC": "ktciv-wqaaa-aaaad-aakhq-cai",
    "ckETH": "io7g5-fyaaa-aaaad-aakia-cai",
    "ckUSDC": "4oswu-zaaaa-aaaai-q3una-cai",
}


def load_service_id_overrides(path: str | None = None) -> Dict[str, str]:
    if path is None:
        path = os.getenv("CKF_SERVICE_IDS_FILE", "configs/service_ids.yaml")
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if isinstance(v, (str, int))}


def resolve_service_ids(path: str | None = None) -> Dict[str, str]:
    """Defaults with any YAML overrides applied on top."""
    ids = dict(DEFAULT_SERVICE_IDS)
    ids.update(load_service_id_overrides(path))
    return ids
