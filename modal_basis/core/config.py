"""Global configuration manager using YAML."""
from __future__ import annotations

import copy
import os
from typing import Any, Optional

import yaml

from modal_basis.fea.config import ModalBasisConfig

DEFAULT_CONFIG = {
    # No structured run log unless a directory is configured
    "logging": {"dir": None, "level": "WARNING"},
    "modal": {
        "n_modes": 10,
        "fixed_indices": [],
        "fixed_boxes": [],
        "young_pa": 1e4,
        "density_kg_m3": 5000.0,
        "solver": {"eigensolver": "auto", "dense_threshold": 600},
    },
    "output": {"suffix": ".modal.bin", "export_vtu": False},
}


class AppConfig:
    def __init__(self, config_path: Optional[str] = None):
        self._data: dict = {}
        self._deep_merge(self._data, copy.deepcopy(DEFAULT_CONFIG))
        if config_path:
            if not os.path.exists(config_path):
                raise FileNotFoundError(f"Config file not found: {config_path!r}")
            with open(config_path, "r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ValueError(f"Config file {config_path!r} must contain a mapping.")
            self._deep_merge(self._data, file_data)

    def _deep_merge(self, base: dict, override: dict) -> None:
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, dotted_key: str, default: Any = None) -> Any:
        keys = dotted_key.split(".")
        node = self._data
        for k in keys:
            if isinstance(node, dict) and k in node:
                node = node[k]
            else:
                return default
        return node

    def set(self, dotted_key: str, value: Any) -> None:
        keys = dotted_key.split(".")
        node = self._data
        for k in keys[:-1]:
            if k not in node or not isinstance(node[k], dict):
                node[k] = {}
            node = node[k]
        node[keys[-1]] = value

    def modal_config(self) -> ModalBasisConfig:
        """Typed modal options from the ``modal`` section."""
        return ModalBasisConfig.from_mapping(copy.deepcopy(self.get("modal", {})))

    @property
    def data(self) -> dict:
        return self._data
