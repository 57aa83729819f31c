from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..errors import ConfigError

_SECTIONS = (
    "host_required",
    "host_optional",
    "debootstrap_essential",
    "system",
    "live_system",
    "manifest_remove",
)


def _manifests_dir() -> Path:
    # umini_builder/lib/manifests.py -> umini_builder/manifests
    return Path(__file__).resolve().parents[1] / "manifests"


@dataclass(frozen=True)
class PackageSets:
    host_required: Tuple[str, ...]
    host_optional: Tuple[str, ...]
    debootstrap_essential: Tuple[str, ...]
    system: Tuple[str, ...]
    live_system: Tuple[str, ...]
    manifest_remove: Tuple[str, ...]


def _dedupe(items: List[Any]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(str(item).strip(), None)
    return tuple(k for k in seen if k)


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Manifest is not valid YAML: {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Manifest must be a mapping/dict: {path}")
    return data


def load_package_sets(path: Optional[Path] = None) -> PackageSets:
    """Load the package manifest (bundled ``packages.yaml`` by default).

    Duplicates inside a section are dropped, keeping the first occurrence.
    """

    p = path or (_manifests_dir() / "packages.yaml")
    raw = load_yaml(p)
    sections = {}
    for name in _SECTIONS:
        items = raw.get(name) or []
        if not isinstance(items, list):
            raise ConfigError(f"{p}: '{name}' must be a list of package names")
        sections[name] = _dedupe(items)
    return PackageSets(**sections)
