from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


def load_yaml(path: str | Path) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path.resolve()}")
    with config_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get(cfg: Dict[str, Any], key: str, default: Any = None) -> Any:
    """
    Dot-access helper:
      get(cfg, "pipeline.overlay_alpha", 120.0)
    """
    cur: Any = cfg
    for part in key.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def _size_or_none(value: Any) -> Optional[Tuple[int, int]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return int(value["width"]), int(value["height"])
    width, height = value
    return int(width), int(height)


@dataclass
class PipelineConfig:
    """Flattened view of the YAML config used by the segmentation pipeline."""

    width: int = 0
    height: int = 0
    network: str = "fcn-resnet50"
    device: Optional[str] = None
    pretrained: bool = True
    input_size: Optional[Tuple[int, int]] = None
    providers: Optional[List[str]] = None
    overlay_alpha: float = 120.0
    overlay_filter: str = "point"
    mask_filter: str = "point"
    mean_pixel: Optional[List[float]] = None
    palette: Dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"
    output_dir: str = "results"
    watchdog_ms: float = 0.0
    pinned: bool = False

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "PipelineConfig":
        mean = get(cfg, "pipeline.mean_pixel")
        return cls(
            width=int(get(cfg, "pipeline.width", 0)),
            height=int(get(cfg, "pipeline.height", 0)),
            network=str(get(cfg, "network.name", "fcn-resnet50")),
            device=get(cfg, "network.device"),
            pretrained=bool(get(cfg, "network.pretrained", True)),
            input_size=_size_or_none(get(cfg, "network.input_size")),
            providers=get(cfg, "network.providers"),
            overlay_alpha=float(get(cfg, "pipeline.overlay_alpha", 120.0)),
            overlay_filter=str(get(cfg, "pipeline.overlay_filter", "point")),
            mask_filter=str(get(cfg, "pipeline.mask_filter", "point")),
            mean_pixel=[float(v) for v in mean] if mean is not None else None,
            palette=dict(get(cfg, "palette", {}) or {}),
            log_level=str(get(cfg, "runtime.log_level", "INFO")),
            output_dir=str(get(cfg, "runtime.output_dir", "results")),
            watchdog_ms=float(get(cfg, "runtime.watchdog_ms", 0.0) or 0.0),
            pinned=bool(get(cfg, "arena.pinned", False)),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        return cls.from_dict(load_yaml(path))
