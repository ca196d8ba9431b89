from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch

VOC_CLASSES = [
    "background", "aeroplane", "bicycle", "bird", "boat", "bottle", "bus", "car", "cat", "chair", "cow",
    "diningtable", "dog", "horse", "motorbike", "person", "pottedplant", "sheep", "sofa", "train", "tvmonitor",
]

# Cityscapes train ids (19 classes)
CITYSCAPES_CLASSES = [
    ("road", (128, 64, 128)),
    ("sidewalk", (244, 35, 232)),
    ("building", (70, 70, 70)),
    ("wall", (102, 102, 156)),
    ("fence", (190, 153, 153)),
    ("pole", (153, 153, 153)),
    ("traffic light", (250, 170, 30)),
    ("traffic sign", (220, 220, 0)),
    ("vegetation", (107, 142, 35)),
    ("terrain", (152, 251, 152)),
    ("sky", (70, 130, 180)),
    ("person", (220, 20, 60)),
    ("rider", (255, 0, 0)),
    ("car", (0, 0, 142)),
    ("truck", (0, 0, 70)),
    ("bus", (0, 60, 100)),
    ("train", (0, 80, 100)),
    ("motorcycle", (0, 0, 230)),
    ("bicycle", (119, 11, 32)),
]

OPAQUE = 255.0


def generated_color(class_id: int) -> Tuple[int, int, int]:
    """Pascal VOC bit-interleaved color for a class id."""
    r = g = b = 0
    cid = class_id
    for shift in range(7, -1, -1):
        r |= ((cid >> 0) & 1) << shift
        g |= ((cid >> 1) & 1) << shift
        b |= ((cid >> 2) & 1) << shift
        cid >>= 3
    return r, g, b


class ClassPalette:
    """
    Fixed RGBA color per class.

    Alpha overrides set explicitly per class survive set_overlay_alpha();
    every other class follows the global overlay alpha.
    """

    def __init__(
        self,
        names: Sequence[str],
        colors: Sequence[Sequence[float]],
        alphas: Optional[Dict[int, float]] = None,
        overlay_alpha: float = OPAQUE,
    ):
        if len(names) != len(colors):
            raise ValueError(f"{len(names)} class names but {len(colors)} colors")
        self.names: List[str] = list(names)
        self._rgb = np.asarray([list(c)[:3] for c in colors], dtype=np.float32).reshape(-1, 3)
        self._explicit: Dict[int, float] = {}
        self.overlay_alpha = float(overlay_alpha)
        for class_id, alpha in (alphas or {}).items():
            self._explicit[int(class_id)] = self._check_alpha(alpha)

    def __len__(self) -> int:
        return len(self.names)

    @staticmethod
    def _check_alpha(alpha: float) -> float:
        alpha = float(alpha)
        if not 0.0 <= alpha <= OPAQUE:
            raise ValueError(f"Alpha must be within [0, 255], got {alpha}")
        return alpha

    def set_overlay_alpha(self, alpha: float, explicit_exempt: bool = True) -> None:
        self.overlay_alpha = self._check_alpha(alpha)
        if not explicit_exempt:
            self._explicit.clear()

    def set_class_color(self, class_id: int, rgb: Sequence[float], alpha: Optional[float] = None) -> None:
        self._ensure(class_id + 1)
        self._rgb[class_id] = np.asarray(list(rgb)[:3], dtype=np.float32)
        if alpha is not None:
            self._explicit[class_id] = self._check_alpha(alpha)

    def color(self, class_id: int) -> Tuple[float, float, float, float]:
        self._ensure(class_id + 1)
        r, g, b = self._rgb[class_id]
        return float(r), float(g), float(b), self._explicit.get(class_id, self.overlay_alpha)

    def class_name(self, class_id: int) -> str:
        return self.names[class_id] if 0 <= class_id < len(self.names) else f"class_{class_id}"

    def as_array(self, num_classes: Optional[int] = None) -> np.ndarray:
        """(C, 4) float32 RGBA table covering at least num_classes entries."""
        if num_classes is not None:
            self._ensure(num_classes)
        alpha = np.full((len(self._rgb), 1), self.overlay_alpha, dtype=np.float32)
        for class_id, value in self._explicit.items():
            if class_id < len(alpha):
                alpha[class_id, 0] = value
        return np.concatenate([self._rgb, alpha], axis=1)

    def as_tensor(self, device: torch.device, num_classes: Optional[int] = None) -> torch.Tensor:
        return torch.from_numpy(self.as_array(num_classes)).to(device)

    def _ensure(self, num_classes: int) -> None:
        # networks can report more classes than the palette names
        missing = num_classes - len(self._rgb)
        if missing <= 0:
            return
        start = len(self._rgb)
        extra = np.asarray([generated_color(i) for i in range(start, num_classes)], dtype=np.float32)
        self._rgb = np.concatenate([self._rgb, extra], axis=0)
        self.names.extend(f"class_{i}" for i in range(start, num_classes))

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], overlay_alpha: float = OPAQUE) -> "ClassPalette":
        """
        Either {"preset": "voc" | "cityscapes"} or
        {"classes": [{"name": ..., "color": [r, g, b], "alpha": optional}, ...]}.
        """
        classes = cfg.get("classes")
        if not classes:
            preset = str(cfg.get("preset", "voc")).lower()
            if preset == "voc":
                return voc_palette(overlay_alpha)
            if preset == "cityscapes":
                return cityscapes_palette(overlay_alpha)
            raise ValueError(f"Unknown palette preset: {preset}")

        names, colors, alphas = [], [], {}
        for idx, entry in enumerate(classes):
            names.append(str(entry.get("name", f"class_{idx}")))
            colors.append(entry.get("color", generated_color(idx)))
            if entry.get("alpha") is not None:
                alphas[idx] = float(entry["alpha"])
        return cls(names, colors, alphas=alphas, overlay_alpha=overlay_alpha)


def voc_palette(overlay_alpha: float = OPAQUE) -> ClassPalette:
    colors = [generated_color(i) for i in range(len(VOC_CLASSES))]
    return ClassPalette(VOC_CLASSES, colors, overlay_alpha=overlay_alpha)


def cityscapes_palette(overlay_alpha: float = OPAQUE) -> ClassPalette:
    names = [name for name, _ in CITYSCAPES_CLASSES]
    colors = [color for _, color in CITYSCAPES_CLASSES]
    return ClassPalette(names, colors, overlay_alpha=overlay_alpha)
