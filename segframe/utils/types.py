from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import torch

from segframe.utils.errors import ConversionError


class FilterMode(str, enum.Enum):
    POINT = "point"
    LINEAR = "linear"


class PipelineState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    PROCESSING = "processing"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class Frame:
    """Host image handed to the pipeline. Layout is one of rgb, bgr, rgba, bgra."""

    image: np.ndarray
    layout: str = "rgb"

    @classmethod
    def wrap(cls, image: "Frame | np.ndarray") -> "Frame":
        if isinstance(image, Frame):
            return image
        if image is not None and not isinstance(image, np.ndarray):
            raise ConversionError(f"Expected a numpy image or Frame, got {type(image).__name__}")
        channels = image.shape[2] if image is not None and image.ndim == 3 else 0
        return cls(image=image, layout="rgba" if channels == 4 else "rgb")

    @property
    def height(self) -> int:
        return int(self.image.shape[0]) if self.image is not None and self.image.ndim >= 2 else 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1]) if self.image is not None and self.image.ndim >= 2 else 0

    @property
    def channels(self) -> int:
        if self.image is None or self.image.ndim < 2:
            return 0
        return 1 if self.image.ndim == 2 else int(self.image.shape[2])

    @property
    def depth(self) -> np.dtype:
        return self.image.dtype


@dataclass
class DeviceTensor:
    """Float RGBA frame on the accelerator, shaped (1, 4, H, W)."""

    data: torch.Tensor
    width: int
    height: int
    mean: Optional[Tuple[float, float, float, float]] = None  # subtracted per channel

    @property
    def device(self) -> torch.device:
        return self.data.device


@dataclass
class ClassMap:
    """
    Output of one forward pass at the network's native resolution.
    Valid until the engine runs again (see generation).
    """

    scores: torch.Tensor  # (C, gh, gw) class probabilities
    class_ids: torch.Tensor  # (gh, gw) int64
    confidence: float
    source: DeviceTensor
    generation: int = 0

    @property
    def grid_width(self) -> int:
        return int(self.class_ids.shape[1])

    @property
    def grid_height(self) -> int:
        return int(self.class_ids.shape[0])

    @property
    def num_classes(self) -> int:
        return int(self.scores.shape[0])


@dataclass
class PipelineResult:
    overlay: torch.Tensor
    mask: torch.Tensor
    overlay_ok: bool = False
    mask_ok: bool = False
    failures: Dict[str, Exception] = field(default_factory=dict)
    class_map: Optional[ClassMap] = None
    stages_ms: Dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.overlay_ok and self.mask_ok and not self.failures

    @property
    def failed_stages(self) -> List[str]:
        return list(self.failures.keys())

    def to_numpy(self) -> Dict[str, np.ndarray]:
        """Read-only host arrays of the overlay and mask buffers (views when the buffers live on the CPU)."""
        out = {}
        for name, tensor in (("overlay", self.overlay), ("mask", self.mask)):
            arr = tensor.detach().cpu().numpy()
            arr.flags.writeable = False
            out[name] = arr
        return out


@dataclass
class FramePacket:
    frame: Frame
    timestamp: float
    source_id: str = "camera_front"
