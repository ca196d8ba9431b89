from __future__ import annotations

import abc
import time
from typing import List, Optional, Sequence, Tuple

import torch
import torch.nn.functional as F

from segframe.utils.device import resolve_device, synchronize
from segframe.utils.errors import InferenceError
from segframe.utils.logger import get_logger
from segframe.utils.timing import Profiler
from segframe.utils.types import ClassMap, DeviceTensor

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class BaseSegmentationEngine(abc.ABC):
    """
    Opaque inference capability: device tensor in, class map out.

    The class map returned by run_forward() is owned by the engine and is
    only valid until the next call; a failed call leaves no class map.
    """

    def __init__(
        self,
        device: str | torch.device | None = None,
        class_names: Optional[Sequence[str]] = None,
        input_size: Optional[Tuple[int, int]] = None,
    ):
        self.device = resolve_device(device)
        self.class_names: List[str] = list(class_names or [])
        self.input_size = input_size
        self.profiler = Profiler()
        self.logger = get_logger(type(self).__module__)
        self._class_map: Optional[ClassMap] = None
        self._generation = 0

    @property
    @abc.abstractmethod
    def num_classes(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def _forward(self, tensor: DeviceTensor) -> torch.Tensor:
        """Return raw logits shaped (C, gh, gw) on self.device."""
        raise NotImplementedError

    @property
    def class_map(self) -> Optional[ClassMap]:
        return self._class_map

    def run_forward(self, tensor: DeviceTensor, width: int, height: int) -> ClassMap:
        self._class_map = None
        if tensor is None:
            raise InferenceError("No input tensor")
        if (tensor.width, tensor.height) != (width, height):
            raise InferenceError(
                f"Tensor is {tensor.width}x{tensor.height} but forward pass requested {width}x{height}"
            )

        t0 = time.perf_counter()
        try:
            logits = self._forward(tensor)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Forward pass failed: {exc}") from exc
        if not isinstance(logits, torch.Tensor):
            raise InferenceError(f"Expected a logits tensor, got {type(logits).__name__}")
        if logits.ndim != 3:
            raise InferenceError(f"Expected (C, H, W) logits, got shape {tuple(logits.shape)}")

        probs = torch.softmax(logits.float(), dim=0)
        confidence, class_ids = probs.max(dim=0)
        # class map must not be read before the device is done with it
        synchronize(probs.device)
        self.profiler.add("network", (time.perf_counter() - t0) * 1000.0)

        self._generation += 1
        self._class_map = ClassMap(
            scores=probs,
            class_ids=class_ids,
            confidence=float(confidence.mean().item()),
            source=tensor,
            generation=self._generation,
        )
        return self._class_map

    def network_input(self, tensor: DeviceTensor) -> torch.Tensor:
        """RGBA 0..255 device tensor -> ImageNet-normalized RGB at native resolution."""
        x = tensor.data[:, :3].to(self.device, dtype=torch.float32) / 255.0
        mean = torch.tensor(IMAGENET_MEAN, device=self.device).view(1, 3, 1, 1)
        std = torch.tensor(IMAGENET_STD, device=self.device).view(1, 3, 1, 1)
        x = (x - mean) / std
        if self.input_size is not None:
            width, height = self.input_size
            if (x.shape[-1], x.shape[-2]) != (width, height):
                x = F.interpolate(x, size=(height, width), mode="bilinear", align_corners=False)
        return x

    def report(self) -> None:
        """Profiling hook, called once at shutdown."""
        for stage, stats in self.profiler.summary().items():
            self.logger.info(
                "[profiler] %s: %d calls, mean %.2f ms, total %.2f ms",
                stage,
                int(stats["count"]),
                stats["mean_ms"],
                stats["total_ms"],
            )

    def close(self) -> None:
        self._class_map = None
