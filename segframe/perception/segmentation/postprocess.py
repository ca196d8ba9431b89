from __future__ import annotations

from typing import Iterable, Optional

import cv2
import numpy as np
import torch
import torch.nn.functional as F

from segframe.perception.segmentation.palette import ClassPalette
from segframe.utils.device import resolve_device
from segframe.utils.errors import PostProcessError
from segframe.utils.types import ClassMap, FilterMode

OPAQUE = 255.0


def parse_filter(filter_mode: FilterMode | str) -> FilterMode:
    try:
        return FilterMode(filter_mode.lower() if isinstance(filter_mode, str) else filter_mode)
    except ValueError as exc:
        raise PostProcessError(f"Unknown filter mode: {filter_mode!r} (expected 'point' or 'linear')") from exc


class SegmentationPostProcessor:
    """
    Turns a class map into viewable RGBA float buffers (0..255 range).

    overlay(): class colors alpha-blended over the input frame.
    mask():    class colors only.
    Both resample from the network's native grid to the requested size;
    FilterMode.POINT is nearest neighbour, FilterMode.LINEAR is bilinear.
    """

    def __init__(self, palette: ClassPalette, device: str | torch.device | None = None):
        self.palette = palette
        self.device = resolve_device(device)

    def overlay(
        self,
        class_map: Optional[ClassMap],
        target_width: int,
        target_height: int,
        filter_mode: FilterMode | str = FilterMode.POINT,
        out: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        mode = parse_filter(filter_mode)
        self._validate(class_map, target_width, target_height, out)

        colors = self._colorize(class_map, target_width, target_height, mode)
        frame = self._source_frame(class_map, target_width, target_height)
        alpha = colors[3:4] / OPAQUE
        rgb = alpha * colors[:3] + (1.0 - alpha) * frame[:3]
        opaque = torch.full_like(rgb[:1], OPAQUE)
        result = torch.cat([rgb, opaque], dim=0).permute(1, 2, 0)
        return self._write(result, out)

    def mask(
        self,
        class_map: Optional[ClassMap],
        target_width: int,
        target_height: int,
        filter_mode: FilterMode | str = FilterMode.POINT,
        out: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        mode = parse_filter(filter_mode)
        self._validate(class_map, target_width, target_height, out)

        colors = self._colorize(class_map, target_width, target_height, mode)
        colors[3].fill_(OPAQUE)
        return self._write(colors.permute(1, 2, 0), out)

    def class_ids(self, class_map: Optional[ClassMap], target_width: int, target_height: int) -> np.ndarray:
        """Grayscale class mask: (H, W) uint8 class ids, nearest-neighbour resampled."""
        self._validate(class_map, target_width, target_height, None)
        if class_map.num_classes > 256:
            raise PostProcessError(f"{class_map.num_classes} classes do not fit in a uint8 mask")
        ids = self._resample_ids(class_map, target_width, target_height)
        return ids.to(torch.uint8).cpu().numpy()

    def binary_mask(
        self,
        class_map: Optional[ClassMap],
        classes: Iterable[int],
        target_width: int,
        target_height: int,
        cleanup: bool = True,
        kernel_size: int = 5,
    ) -> np.ndarray:
        """
        Convert the class map into a binary {0,1} mask for a set of classes.

        Returns:
            (H, W) uint8
        """
        ids = self.class_ids(class_map, target_width, target_height)
        selected = np.zeros_like(ids, dtype=np.uint8)
        for cls in classes:
            selected[ids == cls] = 1

        if cleanup:
            # Morphological cleanup
            kernel = np.ones((kernel_size, kernel_size), np.uint8)
            selected = cv2.morphologyEx(selected, cv2.MORPH_CLOSE, kernel)
            selected = cv2.morphologyEx(selected, cv2.MORPH_OPEN, kernel)
        return selected

    @staticmethod
    def _validate(
        class_map: Optional[ClassMap], target_width: int, target_height: int, out: Optional[torch.Tensor]
    ) -> None:
        if class_map is None:
            raise PostProcessError("No class map available; run inference first")
        if int(target_width) <= 0 or int(target_height) <= 0:
            raise PostProcessError(f"Invalid target size {target_width}x{target_height}")
        if out is not None and tuple(out.shape) != (int(target_height), int(target_width), 4):
            raise PostProcessError(
                f"Output buffer shape {tuple(out.shape)} does not match {(target_height, target_width, 4)}"
            )

    def _resample_ids(self, class_map: ClassMap, width: int, height: int) -> torch.Tensor:
        ids = class_map.class_ids.to(self.device)
        if (class_map.grid_width, class_map.grid_height) == (width, height):
            return ids
        ids = F.interpolate(ids[None, None].float(), size=(height, width), mode="nearest")
        return ids[0, 0].long()

    def _colorize(self, class_map: ClassMap, width: int, height: int, mode: FilterMode) -> torch.Tensor:
        """(4, H, W) RGBA class colors, alpha from the palette."""
        table = self.palette.as_tensor(self.device, num_classes=class_map.num_classes)
        if mode is FilterMode.POINT:
            return table[self._resample_ids(class_map, width, height)].permute(2, 0, 1).contiguous()

        grid = table[class_map.class_ids.to(self.device)].permute(2, 0, 1)
        if (class_map.grid_width, class_map.grid_height) == (width, height):
            return grid.contiguous()
        return F.interpolate(grid[None], size=(height, width), mode="bilinear", align_corners=False)[0]

    def _source_frame(self, class_map: ClassMap, width: int, height: int) -> torch.Tensor:
        src = class_map.source
        frame = src.data[0].to(self.device, dtype=torch.float32)
        if src.mean is not None:
            frame = frame + torch.tensor(src.mean, device=self.device).view(4, 1, 1)
        if (src.width, src.height) != (width, height):
            frame = F.interpolate(frame[None], size=(height, width), mode="bilinear", align_corners=False)[0]
        return frame

    @staticmethod
    def _write(result: torch.Tensor, out: Optional[torch.Tensor]) -> torch.Tensor:
        if out is None:
            return result.contiguous()
        out.copy_(result)
        return out
