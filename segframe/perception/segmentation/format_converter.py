from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np
import torch

from segframe.memory.arena import FLOAT_BYTES, DeviceArena, DeviceBuffer
from segframe.utils.device import resolve_device, synchronize
from segframe.utils.errors import ConversionError
from segframe.utils.logger import get_logger
from segframe.utils.types import DeviceTensor, Frame

# layout -> (channel count, OpenCV conversion to RGBA or None if already RGBA)
LAYOUTS = {
    "rgb": (3, cv2.COLOR_RGB2RGBA),
    "bgr": (3, cv2.COLOR_BGR2RGBA),
    "rgba": (4, None),
    "bgra": (4, cv2.COLOR_BGRA2RGBA),
}

OPAQUE = 255.0
UINT16_SCALE = 255.0 / 65535.0


class FormatConverter:
    """
    Host frame -> (1, 4, H, W) float RGBA tensor on the accelerator.

    Pixel values stay in 0..255 units. When an arena is given, one slot is
    reused for as long as the frame size does not change.
    """

    def __init__(self, device: str | torch.device | None = None, arena: Optional[DeviceArena] = None):
        self.arena = arena
        self.device = arena.device if arena is not None else resolve_device(device)
        self.logger = get_logger(__name__)
        self._slot: Optional[DeviceBuffer] = None
        self._slot_shape: Optional[tuple] = None

    def convert(self, frame: Frame | np.ndarray, mean_pixel: Optional[Sequence[float]] = None) -> DeviceTensor:
        if frame is None:
            raise ConversionError("Frame is None")
        frame = Frame.wrap(frame)
        rgba = self.to_rgba_float(frame)

        mean = None
        if mean_pixel is not None:
            mean_vec = self._mean_vector(mean_pixel)
            rgba -= mean_vec
            mean = tuple(float(v) for v in mean_vec)

        host = torch.from_numpy(rgba).permute(2, 0, 1).unsqueeze(0)
        data = self._upload(host)
        return DeviceTensor(data=data, width=frame.width, height=frame.height, mean=mean)

    def to_rgba_float(self, frame: Frame) -> np.ndarray:
        """Validate the frame and return an (H, W, 4) float32 RGBA host array."""
        img = frame.image
        if img is not None and not isinstance(img, np.ndarray):
            raise ConversionError(f"Frame image must be a numpy array, got {type(img).__name__}")
        if img is None or img.size == 0:
            raise ConversionError("Frame is empty")
        if img.ndim != 3:
            raise ConversionError(f"Expected an (H, W, C) image, got shape {img.shape}")
        if frame.width == 0 or frame.height == 0:
            raise ConversionError(f"Frame has zero dimension: {frame.width}x{frame.height}")

        layout = frame.layout.lower()
        if layout not in LAYOUTS:
            raise ConversionError(f"Unsupported channel layout: {frame.layout}")
        channels, code = LAYOUTS[layout]
        if frame.channels not in (3, 4):
            raise ConversionError(f"Expected 3 or 4 channels, got {frame.channels}")
        if frame.channels != channels:
            raise ConversionError(f"Layout {layout} expects {channels} channels, got {frame.channels}")

        if img.dtype == np.float64:
            img = img.astype(np.float32)
        if img.dtype not in (np.uint8, np.uint16, np.float32):
            raise ConversionError(f"Unsupported pixel depth: {img.dtype}")

        img = np.ascontiguousarray(img)
        rgba = cv2.cvtColor(img, code) if code is not None else img
        out = rgba.astype(np.float32, copy=True)
        if img.dtype == np.uint16:
            out *= UINT16_SCALE
        if frame.channels == 3:
            # cvtColor fills alpha with the depth's max value; force 0..255 opaque
            out[..., 3] = OPAQUE
        return out

    def reserve(self, shape: tuple) -> None:
        """Allocate the arena slot up front so convert() never allocates for this shape."""
        if self.arena is None:
            return
        self._acquire_slot(tuple(int(d) for d in shape))

    def release(self) -> None:
        if self._slot is not None and self.arena is not None:
            self.arena.release(self._slot)
        self._slot = None
        self._slot_shape = None

    @staticmethod
    def _mean_vector(mean_pixel: Sequence[float]) -> np.ndarray:
        mean = np.asarray(list(mean_pixel), dtype=np.float32)
        if mean.shape == (3,):
            mean = np.append(mean, 0.0).astype(np.float32)
        if mean.shape != (4,):
            raise ConversionError(f"Mean pixel must have 3 or 4 components, got {mean.shape}")
        return mean

    def _upload(self, host: torch.Tensor) -> torch.Tensor:
        if self.arena is None:
            data = host.contiguous().to(self.device, non_blocking=True)
        else:
            data = self._acquire_slot(tuple(host.shape))
            data.copy_(host, non_blocking=True)
        # tensor must be complete before anyone reads it
        synchronize(data.device)
        return data

    def _acquire_slot(self, shape: tuple) -> torch.Tensor:
        if self._slot is None or self._slot_shape != shape:
            self.release()
            numel = int(np.prod(shape))
            self._slot = self.arena.allocate(numel * FLOAT_BYTES)
            self._slot_shape = shape
            self.logger.debug("Converter slot resized to %s", shape)
        return self._slot.view(shape)
