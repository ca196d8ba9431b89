from __future__ import annotations

import threading
from typing import Any, Dict, Optional

import numpy as np
import torch

from segframe.memory.arena import FLOAT_BYTES, DeviceArena, DeviceBuffer
from segframe.perception.segmentation.base_engine import BaseSegmentationEngine
from segframe.perception.segmentation.factory import create_engine
from segframe.perception.segmentation.format_converter import FormatConverter
from segframe.perception.segmentation.palette import ClassPalette, generated_color
from segframe.perception.segmentation.postprocess import SegmentationPostProcessor, parse_filter
from segframe.runtime.health_monitor import HealthMonitor
from segframe.utils.config import PipelineConfig
from segframe.utils.device import synchronize
from segframe.utils.errors import (
    AllocationError,
    ConversionError,
    InferenceError,
    LifecycleError,
    PostProcessError,
)
from segframe.utils.logger import get_logger
from segframe.utils.timing import Profiler, StageTimer
from segframe.utils.types import ClassMap, DeviceTensor, Frame, PipelineResult, PipelineState

RGBA = 4


class SegmentationPipeline:
    """
    Per-frame segmentation bound to one (width, height).

    process() runs convert -> inference -> overlay -> mask. A failing stage is
    logged and recorded in the result; the remaining stages still run when
    their input exists for this frame. The overlay and mask buffers are
    allocated once and overwritten in place, so a result's tensors are only
    valid until the next process() call.
    """

    def __init__(
        self,
        width: int,
        height: int,
        network: Optional[str] = None,
        config: Optional[PipelineConfig] = None,
        engine: Optional[BaseSegmentationEngine] = None,
        arena: Optional[DeviceArena] = None,
        palette: Optional[ClassPalette] = None,
    ):
        self._state = PipelineState.UNINITIALIZED
        self.logger = get_logger(__name__)
        self.cfg = config or PipelineConfig()
        self.network = network or self.cfg.network

        if not isinstance(width, int) or not isinstance(height, int) or width < 2 or height < 2:
            # the half-resolution mask needs at least one pixel
            raise AllocationError(f"Invalid pipeline size {width}x{height}; both dimensions must be >= 2")
        self._width = width
        self._height = height
        self._lock = threading.Lock()

        self.arena = arena or DeviceArena(self.cfg.device, pinned=self.cfg.pinned)
        self.device = self.arena.device
        self.overlay_filter = parse_filter(self.cfg.overlay_filter)
        self.mask_filter = parse_filter(self.cfg.mask_filter)
        self.health = HealthMonitor(self.cfg.watchdog_ms)
        self.profiler = Profiler()

        self.engine: Optional[BaseSegmentationEngine] = None
        self.converter: Optional[FormatConverter] = None
        self._overlay: Optional[DeviceBuffer] = None
        self._mask: Optional[DeviceBuffer] = None
        try:
            self.engine = engine or create_engine(
                self.network,
                device=self.device,
                pretrained=self.cfg.pretrained,
                input_size=self.cfg.input_size,
                providers=self.cfg.providers,
            )
            palette = palette or self._default_palette()
            # alpha for classes that don't explicitly already have one
            palette.set_overlay_alpha(self.cfg.overlay_alpha)
            self.postprocessor = SegmentationPostProcessor(palette, device=self.device)
            self.converter = FormatConverter(arena=self.arena)
            self.converter.reserve((1, RGBA, height, width))

            self._overlay = self.arena.allocate(width * height * RGBA * FLOAT_BYTES)
            self._mask = self.arena.allocate(self.mask_width * self.mask_height * RGBA * FLOAT_BYTES)
        except Exception:
            self._release_resources()
            raise

        self._state = PipelineState.READY
        self.logger.info(
            "Pipeline ready: %dx%d network=%s device=%s overlay_alpha=%.1f",
            width,
            height,
            self.network,
            self.device,
            self.cfg.overlay_alpha,
        )

    @classmethod
    def from_config(
        cls, cfg: PipelineConfig | Dict[str, Any], engine: Optional[BaseSegmentationEngine] = None
    ) -> "SegmentationPipeline":
        if not isinstance(cfg, PipelineConfig):
            cfg = PipelineConfig.from_dict(cfg)
        return cls(cfg.width, cfg.height, network=cfg.network, config=cfg, engine=engine)

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def mask_width(self) -> int:
        return self._width // 2

    @property
    def mask_height(self) -> int:
        return self._height // 2

    @property
    def overlay_buffer(self) -> torch.Tensor:
        return self._buffer(self._overlay).view(self._height, self._width, RGBA)

    @property
    def mask_buffer(self) -> torch.Tensor:
        return self._buffer(self._mask).view(self.mask_height, self.mask_width, RGBA)

    def process(self, frame: Frame | np.ndarray) -> PipelineResult:
        if self._state is PipelineState.SHUTDOWN:
            raise LifecycleError("process() called after shutdown")
        if not self._lock.acquire(blocking=False):
            raise LifecycleError("process() is already running on this pipeline")
        try:
            if self._state is PipelineState.SHUTDOWN:
                raise LifecycleError("process() called after shutdown")
            self._state = PipelineState.PROCESSING
            return self._run(frame)
        finally:
            if self._state is PipelineState.PROCESSING:
                self._state = PipelineState.READY
            self._lock.release()

    def shutdown(self) -> None:
        self._shutdown(log=True)

    def __enter__(self) -> "SegmentationPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __del__(self):
        if getattr(self, "_state", None) is PipelineState.READY:
            # log handlers may already be closed during interpreter teardown
            self._shutdown(log=False)

    def _shutdown(self, log: bool) -> None:
        if self._state is PipelineState.SHUTDOWN:
            return
        # waits for an in-flight process() to finish
        with self._lock:
            if self._state is PipelineState.SHUTDOWN:
                return
            synchronize(self.device)
            if self.engine is not None:
                if log:
                    self.engine.report()
                self.engine.close()
            if log:
                for stage, stats in self.profiler.summary().items():
                    self.logger.info(
                        "[pipeline] %s: mean %.2f ms over %d frames", stage, stats["mean_ms"], int(stats["count"])
                    )
            self._release_resources()
            self._state = PipelineState.SHUTDOWN
            if log:
                self.logger.info("Pipeline shut down (%dx%d)", self._width, self._height)

    def _run(self, frame: Frame | np.ndarray) -> PipelineResult:
        timer = StageTimer()
        failures: Dict[str, Exception] = {}
        tensor: Optional[DeviceTensor] = None
        class_map: Optional[ClassMap] = None
        overlay_ok = mask_ok = False

        with timer.stage("convert"):
            try:
                self._check_frame_size(frame)
                tensor = self.converter.convert(frame, self.cfg.mean_pixel)
            except ConversionError as exc:
                self._fail(failures, "convert", exc)

        with timer.stage("inference"):
            if tensor is None:
                self._fail(failures, "inference", InferenceError("skipped: no input tensor for this frame"))
            else:
                try:
                    class_map = self.engine.run_forward(tensor, self._width, self._height)
                except InferenceError as exc:
                    self._fail(failures, "inference", exc)

        with timer.stage("overlay"):
            try:
                self._require(class_map)
                self.postprocessor.overlay(
                    class_map, self._width, self._height, self.overlay_filter, out=self.overlay_buffer
                )
                overlay_ok = True
            except PostProcessError as exc:
                self._fail(failures, "overlay", exc)

        with timer.stage("mask"):
            try:
                self._require(class_map)
                self.postprocessor.mask(
                    class_map, self.mask_width, self.mask_height, self.mask_filter, out=self.mask_buffer
                )
                mask_ok = True
            except PostProcessError as exc:
                self._fail(failures, "mask", exc)

        synchronize(self.device)
        self.profiler.merge(timer.stages_ms)
        self.health.check_frame(timer.stages_ms)

        return PipelineResult(
            overlay=self.overlay_buffer,
            mask=self.mask_buffer,
            overlay_ok=overlay_ok,
            mask_ok=mask_ok,
            failures=failures,
            class_map=class_map,
            stages_ms=dict(timer.stages_ms),
        )

    def _check_frame_size(self, frame: Frame | np.ndarray) -> None:
        if frame is None:
            return
        wrapped = Frame.wrap(frame)
        if not isinstance(wrapped.image, np.ndarray) or wrapped.image.size == 0:
            # the converter reports malformed frames
            return
        if (wrapped.width, wrapped.height) != (self._width, self._height):
            raise ConversionError(
                f"Frame is {wrapped.width}x{wrapped.height} but pipeline is bound to {self._width}x{self._height}"
            )

    @staticmethod
    def _require(class_map: Optional[ClassMap]) -> None:
        if class_map is None:
            raise PostProcessError("skipped: inference produced no class map for this frame")

    def _fail(self, failures: Dict[str, Exception], stage: str, exc: Exception) -> None:
        failures[stage] = exc
        self.logger.warning("[%s] failed: %s", stage, exc)

    def _buffer(self, buf: Optional[DeviceBuffer]) -> torch.Tensor:
        if buf is None:
            raise LifecycleError("Pipeline buffers are not allocated")
        return buf.tensor

    def _default_palette(self) -> ClassPalette:
        if self.cfg.palette:
            return ClassPalette.from_config(self.cfg.palette)
        names = self.engine.class_names or [f"class_{i}" for i in range(self.engine.num_classes)]
        return ClassPalette(names, [generated_color(i) for i in range(len(names))])

    def _release_resources(self) -> None:
        if self.converter is not None:
            self.converter.release()
        for buf in (self._overlay, self._mask):
            if buf is not None and not buf.released:
                self.arena.release(buf)
        self._overlay = None
        self._mask = None
