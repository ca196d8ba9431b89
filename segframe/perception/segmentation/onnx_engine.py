from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import onnxruntime as ort
import torch

from segframe.perception.segmentation.base_engine import BaseSegmentationEngine
from segframe.perception.segmentation.palette import VOC_CLASSES
from segframe.utils.errors import InferenceError
from segframe.utils.types import DeviceTensor

DEFAULT_PROVIDERS = ["CUDAExecutionProvider", "CPUExecutionProvider"]


class OnnxSegmentationEngine(BaseSegmentationEngine):
    """
    Runs an exported segmentation model (see scripts/export_onnx.py) with
    onnxruntime. A static model input shape fixes the native resolution.
    """

    def __init__(
        self,
        model_path: str | Path,
        device: str | torch.device | None = None,
        providers: Optional[List[str]] = None,
        class_names: Optional[Sequence[str]] = None,
    ):
        super().__init__(device=device, class_names=class_names or VOC_CLASSES)
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise InferenceError(f"ONNX model not found: {self.model_path}")

        available = ort.get_available_providers()
        chosen = [p for p in (providers or DEFAULT_PROVIDERS) if p in available] or ["CPUExecutionProvider"]
        try:
            self.session = ort.InferenceSession(str(self.model_path), providers=chosen)
        except Exception as exc:
            raise InferenceError(f"Failed to load ONNX model {self.model_path}: {exc}") from exc

        inp = self.session.get_inputs()[0]
        self.input_name = inp.name
        if len(inp.shape) != 4:
            raise InferenceError(f"Expected an NCHW model input, got shape {inp.shape}")
        _, _, h, w = inp.shape
        if isinstance(w, int) and isinstance(h, int):
            self.input_size = (w, h)

        out_shape = self.session.get_outputs()[0].shape
        if len(out_shape) == 4 and isinstance(out_shape[1], int) and out_shape[1] != len(self.class_names):
            self.logger.warning(
                "Model reports %d classes but %d class names given", out_shape[1], len(self.class_names)
            )
            self._num_classes = int(out_shape[1])
        else:
            self._num_classes = len(self.class_names)

        self.logger.info(
            "Loaded %s providers=%s input=%s", self.model_path, self.session.get_providers(), self.input_size
        )

    @property
    def num_classes(self) -> int:
        return self._num_classes

    def _forward(self, tensor: DeviceTensor) -> torch.Tensor:
        x = self.network_input(tensor).cpu().numpy().astype(np.float32)
        try:
            logits = self.session.run(None, {self.input_name: x})[0]
        except Exception as exc:
            raise InferenceError(f"onnxruntime failed: {exc}") from exc
        return torch.from_numpy(np.ascontiguousarray(logits[0])).to(self.device)

    def close(self) -> None:
        super().close()
        self.session = None
