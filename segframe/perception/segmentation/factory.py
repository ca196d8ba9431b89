from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import torch

from segframe.perception.segmentation.base_engine import BaseSegmentationEngine


def create_engine(
    network: str,
    device: str | torch.device | None = None,
    pretrained: bool = True,
    input_size: Optional[Tuple[int, int]] = None,
    providers: Optional[List[str]] = None,
    class_names: Optional[Sequence[str]] = None,
) -> BaseSegmentationEngine:
    """
    "*.onnx" loads an exported model with onnxruntime; anything else is looked
    up in the torchvision registry.
    """
    if network.lower().endswith(".onnx"):
        from segframe.perception.segmentation.onnx_engine import OnnxSegmentationEngine

        return OnnxSegmentationEngine(network, device=device, providers=providers, class_names=class_names)

    from segframe.perception.segmentation.torchvision_engine import TorchvisionSegmentationEngine

    return TorchvisionSegmentationEngine(
        network,
        device=device,
        pretrained=pretrained,
        input_size=input_size,
        class_names=class_names,
    )
