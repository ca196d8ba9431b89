from __future__ import annotations

from typing import Optional, Sequence, Tuple

import torch
from torchvision.models import segmentation

from segframe.perception.segmentation.base_engine import BaseSegmentationEngine
from segframe.perception.segmentation.palette import VOC_CLASSES
from segframe.utils.errors import InferenceError
from segframe.utils.types import DeviceTensor

NETWORKS = {
    "fcn-resnet50": segmentation.fcn_resnet50,
    "fcn-resnet101": segmentation.fcn_resnet101,
    "deeplabv3-resnet50": segmentation.deeplabv3_resnet50,
    "deeplabv3-resnet101": segmentation.deeplabv3_resnet101,
    "deeplabv3-mobilenet": segmentation.deeplabv3_mobilenet_v3_large,
    "lraspp-mobilenet": segmentation.lraspp_mobilenet_v3_large,
}


class TorchvisionSegmentationEngine(BaseSegmentationEngine):
    """
    Torchvision segmentation networks, pretrained on the 21 Pascal VOC
    categories (COCO subset).
    """

    def __init__(
        self,
        network: str = "fcn-resnet50",
        device: str | torch.device | None = None,
        pretrained: bool = True,
        input_size: Optional[Tuple[int, int]] = None,
        class_names: Optional[Sequence[str]] = None,
    ):
        super().__init__(device=device, class_names=class_names or VOC_CLASSES, input_size=input_size)
        builder = NETWORKS.get(network)
        if builder is None:
            raise InferenceError(f"Unknown network '{network}'. Available: {', '.join(sorted(NETWORKS))}")
        self.network = network

        try:
            if pretrained:
                self.model = builder(weights="DEFAULT")
            else:
                self.model = builder(weights=None, weights_backbone=None, num_classes=len(self.class_names))
            self.model.to(self.device)
            self.model.eval()
        except (RuntimeError, OSError, ValueError) as exc:
            raise InferenceError(f"Failed to load network '{network}': {exc}") from exc

        self.logger.info("Loaded %s on %s (pretrained=%s)", network, self.device, pretrained)

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @torch.no_grad()
    def _forward(self, tensor: DeviceTensor) -> torch.Tensor:
        x = self.network_input(tensor)
        return self.model(x)["out"][0]

    def close(self) -> None:
        super().close()
        self.model = None
