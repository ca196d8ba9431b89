#!/usr/bin/env python3
"""
Export a torchvision segmentation network to ONNX for OnnxSegmentationEngine.
"""
from __future__ import annotations

import argparse
from pathlib import Path

import torch

from segframe.perception.segmentation.torchvision_engine import NETWORKS


class _OutOnly(torch.nn.Module):
    """Torchvision models return a dict; ONNX wants a plain tensor."""

    def __init__(self, model: torch.nn.Module):
        super().__init__()
        self.model = model

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.model(x)["out"]


def export(network: str, out_path: Path, width: int, height: int) -> None:
    model = NETWORKS[network](weights="DEFAULT")
    model.eval()

    out_path.parent.mkdir(parents=True, exist_ok=True)

    dummy = torch.randn(1, 3, height, width)

    torch.onnx.export(
        _OutOnly(model),
        dummy,
        str(out_path),
        opset_version=12,
        input_names=["images"],
        output_names=["logits"],
        dynamo=False,
    )

    print(f"Exported {network} ({width}x{height}) to {out_path}")


def main():
    parser = argparse.ArgumentParser(description="Export a segmentation network to ONNX")
    parser.add_argument("--network", default="fcn-resnet50", choices=sorted(NETWORKS))
    parser.add_argument("--out", default="models/fcn_resnet50.onnx", help="Output ONNX path")
    parser.add_argument("--width", type=int, default=512)
    parser.add_argument("--height", type=int, default=256)
    args = parser.parse_args()

    export(args.network, Path(args.out), args.width, args.height)


if __name__ == "__main__":
    main()
