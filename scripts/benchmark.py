#!/usr/bin/env python3
"""
Time SegmentationPipeline.process() on synthetic frames.
"""
from __future__ import annotations

import argparse
import time

import numpy as np

from segframe.runtime.pipeline import SegmentationPipeline
from segframe.utils.config import PipelineConfig
from segframe.utils.logger import setup_logger

WARMUP = 5


def bench(cfg: PipelineConfig, n: int) -> dict:
    rng = np.random.default_rng(0)
    frame = rng.integers(0, 256, size=(cfg.height, cfg.width, 3), dtype=np.uint8)
    latencies = []
    with SegmentationPipeline.from_config(cfg) as pipeline:
        for _ in range(WARMUP):
            pipeline.process(frame)
        for _ in range(n):
            t0 = time.perf_counter()
            pipeline.process(frame)
            latencies.append((time.perf_counter() - t0) * 1000.0)
    lat = np.asarray(latencies)
    return {
        "fps": 1000.0 / lat.mean(),
        "latency_ms_p50": float(np.percentile(lat, 50)),
        "latency_ms_p95": float(np.percentile(lat, 95)),
    }


def main():
    parser = argparse.ArgumentParser(description="Benchmark the segmentation pipeline")
    parser.add_argument("--network", default="fcn-resnet50", help="torchvision name or .onnx path")
    parser.add_argument("--width", type=int, default=640)
    parser.add_argument("--height", type=int, default=480)
    parser.add_argument("--frames", type=int, default=50)
    parser.add_argument("--device", default=None)
    args = parser.parse_args()

    setup_logger(log_dir=None, level="WARNING")
    cfg = PipelineConfig(width=args.width, height=args.height, network=args.network, device=args.device)
    results = bench(cfg, args.frames)

    print(f"\n=== segframe benchmark: {args.network} {args.width}x{args.height} ===")
    for key, value in results.items():
        print(f"{key}: {value:.2f}")


if __name__ == "__main__":
    main()
