from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import cv2
import numpy as np
from rich.console import Console
from tqdm import tqdm

from segframe.inputs.base_input import BaseInput
from segframe.inputs.image_input import IMAGE_SUFFIXES, ImageInput
from segframe.inputs.video_input import VideoInput
from segframe.runtime.pipeline import SegmentationPipeline
from segframe.utils.config import PipelineConfig, get, load_yaml
from segframe.utils.logger import setup_logger
from segframe.utils.timing import FPSMeter


def make_run_dir(base_dir: str | Path) -> Path:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(base_dir) / f"run_{ts}"
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def open_input(path: str) -> BaseInput:
    p = Path(path)
    if p.is_dir() or p.suffix.lower() in IMAGE_SUFFIXES:
        return ImageInput(p)
    return VideoInput(p)


def to_bgr8(rgba: np.ndarray) -> np.ndarray:
    """Float RGBA (0..255) buffer -> uint8 BGR image for cv2.imwrite."""
    return cv2.cvtColor(np.clip(rgba, 0, 255).astype(np.uint8), cv2.COLOR_RGBA2BGR)


def main():
    parser = argparse.ArgumentParser(description="segframe - per-frame semantic segmentation overlay/mask")
    parser.add_argument("--config", default="configs/pipeline.yaml", help="Path to YAML config")
    parser.add_argument("--input", required=True, help="Image, directory of images, or video")
    parser.add_argument("--network", default=None, help="Override network.name (torchvision name or .onnx path)")
    args = parser.parse_args()

    cfg_dict: Dict[str, Any] = load_yaml(args.config)
    cfg = PipelineConfig.from_dict(cfg_dict)
    if args.network:
        cfg.network = args.network

    run_dir = make_run_dir(cfg.output_dir)
    logger = setup_logger(log_dir=run_dir, level=cfg.log_level)
    save_images = bool(get(cfg_dict, "runtime.save_images", True))

    console = Console()
    console.print(f"[bold]segframe[/bold] run dir: {run_dir}")

    source = open_input(args.input)
    size = source.size
    if size is None:
        raise RuntimeError(f"Could not determine frame size of {args.input}")
    cfg.width, cfg.height = size
    logger.info("Input: %s size=%dx%d network=%s", args.input, cfg.width, cfg.height, cfg.network)

    metrics: Dict[str, Any] = {"input": args.input, "network": cfg.network, "frames": []}
    fps_meter = FPSMeter()
    total = source.meta.frame_count if isinstance(source, VideoInput) and source.meta else None

    with SegmentationPipeline.from_config(cfg) as pipeline:
        for frame_id, packet in tqdm(source.frames(), total=total, desc="Segmenting"):
            result = pipeline.process(packet.frame)
            fps = fps_meter.tick()

            if save_images:
                arrays = result.to_numpy()
                if result.overlay_ok:
                    cv2.imwrite(str(run_dir / f"overlay_{frame_id:05d}.png"), to_bgr8(arrays["overlay"]))
                if result.mask_ok:
                    cv2.imwrite(str(run_dir / f"mask_{frame_id:05d}.png"), to_bgr8(arrays["mask"]))

            metrics["frames"].append(
                {
                    "frame_id": frame_id,
                    "fps": fps,
                    "stages_ms": result.stages_ms,
                    "overlay_ok": result.overlay_ok,
                    "mask_ok": result.mask_ok,
                    "failures": {stage: str(exc) for stage, exc in result.failures.items()},
                    "confidence": result.class_map.confidence if result.class_map else None,
                }
            )
    source.stop()

    metrics_path = run_dir / "metrics.json"
    metrics_path.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
    logger.info("Saved metrics: %s", metrics_path)
    logger.info("Done.")


if __name__ == "__main__":
    main()
