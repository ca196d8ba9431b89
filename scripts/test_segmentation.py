import sys

import cv2

from segframe.runtime.pipeline import SegmentationPipeline
from segframe.utils.config import PipelineConfig
from segframe.utils.types import Frame


def main():
    image_path = sys.argv[1] if len(sys.argv) > 1 else "data/samples/rgb.png"
    image = cv2.imread(image_path)
    if image is None:
        raise RuntimeError(f"Cannot read image: {image_path}")

    height, width = image.shape[:2]
    cfg = PipelineConfig(width=width, height=height)
    with SegmentationPipeline.from_config(cfg) as pipeline:
        result = pipeline.process(Frame(image=image, layout="bgr"))
        class_ids = pipeline.postprocessor.class_ids(result.class_map, width, height) if result.class_map else None

    print("Segmentation OK" if result.ok else f"Segmentation failed: {result.failed_stages}")
    print("Overlay shape:", tuple(result.overlay.shape))
    print("Mask shape:", tuple(result.mask.shape))
    if result.class_map is not None:
        print("Confidence:", round(result.class_map.confidence, 4))
        print("Classes present:", sorted(set(class_ids.ravel().tolist())))
    print("Stages (ms):", {k: round(v, 2) for k, v in result.stages_ms.items()})


if __name__ == "__main__":
    main()
