from __future__ import annotations

from pathlib import Path
from typing import Generator, List, Optional, Sequence, Tuple

import cv2

from segframe.inputs.base_input import BaseInput
from segframe.utils.logger import get_logger
from segframe.utils.types import Frame, FramePacket

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff"}


class ImageInput(BaseInput):
    """Still images from a file, a directory, or an explicit list of paths."""

    def __init__(self, paths: str | Path | Sequence[str | Path]):
        self.logger = get_logger(__name__)
        self.paths = self._expand(paths)
        if not self.paths:
            raise FileNotFoundError(f"No images found in {paths}")
        self._size: Optional[Tuple[int, int]] = None

    @staticmethod
    def _expand(paths: str | Path | Sequence[str | Path]) -> List[Path]:
        if isinstance(paths, (str, Path)):
            root = Path(paths)
            if root.is_dir():
                return sorted(p for p in root.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
            return [root] if root.exists() else []
        return [Path(p) for p in paths if Path(p).exists()]

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the first image."""
        if self._size is None:
            image = cv2.imread(str(self.paths[0]), cv2.IMREAD_UNCHANGED)
            if image is not None:
                self._size = (int(image.shape[1]), int(image.shape[0]))
        return self._size

    def start(self) -> None:
        return

    def frames(self) -> Generator[Tuple[int, FramePacket], None, None]:
        for idx, path in enumerate(self.paths, start=1):
            image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if image is None:
                self.logger.warning("Could not read image %s; skipping", path)
                continue
            if image.ndim == 2:
                image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
            layout = "bgra" if image.shape[2] == 4 else "bgr"
            yield idx, FramePacket(frame=Frame(image=image, layout=layout), timestamp=float(idx), source_id=str(path))

    def stop(self) -> None:
        return
