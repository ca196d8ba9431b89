import numpy as np
import pytest
import torch
import torch.nn.functional as F

from segframe.perception.segmentation.base_engine import BaseSegmentationEngine
from segframe.utils.logger import setup_logger
from segframe.utils.types import ClassMap, DeviceTensor


class FakeEngine(BaseSegmentationEngine):
    """
    Deterministic stand-in for a network: class 0 is background, classes 1-3
    win when red, green or blue dominates. Alpha never reaches the logits.
    """

    def __init__(self, stride: int = 1, fail: bool = False):
        super().__init__(device="cpu", class_names=["background", "red", "green", "blue"])
        self.stride = stride
        self.fail = fail
        self.calls = 0
        self.reported = False
        self.closed = False
        self.hook = None

    @property
    def num_classes(self) -> int:
        return 4

    def _forward(self, tensor: DeviceTensor) -> torch.Tensor:
        self.calls += 1
        if self.hook is not None:
            self.hook()
        if self.fail:
            raise RuntimeError("CUDA error: device-side assert triggered")
        rgb = tensor.data[0, :3].to(self.device, dtype=torch.float32)
        background = torch.full_like(rgb[:1], 60.0)
        logits = torch.cat([background, rgb], dim=0) / 10.0
        if self.stride > 1:
            logits = F.avg_pool2d(logits[None], self.stride)[0]
        return logits

    def report(self) -> None:
        self.reported = True
        super().report()

    def close(self) -> None:
        self.closed = True
        super().close()


@pytest.fixture(autouse=True, scope="session")
def _logging():
    setup_logger(log_dir=None, level="DEBUG")


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def make_engine():
    return FakeEngine


def solid(width, height, rgb, channels=3, dtype=np.uint8):
    frame = np.zeros((height, width, channels), dtype=dtype)
    frame[..., :3] = rgb
    if channels == 4:
        frame[..., 3] = 255
    return frame


@pytest.fixture
def solid_frame():
    return solid


def class_map_from_ids(ids, source_rgb=(0, 0, 0), source_size=None, num_classes=4):
    """Build a ClassMap directly from a (gh, gw) id grid."""
    ids = torch.as_tensor(np.asarray(ids), dtype=torch.int64)
    scores = F.one_hot(ids, num_classes).permute(2, 0, 1).float()
    width, height = source_size or (ids.shape[1], ids.shape[0])
    data = torch.zeros(1, 4, height, width)
    data[0, :3] = torch.tensor(source_rgb, dtype=torch.float32).view(3, 1, 1)
    data[0, 3] = 255.0
    source = DeviceTensor(data=data, width=width, height=height)
    return ClassMap(scores=scores, class_ids=ids, confidence=1.0, source=source, generation=1)


@pytest.fixture
def make_class_map():
    return class_map_from_ids
