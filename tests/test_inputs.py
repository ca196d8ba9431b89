import cv2
import numpy as np

from segframe.inputs.image_input import ImageInput
from segframe.inputs.video_input import VideoInput


def test_video_input_configures_path_without_opening():
    vi = VideoInput("/tmp/video.mp4", allow_missing=True)
    assert str(vi.path) == "/tmp/video.mp4"
    assert vi.size is None
    assert list(vi.frames()) == []


def test_image_input_yields_bgr_frames(tmp_path):
    image = np.zeros((6, 8, 3), dtype=np.uint8)
    image[..., 2] = 255  # red in BGR
    cv2.imwrite(str(tmp_path / "a.png"), image)
    cv2.imwrite(str(tmp_path / "b.png"), image)
    (tmp_path / "notes.txt").write_text("skip me")

    source = ImageInput(tmp_path)
    assert source.size == (8, 6)
    frames = list(source.frames())
    assert [idx for idx, _ in frames] == [1, 2]
    packet = frames[0][1]
    assert packet.frame.layout == "bgr"
    assert (packet.frame.width, packet.frame.height) == (8, 6)
    assert packet.source_id.endswith("a.png")
