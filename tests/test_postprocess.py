import numpy as np
import pytest
import torch

from segframe.perception.segmentation.palette import ClassPalette
from segframe.perception.segmentation.postprocess import SegmentationPostProcessor
from segframe.utils.errors import PostProcessError
from segframe.utils.types import FilterMode

COLORS = [(0, 0, 0), (200, 0, 0), (0, 200, 0), (0, 0, 200)]


@pytest.fixture
def post():
    palette = ClassPalette(["bg", "r", "g", "b"], COLORS, overlay_alpha=102.0)
    return SegmentationPostProcessor(palette, device="cpu")


def test_overlay_blends_class_color_over_frame(post, make_class_map):
    cmap = make_class_map([[1, 1], [1, 1]], source_rgb=(50, 100, 150))
    out = post.overlay(cmap, 2, 2, FilterMode.POINT)
    a = 102.0 / 255.0
    expected = [a * 200 + (1 - a) * 50, (1 - a) * 100, (1 - a) * 150, 255.0]
    assert out.shape == (2, 2, 4)
    assert torch.allclose(out[0, 0], torch.tensor(expected), atol=1e-3)


def test_mask_is_unblended_class_color(post, make_class_map):
    cmap = make_class_map([[2, 3]], source_rgb=(255, 255, 255))
    out = post.mask(cmap, 2, 1, "point")
    assert out[0, 0].tolist() == [0.0, 200.0, 0.0, 255.0]
    assert out[0, 1].tolist() == [0.0, 0.0, 200.0, 255.0]


def test_point_upsampling_repeats_cells(post, make_class_map):
    cmap = make_class_map([[1, 2], [3, 0]], source_size=(4, 4))
    out = post.mask(cmap, 4, 4, FilterMode.POINT)
    assert out[:2, :2, 0].eq(200).all()
    assert out[:2, 2:, 1].eq(200).all()
    assert out[2:, :2, 2].eq(200).all()
    assert out[2:, 2:, :3].eq(0).all()


def test_linear_filter_blends_across_class_boundaries(post, make_class_map):
    cmap = make_class_map([[1, 3]], source_size=(8, 1))
    point = post.mask(cmap, 8, 1, FilterMode.POINT)
    linear = post.mask(cmap, 8, 1, FilterMode.LINEAR)
    assert set(point[0, :, 0].tolist()) == {0.0, 200.0}
    middle = linear[0, 4]
    assert 0.0 < middle[0].item() < 200.0
    assert 0.0 < middle[2].item() < 200.0
    assert linear[0, :, 3].eq(255).all()


def test_uniform_map_is_filter_independent(post, make_class_map):
    cmap = make_class_map(np.full((3, 3), 2), source_size=(9, 6))
    assert torch.allclose(post.overlay(cmap, 9, 6, "point"), post.overlay(cmap, 9, 6, "linear"))


def test_overlay_and_mask_resolutions_are_independent(post, make_class_map):
    cmap = make_class_map(np.ones((4, 4), dtype=np.int64), source_size=(16, 12))
    assert post.overlay(cmap, 16, 12, "linear").shape == (12, 16, 4)
    assert post.mask(cmap, 8, 6, "point").shape == (6, 8, 4)


def test_zero_target_fails_without_touching_buffer(post, make_class_map):
    cmap = make_class_map([[1, 1], [1, 1]])
    out = torch.full((1, 1, 4), 7.0)
    with pytest.raises(PostProcessError):
        post.mask(cmap, 0, 1, "point", out=out)
    assert out.eq(7.0).all()


def test_missing_class_map_raises(post):
    with pytest.raises(PostProcessError):
        post.overlay(None, 4, 4)
    with pytest.raises(PostProcessError):
        post.mask(None, 4, 4)


def test_wrong_output_shape_raises(post, make_class_map):
    cmap = make_class_map([[1]])
    with pytest.raises(PostProcessError):
        post.mask(cmap, 2, 2, out=torch.zeros(2, 3, 4))


def test_unknown_filter_raises(post, make_class_map):
    with pytest.raises(PostProcessError):
        post.mask(make_class_map([[1]]), 1, 1, "bicubic")


def test_writes_into_output_buffer_in_place(post, make_class_map):
    out = torch.zeros(2, 2, 4)
    result = post.mask(make_class_map([[3, 3], [3, 3]]), 2, 2, out=out)
    assert result.data_ptr() == out.data_ptr()
    assert out[..., 2].eq(200).all()


def test_class_ids_and_binary_mask(post, make_class_map):
    cmap = make_class_map([[0, 1], [1, 1]])
    ids = post.class_ids(cmap, 4, 4)
    assert ids.dtype == np.uint8
    assert ids.tolist()[0] == [0, 0, 1, 1]

    selected = post.binary_mask(cmap, {1}, 4, 4, cleanup=False)
    assert selected.sum() == 12
    assert selected[0, 0] == 0
