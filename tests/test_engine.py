import pytest
import torch

from segframe.perception.segmentation.factory import create_engine
from segframe.perception.segmentation.format_converter import FormatConverter
from segframe.perception.segmentation.torchvision_engine import TorchvisionSegmentationEngine
from segframe.utils.types import ClassMap
from segframe.utils.errors import InferenceError


def test_class_map_reflects_dominant_channel(fake_engine, solid_frame):
    tensor = FormatConverter("cpu").convert(solid_frame(6, 4, (255, 0, 0)))
    cmap = fake_engine.run_forward(tensor, 6, 4)
    assert cmap.class_ids.shape == (4, 6)
    assert cmap.class_ids.eq(1).all()
    assert cmap.scores.shape == (4, 4, 6)
    assert torch.allclose(cmap.scores.sum(dim=0), torch.ones(4, 6))
    assert 0.0 < cmap.confidence <= 1.0
    assert fake_engine.class_map is cmap


def test_generation_increments_and_map_is_replaced(fake_engine, solid_frame):
    converter = FormatConverter("cpu")
    first = fake_engine.run_forward(converter.convert(solid_frame(2, 2, (255, 0, 0))), 2, 2)
    second = fake_engine.run_forward(converter.convert(solid_frame(2, 2, (0, 0, 255))), 2, 2)
    assert second.generation == first.generation + 1
    assert fake_engine.class_map is second
    assert second.class_ids.eq(3).all()


def test_native_grid_can_be_coarser_than_frame(make_engine, solid_frame):
    engine = make_engine(stride=2)
    tensor = FormatConverter("cpu").convert(solid_frame(8, 6, (0, 255, 0)))
    cmap = engine.run_forward(tensor, 8, 6)
    assert (cmap.grid_width, cmap.grid_height) == (4, 3)


def test_backend_failure_becomes_inference_error(make_engine, solid_frame):
    engine = make_engine(fail=True)
    tensor = FormatConverter("cpu").convert(solid_frame(2, 2, (1, 2, 3)))
    with pytest.raises(InferenceError):
        engine.run_forward(tensor, 2, 2)
    assert engine.class_map is None


def test_dimension_mismatch_is_rejected(fake_engine, solid_frame):
    tensor = FormatConverter("cpu").convert(solid_frame(4, 4, (1, 2, 3)))
    with pytest.raises(InferenceError):
        fake_engine.run_forward(tensor, 8, 8)
    with pytest.raises(InferenceError):
        fake_engine.run_forward(None, 4, 4)


def test_profiler_records_network_time(fake_engine, solid_frame):
    tensor = FormatConverter("cpu").convert(solid_frame(2, 2, (1, 2, 3)))
    fake_engine.run_forward(tensor, 2, 2)
    fake_engine.run_forward(tensor, 2, 2)
    assert fake_engine.profiler.counts["network"] == 2
    fake_engine.report()


def test_unknown_network_fails_to_load():
    with pytest.raises(InferenceError):
        create_engine("resnet-9000", device="cpu")


def test_missing_onnx_model_fails_to_load(tmp_path):
    with pytest.raises(InferenceError):
        create_engine(str(tmp_path / "missing.onnx"), device="cpu")


def test_torchvision_network_runs_at_native_resolution(solid_frame):
    engine = TorchvisionSegmentationEngine("lraspp-mobilenet", device="cpu", pretrained=False, input_size=(32, 24))
    tensor = FormatConverter("cpu").convert(solid_frame(64, 48, (255, 0, 0)))
    cmap = engine.run_forward(tensor, 64, 48)
    assert engine.num_classes == 21
    assert cmap.scores.shape == (21, 24, 32)
    assert int(cmap.class_ids.max()) < 21
    engine.close()
    assert engine.class_map is None


def export_tiny_model(path, model, example):
    pytest.importorskip("onnx")
    model.eval()
    torch.onnx.export(
        model, example, str(path), opset_version=13, input_names=["images"], output_names=["logits"], dynamo=False
    )
    return path


@pytest.fixture
def tiny_onnx(tmp_path):
    return export_tiny_model(tmp_path / "tiny.onnx", torch.nn.Conv2d(3, 4, kernel_size=1), torch.randn(1, 3, 12, 16))


def test_onnx_engine_runs_on_model_grid(tiny_onnx, solid_frame):
    pytest.importorskip("onnxruntime")
    from segframe.perception.segmentation.onnx_engine import OnnxSegmentationEngine

    engine = OnnxSegmentationEngine(
        tiny_onnx, device="cpu", providers=["CPUExecutionProvider"], class_names=["a", "b", "c", "d"]
    )
    assert engine.input_size == (16, 12)
    assert engine.num_classes == 4

    tensor = FormatConverter("cpu").convert(solid_frame(32, 24, (255, 0, 0)))
    cmap = engine.run_forward(tensor, 32, 24)
    assert isinstance(cmap, ClassMap)
    assert cmap.scores.shape == (4, 12, 16)
    assert (cmap.grid_width, cmap.grid_height) == (16, 12)
    assert torch.allclose(cmap.scores.sum(dim=0), torch.ones(12, 16), atol=1e-5)
    engine.close()
    assert engine.session is None


def test_onnx_engine_falls_back_to_cpu_and_trusts_model_class_count(tiny_onnx):
    pytest.importorskip("onnxruntime")
    engine = create_engine(
        str(tiny_onnx), device="cpu", providers=["NoSuchExecutionProvider"], class_names=["a", "b", "c"]
    )
    assert engine.session.get_providers() == ["CPUExecutionProvider"]
    assert engine.num_classes == 4


def test_onnx_model_without_image_input_is_rejected(tmp_path):
    pytest.importorskip("onnxruntime")
    path = export_tiny_model(tmp_path / "linear.onnx", torch.nn.Linear(3, 4), torch.randn(1, 3))
    with pytest.raises(InferenceError):
        create_engine(str(path), device="cpu", providers=["CPUExecutionProvider"])
