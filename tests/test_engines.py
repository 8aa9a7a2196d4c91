import threading

import cv2
import numpy as np
import pytest

from core.engines import AsyncEngine, engine_backend_for
from core.engines.dnn import DnnEngine, companion_file, declared_batch_size
from core.models import ObjectDetectionModel
from core.stages import ObjectDetectionStage
from utils.failures import ConfigError, EngineError, ModelLoadError


class GatedEngine(AsyncEngine):
    """Returns one proposal row per image once the gate opens."""

    backend = "gated"

    def __init__(self, fail: bool = False):
        super().__init__("CPU")
        self.gate = threading.Event()
        self.fail = fail
        self.released = False

    def _load(self, model):
        self.labels = ["background", "person"]

    def _infer(self, batch):
        self.gate.wait(5)
        if self.fail:
            raise RuntimeError("device lost")
        return np.array([[i, 1, 0.9, 0, 0, 1, 1] for i in range(len(batch))], dtype=np.float32)

    def _release(self):
        self.released = True


@pytest.fixture
def weights(tmp_path):
    path = tmp_path / "model.bin"
    path.write_bytes(b"\0")
    return ObjectDetectionModel(str(path))


def image():
    return np.zeros((4, 4, 3), dtype=np.uint8)


def test_run_returns_before_inference_completes(weights):
    engine = GatedEngine()
    engine.load(weights)
    handle = engine.run([image(), image()])

    assert not engine.poll_completed(handle)
    engine.gate.set()
    assert engine.wait(handle, timeout=5)
    assert engine.collect(handle).shape == (2, 7)
    engine.release()
    assert engine.released


def test_failed_inference_surfaces_as_engine_error(weights):
    engine = GatedEngine(fail=True)
    engine.load(weights)
    engine.gate.set()
    handle = engine.run([image()])
    engine.wait(handle, timeout=5)

    with pytest.raises(EngineError, match="device lost"):
        engine.collect(handle)
    engine.release()


def test_abort_only_cancels_queued_requests(weights):
    engine = GatedEngine()
    engine.load(weights)
    running = engine.run([image()])
    queued = engine.run([image()])

    assert engine.abort(queued)
    with pytest.raises(EngineError, match="aborted"):
        engine.collect(queued)

    engine.gate.set()
    assert engine.wait(running, timeout=5)
    assert not engine.abort(running)
    engine.release()


def test_run_without_model_is_rejected():
    with pytest.raises(EngineError):
        GatedEngine().run([image()])


def test_missing_weights_is_a_model_load_error(tmp_path):
    with pytest.raises(ModelLoadError, match="not found"):
        GatedEngine().load(ObjectDetectionModel(str(tmp_path / "absent.xml")))


def test_dnn_engine_rejects_unknown_device(weights):
    with pytest.raises(ModelLoadError, match="not supported"):
        DnnEngine("TPU").load(weights)


IR_TEMPLATE = """<?xml version="1.0"?>
<net name="ssd" version="11">
  <layers>
    <layer id="0" name="image" type="Parameter" version="opset1">
      <data shape="{shape}" element_type="f32"/>
      <output>
        <port id="0" precision="FP32">
          {dims}
        </port>
      </output>
    </layer>
  </layers>
</net>
"""


def write_ir(tmp_path, batch):
    dims = "".join(f"<dim>{d}</dim>" for d in (batch, 3, 300, 300))
    xml = tmp_path / "ssd.xml"
    xml.write_text(IR_TEMPLATE.format(shape=f"{batch},3,300,300", dims=dims))
    (tmp_path / "ssd.bin").write_bytes(b"\0")
    return xml


class FakeNet:
    def empty(self):
        return False

    def setPreferableBackend(self, backend):
        self.backend = backend

    def setPreferableTarget(self, target):
        self.target = target


@pytest.mark.parametrize("batch, expected", [(1, 1), (4, 4), (-1, None), ("?", None)])
def test_ir_input_batch_dimension(tmp_path, batch, expected):
    assert declared_batch_size(str(write_ir(tmp_path, batch))) == expected


def test_prototxt_input_batch_dimension(tmp_path):
    weights = tmp_path / "ssd.caffemodel"
    prototxt = tmp_path / "ssd.prototxt"
    prototxt.write_text('name: "ssd"\ninput: "data"\ninput_shape { dim: 2 dim: 3 dim: 300 dim: 300 }\n')
    assert declared_batch_size(str(weights), str(prototxt)) == 2

    prototxt.write_text('input: "data"\ninput_dim: 1\ninput_dim: 3\ninput_dim: 300\ninput_dim: 300\n')
    assert declared_batch_size(str(weights), str(prototxt)) == 1
    assert declared_batch_size(str(tmp_path / "ssd.onnx")) is None


def test_dnn_engine_reports_fixed_batch_and_stage_clamps(tmp_path, monkeypatch):
    monkeypatch.setattr(cv2.dnn, "readNet", lambda model, config="": FakeNet())
    engine = DnnEngine("CPU")
    stage = ObjectDetectionStage("ObjectDetection", batch=4)
    stage.load_network(ObjectDetectionModel(str(write_ir(tmp_path, 1))), engine)

    assert engine.max_batch_size == 1
    assert stage.batch_size == 1
    engine.release()


def test_dnn_engine_needs_ir_weights(tmp_path):
    xml = tmp_path / "det.xml"
    xml.write_text("<net/>")
    assert companion_file(str(xml)) is None
    with pytest.raises(ModelLoadError):
        DnnEngine("CPU").load(ObjectDetectionModel(str(xml)))


@pytest.mark.parametrize("path, backend, expected", [
    ("models/ssd.xml", None, "dnn"),
    ("models/yolo11n.pt", None, "yolo"),
    ("models/custom.onnx", "YOLO", "yolo"),
])
def test_backend_selection(path, backend, expected):
    assert engine_backend_for(path, backend) == expected


def test_unknown_backend_rejected():
    with pytest.raises(ConfigError):
        engine_backend_for("m.xml", "tensorrt")
