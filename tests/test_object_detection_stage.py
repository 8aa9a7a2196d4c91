import numpy as np
import pytest

from core.events import FrameRegion
from core.protocols import ComputeEngine, InferenceStage
from core.stages import ObjectDetectionStage, StageState
from utils.failures import CapacityError, DecodeError, EngineError, ModelLoadError, PipelineError

from conftest import FakeEngine, make_frame, make_stage, proposals


def test_scenario_a_single_result_above_threshold(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, 0.9, 0.1, 0.2, 0.5, 0.6])])
    stage = make_stage(engine, batch=1, confidence_threshold=0.5)

    assert stage.enqueue(frame, FrameRegion(10, 10, 50, 50, frame.sequence_id))
    assert stage.submit_request()
    assert stage.fetch_results()

    assert stage.get_results_length() == 1
    result = stage.get_location_result(0)
    assert result.label == "person"
    assert result.confidence == pytest.approx(0.9)
    assert result.region == FrameRegion(15, 20, 20, 20, frame.sequence_id)
    assert stage.get_result_frame(0) is frame
    assert stage.state is StageState.READY


def test_scenario_b_below_threshold_dropped(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, 0.3, 0.1, 0.2, 0.5, 0.6])])
    stage = make_stage(engine, confidence_threshold=0.5)

    stage.enqueue(frame, FrameRegion(10, 10, 50, 50, frame.sequence_id))
    stage.submit_request()

    assert stage.fetch_results()
    assert stage.get_results_length() == 0


def test_confidence_equal_to_threshold_is_kept(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, 0.5, 0.0, 0.0, 0.5, 0.5])])
    stage = make_stage(engine, confidence_threshold=0.5)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()
    assert stage.get_results_length() == 1


def test_scenario_d_enqueue_beyond_batch_fails(frame):
    stage = make_stage(FakeEngine(), batch=2)
    region = FrameRegion.full(frame)

    assert stage.enqueue(frame, region)
    assert stage.enqueue(frame, region)
    assert not stage.enqueue(frame, region)

    assert stage.pending_count() == 2
    assert isinstance(stage.last_error, CapacityError)
    assert stage.state is StageState.QUEUING


def test_enqueue_without_model_fails(frame):
    stage = ObjectDetectionStage("ObjectDetection", batch=1)
    assert not stage.enqueue(frame, FrameRegion.full(frame))
    assert stage.pending_count() == 0
    assert isinstance(stage.last_error, ModelLoadError)


def test_enqueue_region_outside_frame_fails(frame):
    stage = make_stage(FakeEngine())
    assert not stage.enqueue(frame, FrameRegion(700, 500, 10, 10, frame.sequence_id))
    assert stage.pending_count() == 0
    assert type(stage.last_error) is PipelineError
    assert "outside" in str(stage.last_error)


def test_second_submit_before_fetch_fails(frame):
    engine = FakeEngine(auto_complete=False)
    stage = make_stage(engine)

    stage.enqueue(frame, FrameRegion.full(frame))
    assert stage.submit_request()
    assert stage.state is StageState.SUBMITTED

    assert not stage.enqueue(frame, FrameRegion.full(frame))
    assert not stage.submit_request()
    assert isinstance(stage.last_error, CapacityError)
    assert len(engine.requests) == 1


def test_submit_with_empty_queue_fails():
    stage = make_stage(FakeEngine())
    assert not stage.submit_request()
    assert stage.state is StageState.IDLE


def test_fetch_before_completion_keeps_previous_results(frame):
    engine = FakeEngine(outputs=[proposals([0, 2, 0.8, 0.0, 0.0, 0.5, 0.5])])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    assert stage.fetch_results()
    previous = stage.get_location_result(0)

    engine.auto_complete = False
    next_frame = make_frame(sequence_id=1)
    assert stage.enqueue(next_frame, FrameRegion.full(next_frame))
    assert stage.submit_request()

    assert not stage.fetch_results()
    assert stage.get_results_length() == 1
    assert stage.get_location_result(0) == previous
    assert stage.is_outstanding()

    engine.complete()
    assert stage.fetch_results()
    assert stage.get_results_length() == 0
    assert not stage.fetch_results()


def test_fetch_without_request_returns_false():
    stage = make_stage(FakeEngine())
    assert not stage.fetch_results()


def test_roi_constraint_off_keeps_decoded_box(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, 0.9, -0.1, 0.5, 0.5, 1.2])])
    stage = make_stage(engine, enable_roi_constraint=False)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()

    assert stage.get_location_result(0).region == FrameRegion(-64, 240, 384, 336, 0)


def test_roi_constraint_on_clips_instead_of_rejecting(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, 0.9, -0.1, 0.5, 0.5, 1.2])])
    stage = make_stage(engine, enable_roi_constraint=True)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()

    assert stage.get_results_length() == 1
    assert stage.get_location_result(0).region == FrameRegion(0, 240, 320, 240, 0)


def test_rows_for_other_batch_slots_are_discarded(frame):
    engine = FakeEngine(outputs=[np.array([
        [3, 1, 0.9, 0.1, 0.1, 0.2, 0.2],
        [0, 1, 0.9, 0.1, 0.1, 0.2, 0.2],
        [-1, 0, 0, 0, 0, 0, 0],
        [0, 1, 0.9, 0.3, 0.3, 0.4, 0.4],
    ], dtype=np.float32)])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()

    assert stage.get_results_length() == 1
    assert stage.get_location_result(0).region.to_xyxy() == (64, 48, 128, 96)


def test_confidence_outside_unit_range_is_discarded(frame):
    engine = FakeEngine(outputs=[proposals(
        [0, 1, 1.7, 0.0, 0.0, 0.5, 0.5],
        [0, 1, -0.2, 0.0, 0.0, 0.5, 0.5],
        [0, 1, 0.9, 0.5, 0.5, 1.0, 1.0],
    )])
    stage = make_stage(engine, confidence_threshold=0.0)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert stage.fetch_results()
    assert stage.last_error is None
    assert stage.get_results_length() == 1
    result = stage.get_location_result(0)
    assert result.confidence == pytest.approx(0.9)
    assert result.region.to_xyxy() == (320, 240, 640, 480)


def test_batch_results_return_to_their_own_frames():
    first, second = make_frame(sequence_id=0), make_frame(sequence_id=1)
    engine = FakeEngine(outputs=[proposals(
        [1, 1, 0.9, 0.0, 0.0, 0.5, 0.5],
        [0, 2, 0.7, 0.5, 0.5, 1.0, 1.0],
    )])
    stage = make_stage(engine, batch=2)
    stage.enqueue(first, FrameRegion.full(first))
    stage.enqueue(second, FrameRegion(100, 100, 200, 100, second.sequence_id))
    stage.submit_request()
    stage.fetch_results()

    assert stage.get_result_frame(0) is second
    assert stage.get_location_result(0).region == FrameRegion(100, 100, 100, 50, 1)
    assert stage.get_result_frame(1) is first
    assert stage.get_location_result(1).label == "car"
    assert stage.get_batch_frames() == [first, second]
    assert len(engine.requests[0].batch) == 2
    assert engine.requests[0].batch[1].shape == (100, 200, 3)


def test_unknown_label_id_renders_placeholder(frame):
    engine = FakeEngine(outputs=[proposals([0, 7, 0.9, 0.0, 0.0, 0.5, 0.5])])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()
    assert stage.get_location_result(0).label == "label #7"


def test_malformed_output_yields_zero_results(frame):
    engine = FakeEngine(outputs=[np.zeros(5, dtype=np.float32)])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert stage.fetch_results()
    assert stage.get_results_length() == 0
    assert isinstance(stage.last_error, DecodeError)


def test_non_finite_output_is_a_decode_error(frame):
    engine = FakeEngine(outputs=[proposals([0, 1, np.nan, 0.0, 0.0, 0.5, 0.5])])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert stage.fetch_results()
    assert isinstance(stage.last_error, DecodeError)


def test_engine_failure_returns_stage_to_idle(frame):
    engine = FakeEngine(outputs=[EngineError("device lost")])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert not stage.fetch_results()
    assert not stage.is_outstanding()
    assert stage.state is StageState.IDLE
    assert stage.get_results_length() == 0
    assert isinstance(stage.last_error, EngineError)
    assert stage.enqueue(frame, FrameRegion.full(frame))


def test_engine_rejecting_run_drops_batch(frame):
    stage = make_stage(FakeEngine(fail_run=EngineError("queue closed")))
    stage.enqueue(frame, FrameRegion.full(frame))

    assert not stage.submit_request()
    assert stage.state is StageState.IDLE
    assert not stage.has_pending()
    assert isinstance(stage.last_error, EngineError)


def test_index_outside_results_raises(frame):
    stage = make_stage(FakeEngine(outputs=[proposals([0, 1, 0.9, 0.0, 0.0, 0.5, 0.5])]))
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()
    stage.fetch_results()

    with pytest.raises(IndexError):
        stage.get_location_result(1)
    with pytest.raises(IndexError):
        stage.get_location_result(-1)


def test_batch_clamped_to_engine_limit():
    stage = make_stage(FakeEngine(max_batch_size=2), batch=4)
    assert stage.batch_size == 2
    assert stage.model.max_batch_size == 2


def test_labels_fall_back_to_engine_labels():
    stage = make_stage(FakeEngine(labels=["a", "b"]))
    assert stage.model.labels == ["a", "b"]


def test_drain_waits_and_fetches(frame):
    engine = FakeEngine(auto_complete=False, outputs=[proposals([0, 1, 0.9, 0.0, 0.0, 0.5, 0.5])])
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert stage.drain(timeout=1.0)
    assert stage.get_results_length() == 1
    assert not stage.is_outstanding()


def test_drain_aborts_request_that_never_started(frame):
    engine = FakeEngine(auto_complete=False, complete_on_wait=False)
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.submit_request()

    assert not stage.drain(timeout=0)
    assert engine.requests[0].cancelled
    assert not stage.is_outstanding()


def test_release_frees_engine(frame):
    engine = FakeEngine()
    stage = make_stage(engine)
    stage.enqueue(frame, FrameRegion.full(frame))
    stage.release()

    assert engine.released
    assert not stage.loaded
    assert not stage.has_pending()


def test_stage_satisfies_the_graph_facing_protocol():
    engine = FakeEngine()
    stage = make_stage(engine)

    assert isinstance(engine, ComputeEngine)
    assert isinstance(stage, InferenceStage)

    class WithoutBatchFrames:
        name = "partial"
        last_error = None

    for member in ("load_network", "enqueue", "submit_request", "fetch_results",
                   "get_results_length", "get_location_result", "get_result_frame",
                   "has_pending", "pending_count", "is_outstanding", "drain", "release"):
        setattr(WithoutBatchFrames, member, getattr(ObjectDetectionStage, member))
    assert not isinstance(WithoutBatchFrames(), InferenceStage)
