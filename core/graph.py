"""
Pipeline Graph — owns the inputs, inference stages and sinks of one
pipeline and drives its per-cycle execution.

    inputs ──FrameCaptured──▶ stages ──InferenceResults──▶ stages / sinks

Every producer publishes on its own bus topic ("<pipeline>/<producer>");
consumers are subscribed at build time in edge-declaration order, so one
result set reaches all of its consumers, in order, in the same cycle.

One cycle:
    1. collect: poll every outstanding request, downstream stages first so
       they are free again when their producers publish; a completed fetch
       publishes its results and frees the stage for this cycle's frame
    2. capture: pull the next frame from every input and publish it
       (each free consuming stage enqueues the full-frame region)
    3. dispatch: walk the stages in topological order, submit what was
       queued and poll once more so fast engines deliver in the same cycle
    A stage failure is recorded and never stops the other stages.
"""
import itertools
from typing import Any, Callable, Dict, List, Optional, Set

from core.bus import EventBus
from core.engines import create_engine
from core.events import (
    Frame, FrameRegion, FrameCaptured, InferenceResults, StageFailed, PipelineStopped,
)
from core.protocols import FrameSource, ResultSink, InferenceStage
from core.spec import PipelineSpec, StageSpec
from core.stages import STAGE_TYPES
from utils.failures import PipelineError, ConfigError, FailureManager
from utils.logger import Logger

SourceFactory = Callable[[str, PipelineSpec, Dict[str, Any]], FrameSource]
SinkFactory = Callable[[str, PipelineSpec, Dict[str, Any]], ResultSink]
EngineFactory = Callable[[StageSpec], Any]


def default_engine_factory(stage_spec: StageSpec):
    return create_engine(stage_spec.model, stage_spec.engine, stage_spec.backend)


def default_source_factory(kind: str, spec: PipelineSpec, options: Dict[str, Any]) -> FrameSource:
    from Handlers import create_source
    return create_source(kind, spec, options)


def default_sink_factory(kind: str, spec: PipelineSpec, options: Dict[str, Any]) -> ResultSink:
    from Handlers import create_sink
    return create_sink(kind, spec, options)


class PipelineGraph:
    """One running pipeline: static topology, per-stage owned engines."""

    def __init__(
        self,
        spec: PipelineSpec,
        bus: Optional[EventBus] = None,
        failures: Optional[FailureManager] = None,
        source_factory: SourceFactory = default_source_factory,
        sink_factory: SinkFactory = default_sink_factory,
        engine_factory: EngineFactory = default_engine_factory,
        options: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            spec: Pipeline description (validated on build()).
            bus: Shared event bus; a private one is created if omitted.
            failures: Shared FailureManager for runtime failure tracking.
            source_factory / sink_factory / engine_factory: Builders for the
                external collaborators, injectable for testing.
            options: Runtime options passed to the source and sink factories
                (headless, server_url, viewer queue, loop_video, ...).
        """
        self.spec = spec
        self.name = spec.name
        self.bus = bus or EventBus()
        self.failures = failures or FailureManager()
        self.source_factory = source_factory
        self.sink_factory = sink_factory
        self.engine_factory = engine_factory
        self.options = options or {}
        self.logger = Logger(f"PipelineGraph[{spec.name}]")

        self.sources: Dict[str, FrameSource] = {}
        self.stages: Dict[str, InferenceStage] = {}
        self.sinks: Dict[str, ResultSink] = {}

        self._sequence: Dict[str, Any] = {}
        self._exhausted: Set[str] = set()
        self._subscriptions: List[tuple] = []
        self._built = False
        self._started = False
        self._stopped = False
        self.cycles = 0

    def topic(self, producer: str) -> str:
        return f"{self.name}/{producer}"

    # ── Build ────────────────────────────────────────────────────────

    def build(self) -> "PipelineGraph":
        """
        Validate the wiring, load every stage's model and subscribe consumers.

        Raises:
            ConfigError: contradictory wiring or unknown task/backend.
            ModelLoadError: a stage's model or device could not be loaded.
        """
        if self._built:
            return self
        self.spec.validate()

        try:
            for stage_name in self.spec.topological_stages():
                self.stages[stage_name] = self._build_stage(self.spec.stage(stage_name))
            for kind in self.spec.inputs:
                self.sources[kind] = self.source_factory(kind, self.spec, self.options)
                self._sequence[kind] = itertools.count()
            for kind in self.spec.outputs:
                self.sinks[kind] = self.sink_factory(kind, self.spec, self.options)
        except Exception:
            self._release_stages()
            raise

        self._wire()
        self._built = True
        self.logger.info(
            f"Built with {len(self.sources)} input(s), {len(self.stages)} stage(s), "
            f"{len(self.sinks)} output(s)"
        )
        return self

    def _build_stage(self, stage_spec: StageSpec) -> InferenceStage:
        stage_cls = STAGE_TYPES.get(stage_spec.task)
        if stage_cls is None:
            raise ConfigError(
                f"Pipeline '{self.name}', stage '{stage_spec.name}': unknown task '{stage_spec.task}'"
            )
        stage = stage_cls(
            stage_spec.name,
            batch=stage_spec.batch,
            confidence_threshold=stage_spec.confidence_threshold,
            enable_roi_constraint=stage_spec.enable_roi_constraint,
        )
        model = stage_cls.model_class(
            model_path=stage_spec.model,
            label_path=stage_spec.label,
            max_batch_size=stage_spec.batch,
        )
        stage.load_network(model, self.engine_factory(stage_spec))
        return stage

    def _wire(self) -> None:
        for edge in self.spec.connects:
            topic = self.topic(edge.left)
            from_input = edge.left in self.sources
            for consumer in edge.right:
                if consumer in self.stages:
                    if from_input:
                        self._subscribe(FrameCaptured, self._frame_handler(consumer), topic)
                    else:
                        self._subscribe(InferenceResults, self._region_handler(consumer), topic)
                else:
                    self._subscribe(InferenceResults, self._sink_handler(consumer), topic)

    def _subscribe(self, event_type, handler, topic: str) -> None:
        self.bus.subscribe(event_type, handler, topic=topic)
        self._subscriptions.append((event_type, handler, topic))

    def _frame_handler(self, stage_name: str):
        stage = self.stages[stage_name]

        def enqueue_frame(event: FrameCaptured) -> None:
            if stage.is_outstanding():
                # Busy on an earlier frame: this one is skipped for the stage
                self.logger.debug(f"'{stage_name}' busy, frame {event.frame.sequence_id} skipped")
                return
            if not stage.enqueue(event.frame, FrameRegion.full(event.frame)):
                self._record(stage_name, stage.last_error)
        enqueue_frame.__qualname__ = f"enqueue_frame[{stage_name}]"
        return enqueue_frame

    def _region_handler(self, stage_name: str):
        stage = self.stages[stage_name]

        def enqueue_regions(event: InferenceResults) -> None:
            if event.results and stage.is_outstanding():
                self.logger.debug(
                    f"'{stage_name}' busy, {len(event.results)} region(s) of frame "
                    f"{event.frame.sequence_id} skipped"
                )
                return
            frame = event.frame
            for result in event.results:
                # Degenerate or off-frame boxes carry no pixels to infer on
                if result.region.clip(frame.width, frame.height).is_empty:
                    continue
                if not stage.enqueue(frame, result.region):
                    self._record(stage_name, stage.last_error)
                    break
        enqueue_regions.__qualname__ = f"enqueue_regions[{stage_name}]"
        return enqueue_regions

    def _sink_handler(self, sink_name: str):
        sink = self.sinks[sink_name]

        def deliver(event: InferenceResults) -> None:
            try:
                sink.consume(event)
            except Exception as e:
                self.failures.record_failure(e, origin=f"{self.name}/{sink_name}")
        deliver.__qualname__ = f"deliver[{sink_name}]"
        return deliver

    # ── Run ──────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start every input. Returns False if any input fails to start."""
        if not self._built:
            self.build()
        for kind, source in self.sources.items():
            if not source.start():
                self.logger.error(f"Input '{kind}' failed to start")
                return False
        self._started = True
        self.logger.info("Pipeline started")
        return True

    def run_cycle(self) -> bool:
        """Execute one cycle. Returns True while there is work left."""
        self.cycles += 1
        self._for_each_stage(self._collect, reverse=True)
        self._capture()
        self._for_each_stage(self._dispatch)
        return self.busy or len(self._exhausted) < len(self.sources)

    def _for_each_stage(self, step: Callable[[str, InferenceStage], None], reverse: bool = False) -> None:
        items = list(self.stages.items())
        for stage_name, stage in (reversed(items) if reverse else items):
            try:
                step(stage_name, stage)
            except Exception as e:
                self.logger.exception(f"Unexpected error in stage '{stage_name}'")
                self._record(stage_name, e)

    @property
    def busy(self) -> bool:
        return any(s.has_pending() or s.is_outstanding() for s in self.stages.values())

    def _capture(self) -> None:
        for kind, source in self.sources.items():
            if kind in self._exhausted:
                continue
            try:
                image = source.read_frame()
            except Exception as e:
                self._record(kind, e)
                continue

            if image is None:
                if getattr(source, "exhausted", False):
                    self.logger.info(f"Input '{kind}' exhausted")
                    self._exhausted.add(kind)
                continue

            frame = Frame.wrap(image, next(self._sequence[kind]), source=kind)
            self.bus.publish(FrameCaptured(source=kind, frame=frame), topic=self.topic(kind))

    def _collect(self, stage_name: str, stage: InferenceStage) -> None:
        """Fetch a finished request and publish it. A running one is left alone."""
        if not stage.is_outstanding():
            return
        if stage.fetch_results():
            if stage.last_error is not None:
                self._record(stage_name, stage.last_error)
            self._publish_results(stage_name, stage)
        elif not stage.is_outstanding():
            self._record(stage_name, stage.last_error)

    def _dispatch(self, stage_name: str, stage: InferenceStage) -> None:
        if stage.has_pending() and not stage.is_outstanding():
            if not stage.submit_request():
                self._record(stage_name, stage.last_error)
        self._collect(stage_name, stage)

    def _publish_results(self, stage_name: str, stage: InferenceStage) -> None:
        """One InferenceResults per frame of the fetched batch, results in decode order."""
        grouped: Dict[int, list] = {id(f): [] for f in stage.get_batch_frames()}
        for idx in range(stage.get_results_length()):
            frame = stage.get_result_frame(idx)
            grouped.setdefault(id(frame), []).append(stage.get_location_result(idx))

        topic = self.topic(stage_name)
        for frame in stage.get_batch_frames():
            self.bus.publish(
                InferenceResults(stage=stage_name, frame=frame, results=tuple(grouped[id(frame)])),
                topic=topic,
            )

    def _record(self, origin: str, error: Optional[Exception]) -> None:
        if error is None:
            return
        self.failures.record_failure(error, origin=f"{self.name}/{origin}")
        self.bus.publish(StageFailed(pipeline=self.name, stage=origin, error=error))

    # ── Shutdown ─────────────────────────────────────────────────────

    def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """
        Drain outstanding requests, deliver what they produced, then close
        sinks, release engines and stop inputs, in that order.
        """
        if self._stopped:
            return
        self._stopped = True

        for stage_name, stage in self.stages.items():
            if not stage.is_outstanding():
                continue
            try:
                if stage.drain(timeout if drain else 0):
                    self._publish_results(stage_name, stage)
            except Exception as e:
                self._record(stage_name, e)

        for event_type, handler, topic in self._subscriptions:
            self.bus.unsubscribe(event_type, handler, topic=topic)
        self._subscriptions.clear()

        for kind, sink in self.sinks.items():
            try:
                sink.close()
            except Exception as e:
                self.failures.record_failure(e, origin=f"{self.name}/{kind}")

        self._release_stages()

        if self._started:
            for kind, source in self.sources.items():
                try:
                    source.stop()
                except Exception as e:
                    self.failures.record_failure(e, origin=f"{self.name}/{kind}")

        self.bus.publish(PipelineStopped(pipeline=self.name))
        self.logger.info(f"Pipeline stopped after {self.cycles} cycle(s)")

    def _release_stages(self) -> None:
        for stage_name, stage in self.stages.items():
            try:
                stage.release()
            except PipelineError as e:
                self.failures.record_failure(e, origin=f"{self.name}/{stage_name}")
