"""
Declarative pipeline description.

One YAML document may hold several pipelines:

    Pipelines:
    - name: object
      inputs: [Video]
      input_path: /data/PETS.mp4
      infers:
        - name: ObjectDetection
          model: models/person-detection-retail-0013.xml
          engine: GPU
          label: models/person.labels
          batch: 1
          confidence_threshold: 0.5
          enable_roi_constraint: true
      outputs: [ImageWindow, RosTopic]
      connects:
        - left: Video
          right: [ObjectDetection]
        - left: ObjectDetection
          right: [ImageWindow, RosTopic]

PipelineSpec.validate() rejects contradictory wiring before anything is
loaded; every error names the offending pipeline, edge or stage.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from utils.constants import (
    DEFAULT_BATCH, DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_DEVICE,
    INPUT_KINDS, INPUT_VIDEO, INPUT_IMAGE, OUTPUT_KINDS,
)
from utils.failures import ConfigError
from utils.logger import Logger

logger = Logger("PipelineSpec")

INPUTS_NEEDING_PATH = (INPUT_VIDEO, INPUT_IMAGE)


def _as_name_list(value: Any, what: str, pipeline: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"Pipeline '{pipeline}': '{what}' must be a list of names")
    return tuple(value)


@dataclass(frozen=True)
class StageSpec:
    """Options of one inference stage."""
    name: str
    model: str
    engine: str = DEFAULT_DEVICE
    label: Optional[str] = None
    batch: int = DEFAULT_BATCH
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    enable_roi_constraint: bool = False
    task: str = "ObjectDetection"
    backend: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], pipeline: str) -> "StageSpec":
        if not isinstance(data, dict):
            raise ConfigError(f"Pipeline '{pipeline}': each infer entry must be a mapping")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"Pipeline '{pipeline}': infer entry without a name")
        where = f"Pipeline '{pipeline}', stage '{name}'"

        model = data.get("model")
        if not isinstance(model, str) or not model:
            raise ConfigError(f"{where}: 'model' path is required")

        batch = data.get("batch", DEFAULT_BATCH)
        if isinstance(batch, bool) or not isinstance(batch, int) or batch < 1:
            raise ConfigError(f"{where}: 'batch' must be a positive integer, got {batch!r}")

        threshold = data.get("confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) \
                or not 0.0 <= float(threshold) <= 1.0:
            raise ConfigError(
                f"{where}: 'confidence_threshold' must be a number in [0, 1], got {threshold!r}"
            )

        roi_constraint = data.get("enable_roi_constraint", False)
        if not isinstance(roi_constraint, bool):
            raise ConfigError(f"{where}: 'enable_roi_constraint' must be true or false")

        engine = data.get("engine") or DEFAULT_DEVICE
        label = data.get("label") or None
        return cls(
            name=name,
            model=model,
            engine=str(engine).strip(),
            label=str(label) if label else None,
            batch=batch,
            confidence_threshold=float(threshold),
            enable_roi_constraint=roi_constraint,
            task=str(data.get("task", "ObjectDetection")),
            backend=data.get("backend"),
        )


@dataclass(frozen=True)
class EdgeSpec:
    """One 'connects' entry: producer -> consumers."""
    left: str
    right: Tuple[str, ...]


@dataclass(frozen=True)
class PipelineSpec:
    name: str
    inputs: Tuple[str, ...]
    infers: Tuple[StageSpec, ...] = ()
    outputs: Tuple[str, ...] = ()
    connects: Tuple[EdgeSpec, ...] = ()
    input_path: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineSpec":
        if not isinstance(data, dict):
            raise ConfigError("Each pipeline must be a mapping")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError("Pipeline without a name")

        infers = data.get("infers") or []
        if not isinstance(infers, list):
            raise ConfigError(f"Pipeline '{name}': 'infers' must be a list")

        connects = data.get("connects") or []
        if not isinstance(connects, list):
            raise ConfigError(f"Pipeline '{name}': 'connects' must be a list")
        edges = []
        for entry in connects:
            if not isinstance(entry, dict) or not isinstance(entry.get("left"), str):
                raise ConfigError(f"Pipeline '{name}': connect entry {entry!r} needs a 'left' name")
            right = _as_name_list(entry.get("right"), f"right of {entry['left']}", name)
            if not right:
                raise ConfigError(f"Pipeline '{name}': edge from '{entry['left']}' has no consumers")
            edges.append(EdgeSpec(left=entry["left"], right=right))

        input_path = data.get("input_path")
        known = {"name", "inputs", "infers", "outputs", "connects", "input_path"}
        return cls(
            name=name,
            inputs=_as_name_list(data.get("inputs"), "inputs", name),
            infers=tuple(StageSpec.from_dict(s, name) for s in infers),
            outputs=_as_name_list(data.get("outputs"), "outputs", name),
            connects=tuple(edges),
            input_path=str(input_path) if input_path is not None else None,
            options={k: v for k, v in data.items() if k not in known},
        )

    # ── Graph queries ────────────────────────────────────────────────

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.infers)

    def stage(self, name: str) -> StageSpec:
        for s in self.infers:
            if s.name == name:
                return s
        raise KeyError(name)

    def consumers(self, producer: str) -> List[str]:
        """Consumers of a producer, in edge-declaration order."""
        return [c for edge in self.connects if edge.left == producer for c in edge.right]

    def producers(self, consumer: str) -> List[str]:
        return [edge.left for edge in self.connects if consumer in edge.right]

    def topological_stages(self) -> List[str]:
        """Stages ordered so every producer precedes its consumers (Kahn, declaration-stable)."""
        stages = list(self.stage_names)
        stage_set = set(stages)
        indegree = {s: 0 for s in stages}
        for s in stages:
            for consumer in set(self.consumers(s)) & stage_set:
                indegree[consumer] += 1

        ordered = []
        ready = [s for s in stages if indegree[s] == 0]
        while ready:
            current = ready.pop(0)
            ordered.append(current)
            for consumer in dict.fromkeys(self.consumers(current)):
                if consumer in stage_set:
                    indegree[consumer] -= 1
                    if indegree[consumer] == 0:
                        ready.append(consumer)

        if len(ordered) != len(stages):
            cyclic = [s for s in stages if s not in ordered]
            raise ConfigError(
                f"Pipeline '{self.name}': connections form a cycle through stage(s) "
                f"{', '.join(cyclic)}"
            )
        return ordered

    # ── Validation ───────────────────────────────────────────────────

    def validate(self) -> "PipelineSpec":
        where = f"Pipeline '{self.name}'"
        if not self.inputs:
            raise ConfigError(f"{where}: at least one input is required")
        for kind in self.inputs:
            if kind not in INPUT_KINDS:
                raise ConfigError(f"{where}: unknown input '{kind}' (expected one of {INPUT_KINDS})")
            if kind in INPUTS_NEEDING_PATH and not self.input_path:
                raise ConfigError(f"{where}: input '{kind}' requires 'input_path'")
        for kind in self.outputs:
            if kind not in OUTPUT_KINDS:
                raise ConfigError(f"{where}: unknown output '{kind}' (expected one of {OUTPUT_KINDS})")

        seen = {}
        for kind, names in (("input", self.inputs), ("stage", self.stage_names), ("output", self.outputs)):
            for n in names:
                if n in seen:
                    raise ConfigError(f"{where}: name '{n}' is declared as both {seen[n]} and {kind}")
                seen[n] = kind

        inputs, stages, outputs = set(self.inputs), set(self.stage_names), set(self.outputs)
        pairs = set()
        for edge in self.connects:
            if edge.left in outputs:
                raise ConfigError(f"{where}: edge '{edge.left}' -> {list(edge.right)}: "
                                  f"output '{edge.left}' cannot produce")
            if edge.left not in inputs and edge.left not in stages:
                raise ConfigError(f"{where}: edge '{edge.left}' -> {list(edge.right)}: "
                                  f"unknown producer '{edge.left}'")
            for consumer in edge.right:
                label = f"{where}: edge '{edge.left}' -> '{consumer}'"
                if consumer in inputs:
                    raise ConfigError(f"{label}: input '{consumer}' cannot consume")
                if consumer not in stages and consumer not in outputs:
                    raise ConfigError(f"{label}: unknown consumer '{consumer}'")
                if edge.left in inputs and consumer in outputs:
                    raise ConfigError(f"{label}: input connected directly to result sink")
                if (edge.left, consumer) in pairs:
                    raise ConfigError(f"{label}: duplicate connection")
                pairs.add((edge.left, consumer))

        self.topological_stages()

        for s in self.stage_names:
            if not self.producers(s):
                logger.warning(f"{where}: stage '{s}' has no producer and will never run")
        for n in self.inputs:
            if not self.consumers(n):
                logger.warning(f"{where}: input '{n}' is not connected")
        for n in self.outputs:
            if not self.producers(n):
                logger.warning(f"{where}: output '{n}' is not connected")
        return self


def load_pipeline_document(path: str) -> List[Dict[str, Any]]:
    """Read the raw pipeline entries of a YAML document. Unrelated keys are ignored."""
    try:
        with open(Path(path), 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read pipeline config {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed pipeline config {path}: {e}")

    if not isinstance(document, dict) or not isinstance(document.get("Pipelines"), list):
        raise ConfigError(f"{path}: expected a top-level 'Pipelines' list")
    return document["Pipelines"]


def load_pipeline_specs(path: str) -> List[PipelineSpec]:
    """Parse and validate every pipeline in the document."""
    return [PipelineSpec.from_dict(entry).validate() for entry in load_pipeline_document(path)]
