"""
Perception Node — Entry Point

Runs every pipeline of a YAML pipeline document concurrently:

    inputs ──▶ inference stages (async engines) ──▶ outputs
                         ↕ EventBus (fan-out, failures, shutdown)

Each pipeline is built and driven independently: a pipeline whose wiring
or model fails to load is skipped and the others keep running.
"""
import sys
import signal
import argparse
from queue import Queue
from threading import Event
from typing import Dict, List, Optional

from utils.config import Config
from utils.constants import (
    DEFAULT_DRAIN_TIMEOUT, DEFAULT_FPS, DEFAULT_SERVER_URL, OUTPUT_VIEWER, VIEWER_QUEUE_SIZE,
)
from utils.failures import PipelineError, FailureManager
from utils.logger import Logger

from core.bus import EventBus
from core.graph import PipelineGraph
from core.runner import PipelineRunner
from core.spec import PipelineSpec, load_pipeline_document


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Perception Node - configurable inference pipelines")
    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to the pipeline YAML document'
    )
    parser.add_argument(
        '--pipeline', '-p',
        action='append',
        default=None,
        help='Only run the named pipeline (repeatable)'
    )
    parser.add_argument(
        '--fps',
        type=int,
        default=None,
        help='Target cycle rate per pipeline'
    )
    parser.add_argument(
        '--headless',
        action='store_true',
        help='Do not open any window (ImageWindow/RViz outputs stay silent)'
    )
    parser.add_argument(
        '--loop',
        action='store_true',
        help='Restart video inputs when they reach the end'
    )
    parser.add_argument(
        '--drain-timeout',
        type=float,
        default=None,
        help='Seconds to wait for in-flight requests on shutdown'
    )
    return parser.parse_args(argv)


class PerceptionNode:
    """
    Perception Node Orchestrator.

    Wires together:
      - one PipelineGraph + PipelineRunner thread per pipeline
      - a shared EventBus and FailureManager
      - optional Qt frame viewers for RViz outputs (main thread)
    """

    def __init__(self, args):
        # ── 1. Foundation ────────────────────────────────────────────
        self.config = Config()
        Logger.setup(self.config.get('logging', {}))
        self.logger = Logger("PerceptionNode")
        self.logger.info("Initializing Perception Node...")

        self.headless = args.headless
        self.fps = args.fps or self.config.get_int('runtime.fps', DEFAULT_FPS)
        self.drain_timeout = (
            args.drain_timeout if args.drain_timeout is not None
            else self.config.get_float('runtime.drain_timeout', DEFAULT_DRAIN_TIMEOUT)
        )
        self.config_path = args.config or self.config.get('runtime.pipeline_config')
        if not self.config_path:
            raise PipelineError("No pipeline config given (--config or PERCEPTION_PIPELINE_CONFIG)", critical=True)

        self.stop_event = Event()
        self.bus = EventBus()
        self.failures = FailureManager(self.config.get('failures', {}))

        # ── 2. Pipelines ─────────────────────────────────────────────
        self.viewer_queues: Dict[str, Queue] = {}
        self.runners: List[PipelineRunner] = []
        self._build_pipelines(args.pipeline, args.loop)

        # ── 3. OS Signals ────────────────────────────────────────────
        self._setup_signals()
        self.logger.info(f"Perception Node initialized with {len(self.runners)} pipeline(s)")

    def _build_pipelines(self, only: Optional[List[str]], loop_video: bool):
        """Build every pipeline; failures disable only the pipeline concerned."""
        for entry in load_pipeline_document(self.config_path):
            name = entry.get('name', '?') if isinstance(entry, dict) else '?'
            if only and name not in only:
                continue

            try:
                spec = PipelineSpec.from_dict(entry)
                options = {
                    'headless': self.headless,
                    'loop_video': loop_video,
                    'server_url': self.config.get('topic.server_url', DEFAULT_SERVER_URL),
                }
                if OUTPUT_VIEWER in spec.outputs and not self.headless:
                    options['viewer_queue'] = self.viewer_queues.setdefault(
                        spec.name, Queue(maxsize=VIEWER_QUEUE_SIZE)
                    )
                graph = PipelineGraph(
                    spec, bus=self.bus, failures=self.failures, options=options
                ).build()
            except PipelineError as e:
                self.logger.error(f"Pipeline '{name}' disabled: {e.message}")
                self.viewer_queues.pop(name, None)
                continue

            self.runners.append(PipelineRunner(
                graph, self.stop_event, fps=self.fps, drain_timeout=self.drain_timeout
            ))

    def _setup_signals(self):
        """Handle OS signals for graceful shutdown."""
        def handler(sig, frame):
            self.logger.info("Shutdown signal received")
            self.stop()
        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def start(self) -> int:
        """Start every pipeline and block until they finish or a stop is requested."""
        if not self.runners:
            self.logger.error("No pipeline could be built, nothing to run")
            return 1

        for runner in self.runners:
            runner.start()
        self.logger.info("Pipelines running")

        try:
            if self.viewer_queues:
                self._run_viewers()
            else:
                while not self.stop_event.is_set() and any(r.is_alive() for r in self.runners):
                    self.stop_event.wait(0.5)
        finally:
            self.stop()
        return 0

    def _run_viewers(self):
        """Qt event loop on the main thread, one viewer window per RViz pipeline."""
        from PyQt6.QtCore import QTimer
        from PyQt6.QtWidgets import QApplication
        from Handlers.Frame_Viewer_Handler import FrameViewerHandler

        app = QApplication(sys.argv)
        viewers = []
        for name, viewer_queue in self.viewer_queues.items():
            viewer = FrameViewerHandler(viewer_queue, title=f"Perception | {name}")
            viewer.show()
            viewers.append(viewer)

        def check_running():
            if self.stop_event.is_set() or not any(r.is_alive() for r in self.runners):
                app.quit()

        watchdog = QTimer()
        watchdog.timeout.connect(check_running)
        watchdog.start(250)

        app.exec()
        watchdog.stop()
        for viewer in viewers:
            viewer.stop()

    def stop(self):
        """Gracefully shutdown all pipelines (each drains its stages)."""
        if self.stop_event.is_set() and not any(r.is_alive() for r in self.runners):
            return

        self.stop_event.set()
        self.logger.info("Stopping Perception Node...")

        join_timeout = (self.drain_timeout or 0) + 2.0
        for runner in self.runners:
            if runner.is_alive():
                runner.join(timeout=join_timeout)
            self.logger.info(f"Pipeline '{runner.graph.name}' finished: {runner.finished_reason}")

        self.bus.clear()
        self.logger.info("Perception Node stopped successfully")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        node = PerceptionNode(args)
    except PipelineError as e:
        Logger("PerceptionNode").critical(e.message)
        return 2
    return node.start()


if __name__ == "__main__":
    sys.exit(main())
