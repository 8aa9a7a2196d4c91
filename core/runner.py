"""
Pipeline Runner — drives one PipelineGraph in its own thread.

Each pipeline gets a runner, so several pipelines advance concurrently
while every graph stays single-threaded; engines do their heavy work on
their own worker threads in the background.
"""
import time
from threading import Thread, Event
from typing import Optional

from core.graph import PipelineGraph
from utils.constants import DEFAULT_DRAIN_TIMEOUT, DEFAULT_FPS
from utils.logger import Logger


class PipelineRunner(Thread):
    """Cycles a pipeline at a target rate until stopped or out of input."""

    def __init__(
        self,
        graph: PipelineGraph,
        stop_event: Event,
        fps: int = DEFAULT_FPS,
        drain_timeout: Optional[float] = DEFAULT_DRAIN_TIMEOUT,
    ):
        """
        Args:
            graph: A built PipelineGraph.
            stop_event: Shared threading.Event, set to signal shutdown.
            fps: Target cycle rate.
            drain_timeout: Seconds to wait for outstanding requests on shutdown
                           (None waits until they complete).
        """
        super().__init__(name=f"Pipeline-{graph.name}", daemon=True)
        self.graph = graph
        self.stop_event = stop_event
        self.fps = fps
        self.drain_timeout = drain_timeout
        self.finished_reason = ""
        self.logger = Logger(f"PipelineRunner[{graph.name}]")

    def run(self) -> None:
        """Main loop — runs until stop_event is set or inputs are exhausted."""
        try:
            if not self.graph.start():
                self.finished_reason = "input failed to start"
                return

            self.logger.info(f"Pipeline running ({self.fps} FPS target)")
            cycle_interval = 1.0 / max(self.fps, 1)

            while not self.stop_event.is_set():
                loop_start = time.monotonic()

                if not self.graph.run_cycle():
                    self.finished_reason = "inputs exhausted"
                    self.logger.info("All inputs exhausted and stages drained")
                    break

                # Precise cycle timing (subtract processing time)
                elapsed = time.monotonic() - loop_start
                sleep_time = cycle_interval - elapsed
                if sleep_time > 0:
                    self.stop_event.wait(sleep_time)
            else:
                self.finished_reason = "stop requested"
        except Exception:
            self.finished_reason = "crashed"
            self.logger.exception("Pipeline loop crashed")
        finally:
            self.graph.stop(drain=True, timeout=self.drain_timeout)
