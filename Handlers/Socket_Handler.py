"""
Socket Handler - Publishes detection results on a Socket.IO topic.

Implements the ResultSink protocol for the "RosTopic" output: every
delivered result set is emitted as one JSON event so remote subscribers
(dashboards, other nodes) receive the same objects the overlay shows.
Connection attempts run on a background thread so a slow or absent
server never stalls the pipeline thread; once connected the client
reconnects on its own with exponential backoff. While disconnected,
result sets are dropped rather than buffered.
"""
import threading
import time
from typing import Any, Dict, Optional

import socketio

from core.events import InferenceResults
from utils.constants import EVENT_DETECTIONS
from utils.logger import Logger

# Minimum seconds between two connection attempts made from consume()
CONNECT_RETRY_INTERVAL = 5.0


def build_payload(pipeline: str, event: InferenceResults) -> Dict[str, Any]:
    """JSON-ready message for one stage's results on one frame."""
    return {
        'pipeline': pipeline,
        'stage': event.stage,
        'source': event.frame.source,
        'sequenceId': event.frame.sequence_id,
        'timestamp': event.frame.timestamp,
        'frameSize': {'width': event.frame.width, 'height': event.frame.height},
        'objects': [
            {
                'label': r.label,
                'confidence': round(float(r.confidence), 4),
                'roi': {
                    'x': r.region.x,
                    'y': r.region.y,
                    'width': r.region.width,
                    'height': r.region.height,
                },
            }
            for r in event.results
        ],
    }


class SocketHandler:
    """Handles the Socket.IO connection and emits result payloads.

    Implements the ResultSink protocol:
        consume(event) -> None
        close() -> None
    """

    def __init__(self, name: str, pipeline: str, server_url: str,
                 event_name: str = EVENT_DETECTIONS, client: Optional[socketio.Client] = None):
        """
        Args:
            name: Output name (used in logs).
            pipeline: Pipeline this sink belongs to (part of every payload).
            server_url: URL of the Socket.IO server.
            event_name: Socket.IO event the payloads are emitted under.
            client: Pre-built client (tests); a reconnecting client is created otherwise.
        """
        self.name = name
        self.pipeline = pipeline
        self.server_url = server_url
        self.event_name = event_name
        self.sio = client or socketio.Client(reconnection=True, reconnection_attempts=10,
                                             reconnection_delay=2, reconnection_delay_max=30)
        self.connected = False
        self.sent = 0
        self.dropped = 0
        self._last_attempt = float('-inf')
        self._connector: Optional[threading.Thread] = None
        self.logger = Logger("SocketHandler")

        self._setup_handlers()

    def _setup_handlers(self):
        """Setup socket.io event handlers."""
        @self.sio.on('connect')
        def on_connect():
            self.connected = True
            self.logger.info(f"Connected to {self.server_url} for '{self.pipeline}/{self.name}'")

        @self.sio.on('disconnect')
        def on_disconnect():
            self.connected = False
            self.logger.warning(f"Disconnected from {self.server_url}")

    def connect(self) -> bool:
        """Start a connection attempt in the background (rate limited). Never blocks.

        Returns:
            True if the sink is connected right now.
        """
        if self.connected:
            return True
        if self._connector is not None and self._connector.is_alive():
            return False

        now = time.monotonic()
        if now - self._last_attempt < CONNECT_RETRY_INTERVAL:
            return False
        self._last_attempt = now

        self._connector = threading.Thread(
            target=self._connect_task, daemon=True, name=f"SocketConnect-{self.name}"
        )
        self._connector.start()
        return False

    def _connect_task(self) -> None:
        try:
            self.sio.connect(self.server_url)
            self.connected = True
        except socketio.exceptions.ConnectionError as e:
            self.logger.error(f"Connection to {self.server_url} failed: {e}")

    def consume(self, event: InferenceResults) -> None:
        if not self.connect():
            self.dropped += 1
            return
        self.sio.emit(self.event_name, build_payload(self.pipeline, event))
        self.sent += 1

    def close(self) -> None:
        """Disconnect from the server."""
        if self._connector is not None:
            self._connector.join(timeout=2.0)
        if self.connected:
            self.sio.disconnect()
            self.connected = False
        self.logger.info(f"Topic '{self.name}' closed ({self.sent} sent, {self.dropped} dropped)")
