"""Service configuration for the layout backend.

Values are read from the environment once, at import time.
"""

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv('GRAPH_LAYOUT_HOST', '127.0.0.1')
    port: int = int(os.getenv('GRAPH_LAYOUT_PORT', '8765'))
    snapshot_hz: float = float(os.getenv('GRAPH_LAYOUT_SNAPSHOT_HZ', '30'))
    tick_interval: float = float(os.getenv('GRAPH_LAYOUT_TICK_INTERVAL', '0.016'))
    log_level: str = os.getenv('GRAPH_LAYOUT_LOG_LEVEL', 'INFO')


CONFIG = ServerConfig()
