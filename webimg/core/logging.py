"""Logging setup: console, webimg.log in the output root, and a FlightLogger ring buffer for forensics."""

import logging
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

from webimg.core.config import Settings, get_config

FLIGHT_LOG_CAPACITY = 50_000
LOG_FILENAME = "webimg.log"
# Relative to cwd when no output root is known yet.
DEFAULT_FORENSICS_DIR = Path.cwd() / "logs" / "forensics"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


_flight_logger: "FlightLogger | None" = None


class FlightLogger(logging.Handler):
    """
    Circular buffer handler: keeps the last 50,000 log records (all levels) in memory.
    dump(label) writes the buffer to {forensics_dir}/{label}_{timestamp}.log.
    """

    def __init__(
        self,
        capacity: int = FLIGHT_LOG_CAPACITY,
        forensics_dir: str | Path | None = None,
    ) -> None:
        super().__init__(level=logging.DEBUG)
        self._buffer: deque[logging.LogRecord] = deque(maxlen=capacity)
        self._forensics_dir = Path(forensics_dir if forensics_dir is not None else DEFAULT_FORENSICS_DIR)

    def emit(self, record: logging.LogRecord) -> None:
        self._buffer.append(record)

    def dump(self, label: str = "webimg") -> str:
        """Write buffer to forensics dir; return path to the written file."""
        self._forensics_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        filepath = self._forensics_dir / f"{label}_{timestamp}.log"
        formatter = self.formatter or logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
        with open(filepath, "w") as f:
            for record in self._buffer:
                f.write(formatter.format(record) + "\n")
        return str(filepath)

    def __len__(self) -> int:
        return len(self._buffer)


def get_flight_logger() -> FlightLogger | None:
    """Return the FlightLogger handler created by setup_logging(), if any."""
    return _flight_logger


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging.

    Invariants:
    - The root logger is set to DEBUG so that all records reach handlers.
    - Console handler logs at settings.log_level (WARNING by default) so progress rendering stays readable.
    - When an output root is configured, INFO and above also go to <output>/webimg.log.
    - A FlightLogger handler captures all levels into an in-memory circular buffer, dumped on fatal errors.
    """
    global _flight_logger
    cfg = settings or get_config()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    # Remove existing handlers so we don't duplicate when called again
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, cfg.log_level.upper(), logging.WARNING))
    console.setFormatter(formatter)
    root.addHandler(console)

    if cfg.output:
        out = Path(cfg.output)
        out.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(out / LOG_FILENAME, encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    flight = FlightLogger(
        capacity=FLIGHT_LOG_CAPACITY,
        forensics_dir=cfg.resolved_forensics_dir(),
    )
    flight.setLevel(logging.DEBUG)
    flight.setFormatter(formatter)
    root.addHandler(flight)
    _flight_logger = flight
