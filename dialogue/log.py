from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger


LOG_FORMAT = "{time:HH:mm:ss} | {level} | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[component]} | {message}"


class RunLogger:
    """Owns the loguru sinks for one simulation run.

    Modules log through ``logger`` (or a logger from :meth:`bind`) and never
    add sinks themselves; the entry point calls ``start()`` before the first
    turn and ``close()`` when the run ends.
    """

    def __init__(self, level: str = "INFO", log_dir: Optional[str] = None, sink=None) -> None:
        self.level = level.upper()
        self.log_dir = log_dir
        self.sink = sink or sys.stderr
        self._sink_ids: List[int] = []
        self.log_file: Optional[Path] = None

    def start(self) -> "RunLogger":
        logger.remove()
        logger.configure(extra={"component": "main"})
        self._sink_ids.append(logger.add(self.sink, level=self.level, colorize=False, format=LOG_FORMAT))
        if self.log_dir:
            path = Path(self.log_dir)
            path.mkdir(parents=True, exist_ok=True)
            self.log_file = path / "conversation_{time:YYYYMMDD_HHmmss}.log"
            self._sink_ids.append(
                logger.add(
                    str(self.log_file),
                    level="DEBUG",
                    format=FILE_FORMAT,
                    rotation="10 MB",
                    retention=5,
                    enqueue=True,
                )
            )
        logger.debug(f"run_logger_start | level={self.level} log_dir={self.log_dir}")
        return self

    def bind(self, component: str):
        return logger.bind(component=component)

    async def flush(self) -> None:
        await logger.complete()

    def close(self) -> None:
        for sink_id in self._sink_ids:
            try:
                logger.remove(sink_id)
            except ValueError:
                # already removed by another logger.remove() call
                pass
        self._sink_ids.clear()
