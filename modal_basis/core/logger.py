"""Structured run logging: a rotating application log plus JSONL records."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class StructuredLogger:
    def __init__(self, log_dir: str = "data/logs"):
        self._log_dir = log_dir
        os.makedirs(log_dir, exist_ok=True)
        self._setup_app_logger()

    def _setup_app_logger(self) -> None:
        self._app_logger = logging.getLogger("modal_basis.run." + str(id(self)))
        if not self._app_logger.handlers:
            handler = RotatingFileHandler(
                os.path.join(self._log_dir, "app.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self._app_logger.addHandler(handler)
            self._app_logger.setLevel(logging.DEBUG)

    @property
    def app(self) -> logging.Logger:
        return self._app_logger

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def close(self) -> None:
        for handler in list(self._app_logger.handlers):
            handler.close()
            self._app_logger.removeHandler(handler)

    def _write_jsonl(self, filename: str, record: dict) -> None:
        filepath = os.path.join(self._log_dir, filename)
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_operation(
        self,
        run_id: str,
        event_type: str,
        data: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": run_id,
            "event_type": event_type,
            "data": data or {},
            "metadata": metadata or {},
        }
        self._write_jsonl("operations.jsonl", record)
        self._app_logger.info("%s %s", run_id, event_type)

    def log_calculation(
        self,
        run_id: str,
        inputs: dict,
        outputs: dict,
        validation: Optional[dict] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": run_id,
            "event_type": "calculation.completed",
            "inputs": inputs,
            "outputs": outputs,
            "validation": validation or {},
            "metadata": metadata or {},
        }
        self._write_jsonl("calculations.jsonl", record)
        self._app_logger.info("%s calculation.completed", run_id)
