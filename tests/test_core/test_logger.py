from __future__ import annotations

import json
import os

import pytest

from modal_basis.core.logger import StructuredLogger


@pytest.fixture
def slog(tmp_path):
    logger = StructuredLogger(log_dir=str(tmp_path / "logs"))
    yield logger
    logger.close()


class TestStructuredLogger:
    def test_creates_directory(self, slog):
        assert os.path.isdir(slog.log_dir)

    def test_log_operation(self, slog):
        slog.log_operation(run_id="run1", event_type="modal_basis.started",
                           data={"source": "bell.msh"})
        ops_file = os.path.join(slog.log_dir, "operations.jsonl")
        assert os.path.exists(ops_file)
        with open(ops_file) as f:
            record = json.loads(f.readline())
        assert record["event_type"] == "modal_basis.started"
        assert record["run_id"] == "run1"
        assert record["data"]["source"] == "bell.msh"
        assert "timestamp" in record

    def test_log_calculation(self, slog):
        slog.log_calculation(run_id="run2", inputs={"n_modes": 10},
                             outputs={"total_mass": 2.5},
                             validation={"rigid_body_check_passed": False})
        calc_file = os.path.join(slog.log_dir, "calculations.jsonl")
        with open(calc_file) as f:
            record = json.loads(f.readline())
        assert record["event_type"] == "calculation.completed"
        assert record["inputs"]["n_modes"] == 10
        assert record["outputs"]["total_mass"] == 2.5
        assert record["validation"]["rigid_body_check_passed"] is False
        assert record["metadata"] == {}

    def test_multiple_entries(self, slog):
        for i in range(5):
            slog.log_operation(run_id="r%d" % i, event_type="test", data={"i": i})
        with open(os.path.join(slog.log_dir, "operations.jsonl")) as f:
            lines = f.readlines()
        assert len(lines) == 5

    def test_app_log_file(self, slog):
        slog.log_operation(run_id="run3", event_type="modal_basis.started")
        for handler in slog.app.handlers:
            handler.flush()
        with open(os.path.join(slog.log_dir, "app.log")) as f:
            assert "run3 modal_basis.started" in f.read()

    def test_close_removes_handlers(self, tmp_path):
        logger = StructuredLogger(log_dir=str(tmp_path / "other"))
        logger.close()
        assert logger.app.handlers == []
