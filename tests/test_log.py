"""
Unit tests for atlas_graph.log
"""

from __future__ import annotations

import logging

from atlas_graph.log import LOGGER_NAME, setup_logger


class TestSetupLogger:
    def setup_method(self):
        self.logger = logging.getLogger(LOGGER_NAME)
        self.before = list(self.logger.handlers)

    def teardown_method(self):
        for handler in self.logger.handlers[:]:
            if handler not in self.before:
                handler.close()
                self.logger.removeHandler(handler)

    def test_writes_package_records_to_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logger(str(log_dir))
        logging.getLogger("atlas_graph.store").info("hello %s", "file")
        for handler in self.logger.handlers:
            handler.flush()
        files = list(log_dir.glob("atlas_graph_*.log"))
        assert len(files) == 1
        assert "hello file" in files[0].read_text(encoding="utf-8")

    def test_does_not_duplicate_handlers(self, tmp_path):
        setup_logger(str(tmp_path))
        setup_logger(str(tmp_path))
        added = [h for h in self.logger.handlers if h not in self.before]
        assert len(added) == 1
