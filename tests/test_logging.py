"""Tests for revbench.logging."""

from __future__ import annotations

import logging
import tempfile
import unittest
from pathlib import Path

from revbench.errors import ConfigError
from revbench.logging import get_logger, setup_logging


class TestSetupLogging(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger("revbench")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def _console_level(self, logger: logging.Logger) -> int:
        return next(
            h.level for h in logger.handlers if not isinstance(h, logging.FileHandler)
        )

    def test_console_levels(self) -> None:
        self.assertEqual(self._console_level(setup_logging()), logging.INFO)
        self.assertEqual(self._console_level(setup_logging(verbose=True)), logging.DEBUG)
        self.assertEqual(self._console_level(setup_logging(quiet=True)), logging.WARNING)
        self.assertEqual(
            self._console_level(setup_logging(verbose=True, quiet=True)), logging.DEBUG
        )

    def test_reconfiguring_replaces_handlers(self) -> None:
        setup_logging()
        logger = setup_logging()
        self.assertEqual(len(logger.handlers), 1)

    def test_log_file_gets_debug_in_new_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "logs" / "run.log"
            setup_logging(quiet=True, log_file=log_file)
            get_logger("store").debug("Wrote times/c1.json")
            for handler in logging.getLogger("revbench").handlers:
                handler.flush()
            self.assertIn("revbench.store: Wrote times/c1.json", log_file.read_text())

    def test_unopenable_log_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "file"
            blocker.write_text("")
            with self.assertRaises(ConfigError):
                setup_logging(log_file=blocker / "run.log")

    def test_http_client_logging_follows_verbosity(self) -> None:
        setup_logging()
        self.assertEqual(logging.getLogger("urllib3").level, logging.WARNING)
        setup_logging(verbose=True)
        self.assertEqual(logging.getLogger("urllib3").level, logging.DEBUG)
        setup_logging()


class TestGetLogger(unittest.TestCase):
    def test_namespaced(self) -> None:
        self.assertEqual(get_logger("orchestrator").name, "revbench.orchestrator")


if __name__ == "__main__":
    unittest.main()
