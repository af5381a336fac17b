import logging
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from pathlib import Path

import sys
from pathlib import Path as _Path

sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

from settlewatch.logging_setup import setup_logging


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        self._saved = (root.level, list(root.handlers))

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self._saved[1]:
                handler.close()
        root.handlers[:] = self._saved[1]
        root.setLevel(self._saved[0])

    def _stream_handlers(self) -> list[logging.Handler]:
        return [
            h
            for h in logging.getLogger().handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ]

    def test_without_log_file_stderr_carries_info(self) -> None:
        setup_logging(None)
        streams = self._stream_handlers()
        self.assertEqual(len(streams), 1)
        self.assertEqual(streams[0].level, logging.INFO)
        self.assertEqual(logging.getLogger().level, logging.INFO)

    def test_verbose_without_log_file_is_debug(self) -> None:
        setup_logging(None, verbose=True)
        self.assertEqual(self._stream_handlers()[0].level, logging.DEBUG)

    def test_log_file_gets_rotating_handler(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log_file = Path(td) / "logs" / "settlewatch.log"
            setup_logging(log_file)
            files = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
            self.assertEqual(len(files), 1)
            self.assertEqual(files[0].level, logging.INFO)
            self.assertTrue(log_file.parent.is_dir())
            # Stream level depends on whether stderr is a TTY.
            self.assertIn(self._stream_handlers()[0].level, (logging.INFO, logging.WARNING))
            files[0].close()


if __name__ == "__main__":
    unittest.main()
