import io
import logging
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from harvey import cli


class TestCli(unittest.TestCase):
    def tearDown(self) -> None:
        logging.getLogger().handlers.clear()

    def _run(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        code = 0
        with patch("sys.argv", ["harvey", *argv]), redirect_stdout(buffer):
            try:
                cli.main()
            except SystemExit as exc:
                code = exc.code or 0
        return code, buffer.getvalue()

    def test_diff_marks_added_words(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            old = Path(tmpdir) / "old.txt"
            new = Path(tmpdir) / "new.txt"
            old.write_text("Take ibuprofen.", encoding="utf-8")
            new.write_text("Take ibuprofen 400mg twice daily.", encoding="utf-8")
            code, output = self._run("diff", str(old), str(new))
        self.assertEqual(code, 0)
        self.assertEqual(output.strip(), "Take ibuprofen{+ 400mg twice daily+}.")

    def test_resolve_unknown_link_fails_generically(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "harvey.yaml"
            config.write_text(f"storage:\n  database_path: {tmpdir}/h.sqlite3\n", encoding="utf-8")
            code, output = self._run("--config", str(config), "resolve", "nope")
        self.assertEqual(code, 1)
        self.assertIn("Invalid or expired share link.", output)

    def test_doctor_reports_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "harvey.yaml"
            config.write_text(f"storage:\n  database_path: {tmpdir}/h.sqlite3\n", encoding="utf-8")
            code, output = self._run("--config", str(config), "doctor")
        self.assertEqual(code, 0)
        self.assertIn(f"Config: OK ({config})", output)
        self.assertIn("Table consultations: OK (0 row(s))", output)

    def test_warning_buffer_collects_warnings(self) -> None:
        handler = cli.WarningBufferHandler()
        handler.setFormatter(logging.Formatter(cli.LOG_FORMAT))
        logger = logging.getLogger("harvey.test")
        logger.addHandler(handler)
        try:
            logger.info("ignored")
            logger.warning("kept %s", 1)
        finally:
            logger.removeHandler(handler)
        self.assertEqual(handler.records, ["W | harvey.test | kept 1"])


if __name__ == "__main__":
    unittest.main()
