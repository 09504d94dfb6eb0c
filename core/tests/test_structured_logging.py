"""Tests for run/phase logging context."""

import logging
import unittest

from core.structured_logging import (
    _RunContextFilter,
    get_phase,
    get_run_id,
    new_run_token,
    phase_scope,
    set_run_id,
)


class TestStructuredLogging(unittest.TestCase):
    def test_run_token_is_identifier_safe(self) -> None:
        token = new_run_token()
        self.assertEqual(len(token), 16)
        self.assertTrue(token.isalnum())

    def test_set_run_id(self) -> None:
        self.assertEqual(set_run_id("abc"), "abc")
        self.assertEqual(get_run_id(), "abc")
        generated = set_run_id()
        self.assertEqual(get_run_id(), generated)

    def test_phase_scope_sets_and_resets_phase(self) -> None:
        before = get_phase()
        with self.assertLogs("core.structured_logging", level="INFO") as captured:
            with phase_scope("CopyNodes"):
                self.assertEqual(get_phase(), "CopyNodes")
        self.assertEqual(get_phase(), before)
        self.assertTrue(any("Phase CopyNodes finished" in line for line in captured.output))

    def test_phase_scope_logs_abort_and_reraises(self) -> None:
        with self.assertLogs("core.structured_logging", level="ERROR") as captured:
            with self.assertRaises(ValueError):
                with phase_scope("WipeDestination"):
                    raise ValueError("boom")
        self.assertTrue(any("WipeDestination aborted" in line for line in captured.output))

    def test_filter_injects_context(self) -> None:
        set_run_id("run9")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        with phase_scope("Preflight"):
            _RunContextFilter().filter(record)
        self.assertEqual(record.run_id, "run9")
        self.assertEqual(record.phase, "Preflight")


if __name__ == "__main__":
    unittest.main()
