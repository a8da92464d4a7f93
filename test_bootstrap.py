#!/usr/bin/env python3
"""
Unit tests for the bootstrap facade and the gitvcs command.

The engine is mocked; these tests only cover which engine operations the
facade decides to run.
"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

# Add the project root to the path so we can import gitvcs modules
import sys
sys.path.insert(0, str(Path(__file__).parent))

from gitvcs.bootstrap import RuntimeVersionControl, main
from gitvcs.config import Config
from gitvcs.engine import SynchronizationEngine, WorkingCopyState
from gitvcs.errors import VcsConflict
from gitvcs.performance import PerformanceLogger


class TestRuntimeVersionControl(unittest.TestCase):
    """Test cases for the bootstrap decisions."""

    def setUp(self):
        print(f"\nSetting up test: {self._testMethodName}")
        self.temp_dir = Path(tempfile.mkdtemp())
        self.working_copy = self.temp_dir / "config"
        self.config = Config(
            local_url=str(self.working_copy),
            remote_url="https://example.com/config.git",
            revision="release",
        )
        self.engine = Mock(spec=SynchronizationEngine)
        self.engine.update.return_value = "c" * 40
        self.vcs = RuntimeVersionControl(self.config, engine=self.engine)

    def tearDown(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_unconfigured_skips(self):
        """Without a working copy and remote nothing is synchronized."""
        engine = Mock(spec=SynchronizationEngine)
        vcs = RuntimeVersionControl(Config(remote_url="https://example.com/config.git"), engine=engine)

        with self.assertLogs('gitvcs.bootstrap', level='INFO') as logs:
            self.assertIsNone(vcs.update())
            self.assertIsNone(vcs.checkout())

        self.assertEqual(engine.method_calls, [])
        self.assertTrue(any("skipping" in line for line in logs.output))
        print("  ✓ Unconfigured bootstrap skipped")

    def test_absent_working_copy_is_checked_out_then_updated(self):
        self.engine.working_copy_state.return_value = WorkingCopyState.ABSENT

        self.assertEqual(self.vcs.update(), "c" * 40)

        self.engine.checkout.assert_called_once_with(
            "https://example.com/config.git", self.working_copy, "release"
        )
        self.engine.update.assert_called_once_with(self.working_copy, "release")
        print("  ✓ Absent working copy checked out")

    def test_existing_working_copy_is_only_updated(self):
        for state in (WorkingCopyState.CHECKED_OUT, WorkingCopyState.UNCACHED):
            with self.subTest(state=state):
                self.engine.reset_mock()
                self.engine.working_copy_state.return_value = state

                self.vcs.update()

                self.engine.checkout.assert_not_called()
                self.engine.update.assert_called_once_with(self.working_copy, "release")

    def test_explicit_checkout(self):
        self.vcs.checkout()

        self.engine.checkout.assert_called_once_with(
            "https://example.com/config.git", self.working_copy, "release"
        )
        self.engine.update.assert_called_once_with(self.working_copy, "release")

    def test_errors_propagate(self):
        self.engine.working_copy_state.return_value = WorkingCopyState.CHECKED_OUT
        self.engine.update.side_effect = VcsConflict("local changes", operation="update")

        with self.assertRaises(VcsConflict):
            self.vcs.update()

    def test_status(self):
        self.engine.working_copy_state.return_value = WorkingCopyState.CHECKED_OUT
        self.engine.get_local_revision.return_value = "a" * 40

        status = self.vcs.status()

        self.assertEqual(status["implementation"], "Git")
        self.assertEqual(status["state"], "checked_out")
        self.assertEqual(status["revision"], "a" * 40)
        self.assertTrue(status["configured"])

    def test_status_reports_operation_summary(self):
        perf = PerformanceLogger(logger_name='gitvcs.performance.test')
        vcs = RuntimeVersionControl(Config(), engine=self.engine, perf_logger=perf)
        self.assertEqual(vcs.status()["operations"], 0)
        self.assertNotIn("success_rate", vcs.status())

        with perf.time_operation("checkout"):
            pass
        try:
            with perf.time_operation("update"):
                raise VcsConflict("local changes", operation="update")
        except VcsConflict:
            pass

        status = vcs.status()
        self.assertEqual(status["operations"], 2)
        self.assertEqual(status["success_rate"], "50.0%")

    def test_engine_built_from_configuration(self):
        vcs = RuntimeVersionControl(Config())
        self.assertIsInstance(vcs.engine, SynchronizationEngine)
        self.assertEqual(vcs.get_implementation(), "Git")


class TestMain(unittest.TestCase):
    """Test cases for the gitvcs command."""

    def test_update_when_unconfigured_exits_cleanly(self):
        with patch("gitvcs.bootstrap.load_configuration", return_value=Config()), \
                patch("gitvcs.bootstrap.setup_logging"):
            self.assertEqual(main([]), 0)

    def test_failure_exits_with_error(self):
        with patch("gitvcs.bootstrap.load_configuration", return_value=Config()), \
                patch("gitvcs.bootstrap.setup_logging"), \
                patch.object(RuntimeVersionControl, "checkout", side_effect=VcsConflict("boom")):
            self.assertEqual(main(["checkout"]), 1)

    def test_status_command(self):
        with patch("gitvcs.bootstrap.load_configuration", return_value=Config()), \
                patch("gitvcs.bootstrap.setup_logging"), \
                patch("builtins.print") as mock_print:
            self.assertEqual(main(["status"]), 0)

        mock_print.assert_any_call("implementation: Git")

    def test_update_logs_performance_summary(self):
        perf = Mock(spec=PerformanceLogger)
        with patch("gitvcs.bootstrap.load_configuration", return_value=Config()), \
                patch("gitvcs.bootstrap.setup_logging"), \
                patch("gitvcs.bootstrap.get_performance_logger", return_value=perf):
            self.assertEqual(main(["update"]), 0)

        perf.log_performance_summary.assert_called_once_with()

    def test_status_does_not_log_performance_summary(self):
        perf = Mock(spec=PerformanceLogger)
        perf.get_performance_summary.return_value = {"total_operations": 0, "average_duration": 0.0}
        with patch("gitvcs.bootstrap.load_configuration", return_value=Config()), \
                patch("gitvcs.bootstrap.setup_logging"), \
                patch("gitvcs.bootstrap.get_performance_logger", return_value=perf), \
                patch("builtins.print") as mock_print:
            self.assertEqual(main(["status"]), 0)

        perf.log_performance_summary.assert_not_called()
        mock_print.assert_any_call("operations: 0")



def run_tests():
    """Run all bootstrap tests."""
    print("Running Bootstrap Tests")
    print("=" * 60)

    loader = unittest.TestLoader()
    test_suite = unittest.TestSuite()
    for case in (TestRuntimeVersionControl, TestMain):
        test_suite.addTests(loader.loadTestsFromTestCase(case))

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout)
    result = runner.run(test_suite)

    success = len(result.failures) == 0 and len(result.errors) == 0
    print(f"\nOverall result: {'PASS' if success else 'FAIL'}")
    return success


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
