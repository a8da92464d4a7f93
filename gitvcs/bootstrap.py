"""Bootstrap entry point: synchronize the configured working copy at startup."""

import argparse
import logging
import sys
from typing import List, Optional

from .config import Config, load_configuration, validate_configuration
from .engine import SynchronizationEngine, WorkingCopyState
from .errors import VcsException
from .performance import PerformanceLogger, get_performance_logger


def setup_logging(config: Config) -> None:
    """Setup logging configuration for the gitvcs loggers."""
    class OperationFormatter(logging.Formatter):
        def format(self, record):
            if hasattr(record, 'operation'):
                record.msg = f"[{record.operation}] {record.msg}"
            return super().format(record)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    loggers = [
        'gitvcs.bootstrap',
        'gitvcs.engine',
        'gitvcs.shadow',
        'gitvcs.conflict',
        'gitvcs.auth',
        'gitvcs.performance',
    ]

    formatter = OperationFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(getattr(logging, config.log_level))

        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.propagate = False


class RuntimeVersionControl:
    """
    Bootstrap facade over the synchronization engine.

    Synchronization is skipped when no working copy location or remote URL
    is configured. An absent working copy is checked out first; after that
    the working copy is always updated to the configured revision.
    """

    def __init__(
        self,
        config: Config,
        engine: Optional[SynchronizationEngine] = None,
        perf_logger: Optional[PerformanceLogger] = None
    ):
        self.config = config
        self._engine = engine
        self.perf_logger = perf_logger or get_performance_logger()
        self.logger = logging.getLogger('gitvcs.bootstrap')

    @property
    def engine(self) -> SynchronizationEngine:
        if self._engine is None:
            self._engine = SynchronizationEngine(self.config, perf_logger=self.perf_logger)
        return self._engine

    def get_implementation(self) -> str:
        return SynchronizationEngine.implementation_name

    def update(self) -> Optional[str]:
        """
        Check out (if needed) and update the working copy.

        Returns:
            Revision of the working copy, or None if synchronization is not configured
        """
        if not self.config.is_configured:
            self.logger.info("Working copy or remote repository not configured; skipping synchronization")
            return None

        working_copy = self.config.working_copy
        if self.engine.working_copy_state(working_copy) is WorkingCopyState.ABSENT:
            self.logger.info(f"Working copy {working_copy} does not exist; checking out")
            self.engine.checkout(self.config.remote_url, working_copy, self.config.revision)
        return self._update()

    def checkout(self) -> Optional[str]:
        """Fresh checkout of the configured remote, followed by an update."""
        if not self.config.is_configured:
            self.logger.info("Working copy or remote repository not configured; skipping checkout")
            return None

        self.engine.checkout(self.config.remote_url, self.config.working_copy, self.config.revision)
        return self._update()

    def _update(self) -> str:
        revision = self.engine.update(self.config.working_copy, self.config.revision)
        self.logger.info(f"Working copy {self.config.working_copy} is at revision {revision}")
        return revision

    def status(self) -> dict:
        """Describe the configured working copy without touching the remote."""
        status = {
            "implementation": self.get_implementation(),
            "configured": self.config.is_configured,
        }
        summary = self.perf_logger.get_performance_summary()
        status["operations"] = summary["total_operations"]
        if summary["total_operations"]:
            status["success_rate"] = f"{summary['success_rate']:.1%}"
        if self.config.local_url is None:
            return status

        working_copy = self.config.working_copy
        state = self.engine.working_copy_state(working_copy)
        status["working_copy"] = str(working_copy)
        status["state"] = state.value
        if state in (WorkingCopyState.CHECKED_OUT, WorkingCopyState.UNCACHED):
            status["revision"] = self.engine.get_local_revision(working_copy)
        return status


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point for the gitvcs command."""
    parser = argparse.ArgumentParser(
        prog="gitvcs",
        description="Synchronize a working copy with a remote Git repository"
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="update",
        choices=["update", "checkout", "status"],
        help="Operation to perform (default: update)"
    )
    args = parser.parse_args(argv)

    logger = logging.getLogger('gitvcs.bootstrap')
    try:
        config = load_configuration()
        setup_logging(config)

        for message in validate_configuration(config):
            if message.startswith("ERROR"):
                logger.error(message)
            else:
                logger.warning(message)

        vcs = RuntimeVersionControl(config)
        if args.command == "status":
            for key, value in vcs.status().items():
                print(f"{key}: {value}")
        elif args.command == "checkout":
            vcs.checkout()
        else:
            vcs.update()
        if args.command != "status":
            vcs.perf_logger.log_performance_summary()
    except VcsException as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"operation": e.operation or args.command})
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
