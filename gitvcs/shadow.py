"""Shadow clone: a private bare mirror of the remote kept beside the working copy."""

import logging
import shutil
from pathlib import Path
from typing import List, Optional

from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .auth import AuthenticationContext, NoAuthentication
from .conflict import PushOutcome, outcome_from_push_info
from .errors import IOFailure, translate_git_error
from .paths import redact_url
from .performance import PerformanceLogger, get_performance_logger
from .revision import ORIGIN, open_repository

SHADOW_SUFFIX = ".shadow.git"
# Fetch refspec of a mirror clone
MIRROR_REFSPEC = "+refs/*:refs/*"


def shadow_path(working_copy: Path) -> Path:
    """Location of the shadow clone for a working copy: ``<parent>/<name>.shadow.git``."""
    working_copy = Path(working_copy)
    return working_copy.parent / f"{working_copy.name}{SHADOW_SUFFIX}"


class ShadowRepositoryCache:
    """
    Maintains the shadow clone of the remote repository.

    The working copy is cloned from, fetched from and pushed to the shadow
    clone; only the shadow clone talks to the real remote. Every network
    operation runs inside an authentication session, and every repository
    handle is closed before a method returns. The shadow clone is never
    deleted here once it has been created successfully.
    """

    def __init__(
        self,
        authentication: Optional[AuthenticationContext] = None,
        perf_logger: Optional[PerformanceLogger] = None
    ):
        self.authentication = authentication or NoAuthentication()
        self.perf_logger = perf_logger or get_performance_logger()
        self.logger = logging.getLogger('gitvcs.shadow')

    def path_for(self, working_copy: Path) -> Path:
        return shadow_path(working_copy)

    def exists(self, working_copy: Path) -> bool:
        """Check that a usable bare shadow clone is present."""
        path = self.path_for(working_copy)
        if not path.is_dir():
            return False
        try:
            repo = Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False
        try:
            return repo.bare
        finally:
            repo.close()

    def remote_url(self, working_copy: Path) -> Optional[str]:
        """URL of the real remote recorded in the shadow clone."""
        with open_repository(self.path_for(working_copy), "shadow_remote_url") as repo:
            try:
                return repo.remote(ORIGIN).url
            except ValueError:
                return None

    def ensure(
        self,
        remote_url: str,
        working_copy: Path,
        authentication: Optional[AuthenticationContext] = None
    ) -> Path:
        """
        Make sure the shadow clone exists, tracks ``remote_url`` and is current.

        Creates a mirror clone of ``remote_url`` if there is none yet. An
        existing shadow clone whose origin is a different remote is re-pointed
        at ``remote_url`` and pruned; otherwise it is fetched.

        Returns:
            Path of the shadow clone

        Raises:
            RemoteUnavailable: if the remote cannot be reached
            IOFailure: if the shadow clone directory cannot be created
        """
        authentication = authentication or self.authentication
        path = self.path_for(working_copy)
        if self.exists(working_copy):
            current = self.remote_url(working_copy)
            if current is not None and _same_remote(current, remote_url):
                return self.refresh(working_copy, authentication)
            return self._retarget(path, current, remote_url, authentication)
        if path.exists():
            raise IOFailure(
                f"Cannot create shadow clone: {path} exists and is not a bare repository",
                operation="shadow_clone"
            )

        self.logger.info(f"Creating shadow clone of {redact_url(remote_url)} at {path}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise translate_git_error(e, "shadow_clone") from e

        with self.perf_logger.time_operation("shadow_clone", {"path": str(path)}):
            try:
                with authentication.session() as env:
                    repo = Repo.clone_from(remote_url, path, mirror=True, env=env)
                try:
                    # Pushes from the shadow clone name their refs explicitly
                    repo.git.config("--unset", "remote.origin.mirror")
                finally:
                    repo.close()
            except (GitCommandError, OSError) as e:
                if path.exists():
                    shutil.rmtree(path, ignore_errors=True)
                raise translate_git_error(e, "shadow_clone", network=True) from e

        return path

    def _retarget(
        self,
        path: Path,
        current: Optional[str],
        remote_url: str,
        authentication: AuthenticationContext
    ) -> Path:
        """Point an existing shadow clone at another remote and drop the refs it no longer has."""
        self.logger.warning(
            f"Shadow clone {path} tracks {redact_url(current or '<none>')}; "
            f"switching it to {redact_url(remote_url)}"
        )
        with open_repository(path, "shadow_retarget") as repo:
            with self.perf_logger.time_operation("shadow_retarget", {"path": str(path)}):
                try:
                    if current is None:
                        repo.git.remote("add", ORIGIN, remote_url)
                        repo.git.config("--replace-all", "remote.origin.fetch", MIRROR_REFSPEC)
                    else:
                        repo.remote(ORIGIN).set_url(remote_url)
                    with authentication.session() as env:
                        with repo.git.custom_environment(**env):
                            repo.git.fetch("--prune", ORIGIN)
                            symref = repo.git.ls_remote("--symref", ORIGIN, "HEAD")
                    head = _symref_target(symref)
                    if head:
                        repo.git.symbolic_ref("HEAD", head)
                except GitCommandError as e:
                    if current is not None:
                        repo.remote(ORIGIN).set_url(current)
                    raise translate_git_error(e, "shadow_retarget", network=True) from e
        return path

    def refresh(self, working_copy: Path, authentication: Optional[AuthenticationContext] = None) -> Path:
        """
        Fetch every ref from the remote into the shadow clone.

        Fetching an up-to-date remote is a no-op.

        Raises:
            RemoteUnavailable: if the remote cannot be reached
            IOFailure: if the shadow clone is missing or unusable
        """
        authentication = authentication or self.authentication
        path = self.path_for(working_copy)
        with open_repository(path, "shadow_refresh") as repo:
            with self.perf_logger.time_operation("shadow_refresh", {"path": str(path)}):
                try:
                    with authentication.session() as env:
                        with repo.git.custom_environment(**env):
                            repo.git.fetch(ORIGIN)
                except GitCommandError as e:
                    raise translate_git_error(e, "shadow_refresh", network=True) from e
        self.logger.debug(f"Shadow clone {path} refreshed")
        return path

    def publish(
        self,
        working_copy: Path,
        refspecs: List[str],
        authentication: Optional[AuthenticationContext] = None
    ) -> PushOutcome:
        """
        Push refs from the shadow clone on to the real remote.

        Returns:
            PushOutcome describing every ref update

        Raises:
            RemoteUnavailable: if the remote cannot be reached at all
        """
        authentication = authentication or self.authentication
        path = self.path_for(working_copy)
        with open_repository(path, "shadow_publish") as repo:
            with self.perf_logger.time_operation("shadow_publish", {"refspecs": refspecs}):
                try:
                    with authentication.session() as env:
                        with repo.git.custom_environment(**env):
                            push_infos = repo.remote(ORIGIN).push(refspec=refspecs)
                except GitCommandError as e:
                    raise translate_git_error(e, "shadow_publish", network=True) from e
        return outcome_from_push_info(push_infos)


def _same_remote(left: str, right: str) -> bool:
    return left.rstrip("/") == right.rstrip("/")


def _symref_target(ls_remote_output: str) -> Optional[str]:
    """Branch named by a ``ref: refs/heads/<name>\\tHEAD`` line of ``ls-remote --symref``."""
    for line in ls_remote_output.splitlines():
        if line.startswith("ref: "):
            return line[len("ref: "):].split("\t")[0].strip()
    return None
