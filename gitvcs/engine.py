"""
Synchronization engine.

Reconciles the remote repository, the shadow clone and the working copy.
Every operation re-derives the working copy state from disk; the engine
keeps no per-working-copy session state.
"""

import logging
import shutil
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from git import Git, Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .auth import AuthenticationContext, resolve
from .config import Config
from .conflict import ensure_published, outcome_from_push_info, push_or_rollback
from .errors import ConfigurationError, IOFailure, VcsConflict, VcsException, translate_git_error
from .paths import redact_url, split_branch_annotation, to_unix_path
from .performance import PerformanceLogger, get_performance_logger
from .revision import (
    LOCAL_HEAD_PREFIX,
    ORIGIN,
    RevisionHistoryItem,
    RevisionKind,
    classify,
    current_branch,
    current_revision,
    local_branches,
    local_commits,
    open_repository,
    remote_branches,
    remote_default_branch,
    remote_only_commits,
    to_history,
)
from .shadow import ShadowRepositoryCache

PathLike = Union[str, Path]

# Working copy config entry holding the real remote URL
UPSTREAM_SECTION = "gitvcs"
UPSTREAM_OPTION = "upstream"


class WorkingCopyState(Enum):
    """State of a working copy, derived from what is on disk."""
    ABSENT = "absent"         # Missing or empty directory
    UNCACHED = "uncached"     # Valid working copy, shadow clone missing
    CHECKED_OUT = "checked_out"
    INVALID = "invalid"       # Directory exists but is not a usable working copy


class SynchronizationEngine:
    """
    Git implementation of the runtime version control operations.

    The working copy is cloned from the shadow clone and pushes to it; the
    shadow clone alone talks to the real remote. A commit that the shadow
    clone or the remote rejects is rolled back locally before the error is
    raised.
    """

    implementation_name = "Git"

    def __init__(
        self,
        config: Optional[Config] = None,
        authentication: Optional[AuthenticationContext] = None,
        clean_update: Optional[bool] = None,
        perf_logger: Optional[PerformanceLogger] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Configuration; supplies the authentication settings, the
                clean update flag and the fallback upstream URL
            authentication: Authentication context used for every remote;
                when omitted one is resolved per operation from ``config``
                and the URL the operation talks to
            clean_update: Overrides ``config.clean_update``
            perf_logger: Performance logger, the global one when omitted
        """
        self.config = config or Config()
        self.authentication = authentication
        self.clean_update = self.config.clean_update if clean_update is None else clean_update
        self.perf_logger = perf_logger or get_performance_logger()
        self.cache = ShadowRepositoryCache(perf_logger=self.perf_logger)
        self.logger = logging.getLogger('gitvcs.engine')

        self.logger.debug(f"Synchronization engine clean update: {self.clean_update}")

    def authentication_for(self, remote_url: Optional[str]) -> AuthenticationContext:
        """Authentication context for talking to ``remote_url``."""
        if self.authentication is not None:
            return self.authentication
        url = split_branch_annotation(remote_url)[0] if remote_url else self.config.remote_url
        return resolve(replace(self.config, remote_url=url))

    def _shadow_authentication(self, working_copy: Path) -> AuthenticationContext:
        return self.authentication_for(self.cache.remote_url(working_copy))

    # State

    def working_copy_state(self, working_copy: PathLike) -> WorkingCopyState:
        working_copy = Path(working_copy)
        if not working_copy.exists():
            return WorkingCopyState.ABSENT
        if working_copy.is_dir() and not any(working_copy.iterdir()):
            return WorkingCopyState.ABSENT

        try:
            repo = Repo(working_copy)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return WorkingCopyState.INVALID
        try:
            if repo.bare:
                return WorkingCopyState.INVALID
        finally:
            repo.close()

        if self.cache.exists(working_copy):
            return WorkingCopyState.CHECKED_OUT
        return WorkingCopyState.UNCACHED

    def _require_working_copy(self, working_copy: Path, operation: str) -> WorkingCopyState:
        state = self.working_copy_state(working_copy)
        if state in (WorkingCopyState.ABSENT, WorkingCopyState.INVALID):
            raise IOFailure(
                f"{operation} failed: {working_copy} is not a working copy ({state.value})",
                operation=operation
            )
        return state

    # Checkout

    def checkout(self, remote_url: str, working_copy: PathLike, revision: Optional[str] = None) -> str:
        """
        Create a working copy of ``remote_url`` at ``working_copy``.

        The shadow clone is created (or refreshed) first and the working copy
        is cloned from it. A ``?branch=<name>`` annotation on the URL selects
        the initial branch.

        Args:
            remote_url: URL of the real remote, optionally annotated
            working_copy: Directory for the working copy; must be absent or empty
            revision: Branch, tag or commit to check out after cloning

        Returns:
            Commit id of the checked-out HEAD

        Raises:
            RemoteUnavailable: if the shadow clone cannot be created or refreshed
            IOFailure: if the working copy directory is unusable
        """
        working_copy = Path(working_copy)
        url, branch = split_branch_annotation(remote_url)

        state = self.working_copy_state(working_copy)
        if state is not WorkingCopyState.ABSENT:
            raise IOFailure(
                f"Cannot check out into {working_copy}: directory is not empty",
                operation="checkout"
            )

        context = {"remote": redact_url(url), "working_copy": str(working_copy), "revision": revision}
        with self.perf_logger.time_operation("checkout", context, log_level=logging.INFO):
            shadow = self.cache.ensure(url, working_copy, authentication=self.authentication_for(url))

            created = not working_copy.exists()
            self.logger.info(f"Checking out {redact_url(url)} into {working_copy}")
            try:
                repo = Repo.clone_from(str(shadow), working_copy, branch=branch)
            except (GitCommandError, OSError) as e:
                self._discard_working_copy(working_copy, created)
                raise translate_git_error(e, "checkout") from e

            try:
                self._configure_working_copy(repo, url)
                if revision:
                    self._checkout_revision(repo, revision)
                result = current_revision(repo)
            except (GitCommandError, OSError, ValueError) as e:
                repo.close()
                self._discard_working_copy(working_copy, created)
                raise translate_git_error(e, "checkout") from e
            except VcsException:
                repo.close()
                self._discard_working_copy(working_copy, created)
                raise
            repo.close()

        self.logger.info(f"Checked out {working_copy} at {result}")
        return result

    def _discard_working_copy(self, working_copy: Path, created: bool) -> None:
        """Remove what a failed checkout left behind."""
        self.logger.warning(f"Removing incomplete working copy {working_copy}")
        if created:
            shutil.rmtree(working_copy, ignore_errors=True)
            return
        # The directory existed (empty) before the checkout; keep it, drop its contents
        for child in working_copy.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child, ignore_errors=True)
            else:
                child.unlink()

    def _configure_working_copy(self, repo: Repo, upstream: str) -> None:
        """Record the real remote and make sure commits have an identity."""
        with repo.config_writer() as writer:
            writer.set_value(UPSTREAM_SECTION, UPSTREAM_OPTION, upstream)

        with repo.config_reader() as reader:
            user_name = reader.get_value("user", "name", default="")
            user_email = reader.get_value("user", "email", default="")

        with repo.config_writer() as writer:
            if not user_name:
                writer.set_value("user", "name", self.config.commit_name)
                self.logger.debug("Set default Git user name")
            if not user_email:
                writer.set_value("user", "email", self.config.commit_email)
                self.logger.debug("Set default Git user email")

    def _track(self, repo: Repo, branch: str) -> None:
        if branch not in local_branches(repo):
            self.logger.debug(f"Creating local tracking branch {branch}")
            repo.git.branch("--track", branch, f"{ORIGIN}/{branch}")

    def _checkout_revision(self, repo: Repo, revision: str) -> None:
        ref = classify(repo, revision)
        self.logger.debug(f"Revision {revision} resolved as {ref.kind.value}")
        if ref.kind is RevisionKind.REMOTE_BRANCH:
            self._track(repo, ref.name)
            repo.git.checkout(ref.name)
        else:
            repo.git.checkout(revision)

    # Update

    def update(self, working_copy: PathLike, revision: Optional[str] = None) -> str:
        """
        Bring an existing working copy up to date.

        Refreshes the shadow clone (rebuilding it when missing), optionally
        discards local changes, pulls the relevant branch from the shadow
        clone and checks out ``revision`` or the current branch.

        Returns:
            Commit id of the checked-out HEAD

        Raises:
            VcsConflict: if local modifications collide with the update
            RemoteUnavailable: if the remote cannot be reached
            IOFailure: if ``working_copy`` is not a working copy
        """
        working_copy = Path(working_copy)
        state = self._require_working_copy(working_copy, "update")

        context = {"working_copy": str(working_copy), "revision": revision}
        with self.perf_logger.time_operation("update", context, log_level=logging.INFO):
            self._sync_cache(working_copy, state)

            with open_repository(working_copy, "update") as repo:
                try:
                    if self.clean_update:
                        self.logger.info(f"Discarding local changes in {working_copy}")
                        repo.head.reset(index=True, working_tree=True)

                    repo.git.fetch(ORIGIN)
                    self._update_to(repo, revision)
                    result = current_revision(repo)
                except (GitCommandError, OSError, ValueError) as e:
                    error = translate_git_error(e, "update")
                    if isinstance(error, VcsConflict):
                        self._abort_merge(repo)
                    raise error from e

        self.logger.info(f"Updated {working_copy} to {result}")
        return result

    def _update_to(self, repo: Repo, revision: Optional[str]) -> None:
        ref = classify(repo, revision)

        if ref.kind is RevisionKind.REMOTE_BRANCH:
            self._track(repo, ref.name)
            repo.git.checkout(ref.name)
            self._pull(repo, ref.name)
            repo.git.checkout(ref.name)
            return

        branch = current_branch(repo)
        if branch is None and revision is None:
            branch = remote_default_branch(repo)
            if branch is None:
                raise VcsException(
                    "update failed: HEAD is detached and the remote default branch is unknown",
                    operation="update"
                )
            self.logger.info(f"HEAD is detached; returning to {branch}")
            self._track(repo, branch)
            repo.git.checkout(branch)

        if branch is not None:
            self._pull(repo, branch)
        repo.git.checkout(revision or branch)

    def _abort_merge(self, repo: Repo) -> None:
        """Back out of a merge that a conflicting pull left half done."""
        if not (Path(repo.git_dir) / "MERGE_HEAD").exists():
            return
        self.logger.warning("Pull left a conflicted merge; aborting it")
        try:
            repo.git.merge("--abort")
        except GitCommandError as e:
            self.logger.error(f"Could not abort the conflicted merge: {e}")

    def _pull(self, repo: Repo, branch: str) -> None:
        if branch not in remote_branches(repo):
            self.logger.debug(f"Branch {branch} does not exist on the remote; nothing to pull")
            return
        self.logger.debug(f"Pulling {branch}")
        repo.git.pull("--no-rebase", "--no-edit", ORIGIN, branch)

    def _sync_cache(
        self,
        working_copy: Path,
        state: WorkingCopyState,
        remote_url: Optional[str] = None
    ) -> None:
        """Refresh the shadow clone, recreating it from the recorded upstream if it is missing."""
        if state is not WorkingCopyState.UNCACHED:
            self.cache.refresh(working_copy, authentication=self._shadow_authentication(working_copy))
            return

        upstream = self._upstream_url(working_copy, remote_url)
        self.logger.info(f"Shadow clone for {working_copy} is missing; recreating it")
        shadow = self.cache.ensure(upstream, working_copy, authentication=self.authentication_for(upstream))
        with open_repository(working_copy, "update") as repo:
            repo.remote(ORIGIN).set_url(str(shadow))

    def _upstream_url(self, working_copy: Path, remote_url: Optional[str]) -> str:
        if remote_url:
            return split_branch_annotation(remote_url)[0]
        with open_repository(working_copy, "update") as repo:
            with repo.config_reader() as reader:
                recorded = reader.get_value(UPSTREAM_SECTION, UPSTREAM_OPTION, default="")
        if recorded:
            return recorded
        if self.config.remote_url:
            return split_branch_annotation(self.config.remote_url)[0]
        raise ConfigurationError(
            f"No upstream URL recorded for {working_copy}; cannot recreate its shadow clone",
            operation="update"
        )

    # Commit

    def commit(self, working_copy: PathLike, message: str) -> str:
        """
        Commit all tracked changes and push them upstream.

        Returns:
            Commit id of the new commit

        Raises:
            VcsConflict: if the push is rejected; the local commit is rolled back
            RollbackFailed: if the rollback after a rejected push fails too
        """
        return self._commit(Path(working_copy), message, None)

    def add_and_commit(self, working_copy: PathLike, message: str, *files: str) -> Optional[str]:
        """
        Stage ``files`` (relative to the working copy), commit and push.

        Returns:
            Commit id of the new commit, or None if no files were given
        """
        if not files:
            self.logger.info("No files given; nothing to commit")
            return None
        return self._commit(Path(working_copy), message, [to_unix_path(str(f)) for f in files])

    def _commit(self, working_copy: Path, message: str, paths: Optional[List[str]]) -> str:
        state = self._require_working_copy(working_copy, "commit")

        with open_repository(working_copy, "commit") as repo:
            branch = current_branch(repo)
            if branch is None:
                raise VcsException(
                    f"Cannot commit in {working_copy}: HEAD is detached",
                    operation="commit"
                )

            with self.perf_logger.time_operation("commit", {"working_copy": str(working_copy), "branch": branch}):
                self._sync_cache(working_copy, state)
                try:
                    if paths is None:
                        repo.git.add("--update")
                    else:
                        repo.git.add("--", *paths)
                    repo.git.commit("--allow-empty", "-m", message)
                except GitCommandError as e:
                    raise translate_git_error(e, "commit") from e

                commit = repo.head.commit
                self.logger.info(f"Committed {commit.hexsha} on {branch}")
                push_or_rollback(repo, commit, lambda: self._push(repo, working_copy, branch))

        return commit.hexsha

    def _push(self, repo: Repo, working_copy: Path, branch: str) -> None:
        """Push ``branch`` to the shadow clone, then from the shadow clone to the remote."""
        refspec = f"{LOCAL_HEAD_PREFIX}{branch}:{LOCAL_HEAD_PREFIX}{branch}"
        try:
            push_infos = repo.remote(ORIGIN).push(refspec=refspec)
        except GitCommandError as e:
            raise translate_git_error(e, "push", network=True) from e
        ensure_published(outcome_from_push_info(push_infos), operation="push")
        outcome = self.cache.publish(
            working_copy, [refspec], authentication=self._shadow_authentication(working_copy)
        )
        ensure_published(outcome, operation="publish")
        self.logger.info(f"Pushed {branch} upstream")

    def recursive_add(self, working_copy: PathLike) -> None:
        """Stage every change under the working copy without committing."""
        working_copy = Path(working_copy)
        self._require_working_copy(working_copy, "recursive_add")
        with open_repository(working_copy, "recursive_add") as repo:
            try:
                repo.git.add("--all")
            except GitCommandError as e:
                raise translate_git_error(e, "recursive_add") from e

    # Queries

    def get_local_revision(self, working_copy: PathLike) -> str:
        working_copy = Path(working_copy)
        self._require_working_copy(working_copy, "get_local_revision")
        with open_repository(working_copy, "get_local_revision") as repo:
            try:
                return current_revision(repo)
            except ValueError as e:
                raise translate_git_error(e, "get_local_revision") from e

    def get_remote_revision(self, working_copy: PathLike, remote_url: Optional[str] = None) -> str:
        """
        Newest commit on the remote side of the current branch.

        Falls back to the local revision when the remote has nothing the
        working copy does not already contain.
        """
        working_copy = Path(working_copy)
        state = self._require_working_copy(working_copy, "get_remote_revision")
        self._sync_cache(working_copy, state, remote_url)

        with open_repository(working_copy, "get_remote_revision") as repo:
            try:
                repo.git.fetch(ORIGIN)
                pending = remote_only_commits(repo, 1)
                if pending:
                    return pending[0].hexsha
                return current_revision(repo)
            except (GitCommandError, ValueError) as e:
                raise translate_git_error(e, "get_remote_revision") from e

    def get_revision_history(
        self,
        working_copy: PathLike,
        limit: int,
        remote_url: Optional[str] = None
    ) -> List[RevisionHistoryItem]:
        """
        Revision history, newest first.

        Commits that are on the remote but not yet in the working copy come
        first; the rest of ``limit`` is filled from the local history.
        """
        working_copy = Path(working_copy)
        state = self._require_working_copy(working_copy, "get_revision_history")
        self._sync_cache(working_copy, state, remote_url)

        with open_repository(working_copy, "get_revision_history") as repo:
            try:
                repo.git.fetch(ORIGIN)
                commits = remote_only_commits(repo, limit)
                commits.extend(local_commits(repo, limit - len(commits)))
            except (GitCommandError, ValueError) as e:
                raise translate_git_error(e, "get_revision_history") from e
        return to_history(commits)

    def test_connection(self, remote_url: str) -> Optional[str]:
        """
        Check that the real remote is reachable.

        Returns:
            Commit id of the remote HEAD, or None if the remote has no HEAD
        """
        url, _ = split_branch_annotation(remote_url)
        git = Git()
        with self.perf_logger.time_operation("test_connection", {"remote": redact_url(url)}):
            try:
                with self.authentication_for(url).session() as env:
                    with git.custom_environment(**env):
                        output = git.ls_remote(url, "HEAD")
            except GitCommandError as e:
                raise translate_git_error(e, "test_connection", network=True) from e

        line = output.strip().splitlines()[0] if output.strip() else ""
        return line.split()[0] if line else None
