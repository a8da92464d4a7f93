"""Revision resolution for working copies using GitPython."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from git import Repo, Commit, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import IOFailure

ORIGIN = "origin"
REMOTE_ORIGIN_PREFIX = "refs/remotes/origin/"
LOCAL_HEAD_PREFIX = "refs/heads/"

logger = logging.getLogger('gitvcs.revision')


class RevisionKind(Enum):
    """What a requested revision string refers to in a working copy."""
    DEFAULT = "default"
    BRANCH = "branch"
    REMOTE_BRANCH = "remote_branch"
    TAG = "tag"
    COMMIT = "commit"


@dataclass(frozen=True)
class RevisionRef:
    """A requested revision and what it resolved to."""
    name: Optional[str]
    kind: RevisionKind


@dataclass(frozen=True)
class RevisionHistoryItem:
    """One entry of a revision history listing."""
    revision: str
    message: str


def current_revision(repo: Repo) -> str:
    """Commit id the working copy's HEAD points at."""
    return repo.head.commit.hexsha


def current_branch(repo: Repo) -> Optional[str]:
    """Name of the checked-out branch, or None when HEAD is detached."""
    if repo.head.is_detached:
        return None
    return repo.active_branch.name


def _refs_under(repo: Repo, prefix: str) -> List[str]:
    output = repo.git.for_each_ref("--format=%(refname)", prefix)
    return [line.strip() for line in output.splitlines() if line.strip()]


def remote_branches(repo: Repo) -> List[str]:
    """Branch names known under ``refs/remotes/origin``, without ``HEAD``."""
    names = [ref[len(REMOTE_ORIGIN_PREFIX):] for ref in _refs_under(repo, REMOTE_ORIGIN_PREFIX)]
    return [name for name in names if name != "HEAD"]


def local_branches(repo: Repo) -> List[str]:
    return [ref[len(LOCAL_HEAD_PREFIX):] for ref in _refs_under(repo, LOCAL_HEAD_PREFIX)]


def find_remote_branch(repo: Repo, name: str) -> Optional[str]:
    """
    Find the remote-tracking branch matching ``name``.

    The comparison is case-insensitive, the same way ref names behave on
    case-insensitive filesystems.

    Returns:
        The branch name as it appears on the remote, or None
    """
    wanted = name.lower()
    for branch in remote_branches(repo):
        if branch.lower() == wanted:
            logger.debug(f"Matched tag/branch [{name}] against [{REMOTE_ORIGIN_PREFIX}{branch}]; assuming branch checkout")
            return branch
    return None


def is_remote_branch(repo: Repo, name: Optional[str]) -> bool:
    if not name:
        return False
    return find_remote_branch(repo, name) is not None


def remote_default_branch(repo: Repo) -> Optional[str]:
    """Branch that ``origin/HEAD`` points at, if known."""
    try:
        target = repo.git.symbolic_ref(f"{REMOTE_ORIGIN_PREFIX}HEAD").strip()
    except GitCommandError:
        return None
    if not target.startswith(REMOTE_ORIGIN_PREFIX):
        return None
    return target[len(REMOTE_ORIGIN_PREFIX):]


def classify(repo: Repo, name: Optional[str]) -> RevisionRef:
    """
    Classify a requested revision against the working copy's refs.

    Branch semantics take precedence: a name that is both a branch and a tag
    is treated as a branch. Anything that is neither is handed to git as a
    commit-ish at checkout time.
    """
    if not name:
        return RevisionRef(name=None, kind=RevisionKind.DEFAULT)
    remote_branch = find_remote_branch(repo, name)
    if remote_branch is not None:
        return RevisionRef(name=remote_branch, kind=RevisionKind.REMOTE_BRANCH)
    if name in local_branches(repo):
        return RevisionRef(name=name, kind=RevisionKind.BRANCH)
    if name in [tag.name for tag in repo.tags]:
        return RevisionRef(name=name, kind=RevisionKind.TAG)
    return RevisionRef(name=name, kind=RevisionKind.COMMIT)


def remote_only_commits(repo: Repo, limit: int) -> List[Commit]:
    """
    Commits reachable from the current branch's remote-tracking ref that are
    not yet in the local branch, newest first.
    """
    branch = current_branch(repo)
    if branch is None or limit <= 0 or branch not in remote_branches(repo):
        return []
    revision_range = f"{LOCAL_HEAD_PREFIX}{branch}..{REMOTE_ORIGIN_PREFIX}{branch}"
    return list(repo.iter_commits(revision_range, max_count=limit))


def local_commits(repo: Repo, limit: int) -> List[Commit]:
    if limit <= 0:
        return []
    return list(repo.iter_commits("HEAD", max_count=limit))


def to_history(commits: Iterable[Commit]) -> List[RevisionHistoryItem]:
    return [RevisionHistoryItem(revision=c.hexsha, message=c.message.rstrip("\n")) for c in commits]


@contextmanager
def open_repository(path: Path, operation: str = "open_repository") -> Iterator[Repo]:
    """
    Open a repository handle for the duration of one operation.

    The handle is closed when the block exits, including on error.

    Raises:
        IOFailure: if ``path`` is not a git repository
    """
    try:
        repo = Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise IOFailure(f"{operation} failed: {path} is not a git repository", operation=operation, cause=e) from e
    try:
        yield repo
    finally:
        repo.close()
