"""Push outcome classification and rollback of rejected commits."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Union

from git import Repo, Commit, GitCommandError, PushInfo

from .errors import VcsException, VcsConflict, RollbackFailed

logger = logging.getLogger('gitvcs.conflict')

_REJECTION_FLAGS = PushInfo.ERROR | PushInfo.REJECTED | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE


class PushStatus(Enum):
    """Status of a single ref update in a push."""
    OK = "ok"
    UP_TO_DATE = "up_to_date"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RefUpdate:
    """Result of pushing one ref."""
    local_ref: Optional[str]
    remote_ref: str
    status: PushStatus
    summary: str = ""


@dataclass
class PushOutcome:
    """All ref updates reported by one push call."""
    updates: List[RefUpdate] = field(default_factory=list)

    @property
    def rejected(self) -> List[RefUpdate]:
        return [u for u in self.updates if u.status is PushStatus.REJECTED]


@dataclass(frozen=True)
class Success:
    updates: List[RefUpdate]


@dataclass(frozen=True)
class Conflict:
    detail: str
    rejected: List[RefUpdate]


def outcome_from_push_info(push_infos: Iterable[PushInfo]) -> PushOutcome:
    """Map GitPython push results onto a PushOutcome."""
    updates = []
    for info in push_infos:
        if info.flags & _REJECTION_FLAGS:
            status = PushStatus.REJECTED
        elif info.flags & PushInfo.UP_TO_DATE:
            status = PushStatus.UP_TO_DATE
        else:
            status = PushStatus.OK
        local_ref = info.local_ref.path if info.local_ref is not None else None
        updates.append(RefUpdate(
            local_ref=local_ref,
            remote_ref=info.remote_ref_string,
            status=status,
            summary=(info.summary or "").strip()
        ))
    return PushOutcome(updates=updates)


def classify(outcome: PushOutcome) -> Union[Success, Conflict]:
    """
    Classify a push outcome.

    The push is successful only if every ref update is OK or already up to
    date. A single rejected ref makes the whole push a conflict, even when
    other refs were accepted.

    A push that reports no ref updates at all is a conflict rather than a
    vacuous success, so a commit whose push confirmed nothing is rolled back.
    """
    if not outcome.updates:
        return Conflict(detail="The push did not update any ref", rejected=[])

    rejected = outcome.rejected
    if not rejected:
        return Success(updates=list(outcome.updates))

    detail = "; ".join(
        f"The push failed with status [{u.status.name}] for [{u.remote_ref}] and message [{u.summary}]"
        for u in rejected
    )
    return Conflict(detail=detail, rejected=rejected)


def ensure_published(outcome: PushOutcome, operation: str = "push") -> None:
    """Raise VcsConflict unless the push outcome is a success."""
    result = classify(outcome)
    if isinstance(result, Conflict):
        logger.debug(result.detail)
        raise VcsConflict(result.detail, operation=operation)


def rollback(repo: Repo, commit: Commit) -> str:
    """
    Undo a local commit with a mixed reset.

    The branch moves back to the commit's first parent (or stays on HEAD for a
    root commit) and the committed changes remain in the working tree as
    uncommitted modifications.

    Returns:
        The revision the branch was reset to
    """
    target = commit.parents[0].hexsha if commit.parents else "HEAD"
    logger.info(f"Rolling back local commit {commit.hexsha[:10]} to {target[:10]}")
    repo.head.reset(target, index=True, working_tree=False)
    return target


def push_or_rollback(repo: Repo, commit: Commit, push: Callable[[], None]) -> None:
    """
    Run the push chain for a freshly created local commit.

    If any step raises a VcsException the local commit is rolled back before
    the error propagates. A failing rollback is reported as RollbackFailed
    carrying both errors.
    """
    try:
        push()
    except VcsException as e:
        logger.warning(f"Push of {commit.hexsha[:10]} failed, rolling back local commit: {e.message}")
        try:
            rollback(repo, commit)
        except (GitCommandError, OSError, ValueError) as rollback_error:
            logger.error(f"Rollback of {commit.hexsha[:10]} failed: {rollback_error}")
            raise RollbackFailed(e, rollback_error, operation=e.operation) from e
        raise
