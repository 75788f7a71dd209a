"""License lifecycle policy: cutoff clock and per-user rule evaluation.

Everything in this module is pure. ``evaluate()`` decides what should happen
to one user; applying the decision is the job of
:mod:`license_manager.core.convergence`.

Rule precedence (first terminal rule wins):

1. identity absent, disabled or deleted in the directory -> delete
2. (optional) directory sign-in and creation both past their cutoffs
   -> delete from directory, then delete
3. last access and creation both past their cutoffs -> delete
4. license not granted by a group rule -> assign to the tier's group and
   drop the direct assignment (Visual Studio keeps its direct assignment)
5. inactive since the demotion cutoff, outside the grace period, not
   Stakeholder and not Visual Studio -> demote to Stakeholder
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from .exceptions import ConfigurationError
from .models import AssignmentSource, DirectoryIdentity, EntitlementRecord, License


# ─────────────────────────────────────────────────────────────────────────────
# Policy clock
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Cutoffs:
    delete_cutoff: datetime
    demote_cutoff: datetime
    created_after_cutoff: datetime

    def to_dict(self) -> dict:
        return {
            "delete_cutoff": self.delete_cutoff.isoformat(),
            "demote_cutoff": self.demote_cutoff.isoformat(),
            "created_after_cutoff": self.created_after_cutoff.isoformat(),
        }


def _validate_days(name: str, value) -> int:
    if value is None or isinstance(value, bool):
        raise ConfigurationError(f"{name} is required")
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a whole number of days, got {value!r}")
    if days < 0:
        raise ConfigurationError(f"{name} must not be negative, got {days}")
    return days


def compute_cutoffs(
    now: Optional[datetime],
    days_before_deletion: int,
    days_before_demotion: int,
    days_grace_after_creation: int,
) -> Cutoffs:
    """Derive the three policy instants, each ``now - N days``.

    Raises:
        ConfigurationError: If a day count is missing or negative
    """
    deletion = _validate_days("days_before_deletion", days_before_deletion)
    demotion = _validate_days("days_before_demotion", days_before_demotion)
    grace = _validate_days("days_grace_after_creation", days_grace_after_creation)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return Cutoffs(
        delete_cutoff=now - timedelta(days=deletion),
        demote_cutoff=now - timedelta(days=demotion),
        created_after_cutoff=now - timedelta(days=grace),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Exclusion matching
# ─────────────────────────────────────────────────────────────────────────────

def parse_word_list(value: Optional[str | Iterable[str]]) -> list[str]:
    """Split a comma-delimited list, dropping blanks."""
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [item.strip() for item in items if item and item.strip()]


def contains_any(search: Optional[str], words: Iterable[str]) -> bool:
    """True if any word is a case-insensitive substring of ``search``."""
    haystack = (search or "").lower()
    return any(word.lower() in haystack for word in words if word)


# ─────────────────────────────────────────────────────────────────────────────
# Decisions
# ─────────────────────────────────────────────────────────────────────────────

class Action(str, Enum):
    DELETE_FROM_DIRECTORY = "delete_from_directory"
    DELETE = "delete"
    REMOVE_FROM_LICENSE_GROUPS = "remove_from_license_groups"
    ASSIGN_TO_GROUP = "assign_to_group"
    REMOVE_DIRECT_ASSIGNMENT = "remove_direct_assignment"


@dataclass(frozen=True)
class Step:
    action: Action
    license: Optional[License] = None
    reason: str = ""

    def describe(self) -> str:
        if self.license is not None:
            return f"{self.action.value}({self.license.value})"
        return self.action.value


@dataclass(frozen=True)
class Decision:
    """Ordered steps for one user. No steps means no action."""

    steps: tuple[Step, ...] = ()

    @property
    def is_no_action(self) -> bool:
        return not self.steps

    @property
    def deletes(self) -> bool:
        return any(step.action is Action.DELETE for step in self.steps)

    @property
    def demotes(self) -> bool:
        return any(step.action is Action.REMOVE_FROM_LICENSE_GROUPS for step in self.steps)

    def actions(self) -> list[Action]:
        return [step.action for step in self.steps]

    def describe(self) -> str:
        return ", ".join(step.describe() for step in self.steps) or "no action"


NO_ACTION = Decision()


def _predates(timestamp: Optional[datetime], cutoff: datetime) -> bool:
    """Never-seen timestamps predate every cutoff."""
    if timestamp is None:
        return True
    return timestamp < cutoff


def _directory_deletion_due(identity: DirectoryIdentity, cutoffs: Cutoffs) -> bool:
    # Unknown sign-in or creation time never triggers a directory deletion
    if identity.last_sign_in is None or identity.created_at is None:
        return False
    return identity.last_sign_in < cutoffs.delete_cutoff and identity.created_at < cutoffs.created_after_cutoff


def evaluate(
    record: EntitlementRecord,
    cutoffs: Cutoffs,
    identity: DirectoryIdentity,
    *,
    delete_directory_users: bool = False,
) -> Decision:
    """Decide what to do with one user for this pass."""
    if not identity.is_active:
        return Decision((Step(Action.DELETE, reason=identity.inactive_reason() or "inactive in directory"),))

    if delete_directory_users and _directory_deletion_due(identity, cutoffs):
        reason = f"no directory sign-in since {identity.last_sign_in.isoformat()}"
        return Decision((
            Step(Action.DELETE_FROM_DIRECTORY, reason=reason),
            Step(Action.DELETE, reason=reason),
        ))

    outside_grace = _predates(record.date_created, cutoffs.created_after_cutoff)
    if outside_grace and _predates(record.last_accessed, cutoffs.delete_cutoff):
        return Decision((Step(Action.DELETE, reason="not accessed since deletion cutoff"),))

    tier = record.license
    steps: list[Step] = []

    if record.assignment_source is not AssignmentSource.GROUP_RULE and tier is not None:
        steps.append(Step(Action.ASSIGN_TO_GROUP, tier, reason="license assigned directly"))
        if not tier.is_visual_studio:
            steps.append(Step(Action.REMOVE_DIRECT_ASSIGNMENT, reason="license assigned directly"))

    if (
        tier is not None
        and tier is not License.STAKEHOLDER
        and not tier.is_visual_studio
        and outside_grace
        and _predates(record.last_accessed, cutoffs.demote_cutoff)
    ):
        reason = "not accessed since demotion cutoff"
        steps.extend([
            Step(Action.REMOVE_FROM_LICENSE_GROUPS, reason=reason),
            Step(Action.ASSIGN_TO_GROUP, License.STAKEHOLDER, reason=reason),
            Step(Action.REMOVE_DIRECT_ASSIGNMENT, reason=reason),
        ])

    return Decision(tuple(steps))
