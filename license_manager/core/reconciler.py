"""Organization-wide reconciliation pass.

States: BOOTSTRAPPING -> GROUPS_READY -> EVALUATING -> REEVALUATING -> DONE.

Users are processed one at a time. Group creation happens before the loop and
the rule re-evaluation trigger once after it, never per user. A reconciler is
single-use; the next scheduled run builds a fresh one.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

import requests

from .azure_devops.client import AzureDevOpsClient
from .azure_devops.entitlements import EntitlementService
from .azure_devops.exceptions import AzureDevOpsAPIError, UserEntitlementNotFoundError
from .catalog import GroupCatalog, ensure_group_entitlements
from .convergence import ConvergenceApplier
from .exceptions import ReconcilerStateError
from .graph.client import GraphClient
from .graph.exceptions import GraphAPIError, GraphAuthenticationError
from .graph.users import DirectoryService
from .models import EntitlementRecord, format_datetime
from .policy import Action, Cutoffs, Decision, contains_any, evaluate, parse_word_list

logger = logging.getLogger(__name__)

# Failures that cost one user, not the whole pass
REMOTE_CALL_ERRORS = (
    AzureDevOpsAPIError,
    UserEntitlementNotFoundError,
    GraphAPIError,
    GraphAuthenticationError,
    requests.RequestException,
)


class ReconcilerState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    GROUPS_READY = "groups_ready"
    EVALUATING = "evaluating"
    REEVALUATING = "reevaluating"
    DONE = "done"


@dataclass
class ReconcileReport:
    """Summary of one pass."""

    organization: str
    dry_run: bool
    cutoffs: Optional[Cutoffs] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    groups_created: list[str] = field(default_factory=list)
    users_loaded: int = 0
    users_excluded: list[str] = field(default_factory=list)
    users_skipped: list[str] = field(default_factory=list)
    processed: int = 0
    unchanged: int = 0
    deleted: int = 0
    directory_deleted: int = 0
    demoted: int = 0
    assigned: int = 0
    direct_removed: int = 0
    failed: list[dict[str, str]] = field(default_factory=list)
    reevaluated: bool = False

    def record_decision(self, decision: Decision) -> None:
        actions = decision.actions()
        if not actions:
            self.unchanged += 1
            return
        if Action.DELETE in actions:
            self.deleted += 1
        if Action.DELETE_FROM_DIRECTORY in actions:
            self.directory_deleted += 1
        if decision.demotes:
            self.demoted += 1
        self.assigned += actions.count(Action.ASSIGN_TO_GROUP)
        self.direct_removed += actions.count(Action.REMOVE_DIRECT_ASSIGNMENT)

    def record_failure(self, record: EntitlementRecord, exc: Exception) -> None:
        self.failed.append({"user": record.principal_name, "error": str(exc)})

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization": self.organization,
            "dry_run": self.dry_run,
            "cutoffs": self.cutoffs.to_dict() if self.cutoffs else None,
            "started_at": format_datetime(self.started_at),
            "finished_at": format_datetime(self.finished_at),
            "groups_created": list(self.groups_created),
            "users_loaded": self.users_loaded,
            "users_excluded": list(self.users_excluded),
            "users_skipped": list(self.users_skipped),
            "processed": self.processed,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "directory_deleted": self.directory_deleted,
            "demoted": self.demoted,
            "assigned": self.assigned,
            "direct_removed": self.direct_removed,
            "failed": list(self.failed),
            "reevaluated": self.reevaluated,
        }


class OrganizationReconciler:
    """Runs one reconciliation pass over an Azure DevOps organization."""

    def __init__(
        self,
        entitlements: EntitlementService,
        directory: DirectoryService,
        cutoffs: Cutoffs,
        *,
        group_prefix: str = "",
        group_suffix: str = "",
        excluded_words: Optional[Iterable[str] | str] = None,
        excluded_upns: Optional[Iterable[str] | str] = None,
        delete_directory_users: bool = False,
    ):
        """Initialize reconciler.

        Args:
            entitlements: Azure DevOps entitlement service
            directory: Directory (Graph) service
            cutoffs: Policy cutoffs for this pass
            group_prefix: Prefix of managed group names
            group_suffix: Suffix of managed group names
            excluded_words: Users whose display name contains any of these are ignored
            excluded_upns: Users whose principal name contains any of these are ignored
            delete_directory_users: Also delete long-inactive identities from the directory
        """
        self.entitlements = entitlements
        self.directory = directory
        self.cutoffs = cutoffs
        self.group_prefix = group_prefix
        self.group_suffix = group_suffix
        self.excluded_words = parse_word_list(excluded_words)
        self.excluded_upns = parse_word_list(excluded_upns)
        self.delete_directory_users = delete_directory_users
        self.state = ReconcilerState.BOOTSTRAPPING
        self.catalog: Optional[GroupCatalog] = None
        self.applier: Optional[ConvergenceApplier] = None
        self.records: list[EntitlementRecord] = []

    @property
    def organization(self) -> str:
        return self.entitlements.organization

    @property
    def dry_run(self) -> bool:
        return self.entitlements.dry_run or self.directory.dry_run

    def run(self) -> ReconcileReport:
        """Execute the full pass and return its report.

        Raises:
            ReconcilerStateError: If this reconciler already ran
            GroupEntitlementNotFoundError: If a managed group cannot be resolved
        """
        if self.state is not ReconcilerState.BOOTSTRAPPING:
            raise ReconcilerStateError(f"Reconciler for '{self.organization}' is {self.state.value}; create a new one")

        report = ReconcileReport(organization=self.organization, dry_run=self.dry_run, cutoffs=self.cutoffs)
        logger.info("Reconciling organization '%s'%s", self.organization, " (dry-run)" if report.dry_run else "")

        self._bootstrap(report)
        self._load_records(report)

        self._transition(ReconcilerState.GROUPS_READY, ReconcilerState.EVALUATING)
        total = len(self.records)
        for index, record in enumerate(list(self.records), start=1):
            self._process(record, index, total, report)

        self._transition(ReconcilerState.EVALUATING, ReconcilerState.REEVALUATING)
        try:
            self.applier.reevaluate_rules()
            report.reevaluated = True
        except REMOTE_CALL_ERRORS as exc:
            logger.error("Re-evaluating group entitlement rules failed: %s", exc)

        self._transition(ReconcilerState.REEVALUATING, ReconcilerState.DONE)
        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Reconciled '%s': %d processed, %d deleted, %d demoted, %d failed",
            self.organization,
            report.processed,
            report.deleted,
            report.demoted,
            len(report.failed),
        )
        return report

    def _bootstrap(self, report: ReconcileReport) -> None:
        self.catalog, created = ensure_group_entitlements(self.entitlements, self.group_prefix, self.group_suffix)
        report.groups_created = [group.display_name for group in created]
        self.applier = ConvergenceApplier(self.entitlements, self.directory, self.catalog)
        for group in created:
            self.applier.record_group_created(group)
        self._transition(ReconcilerState.BOOTSTRAPPING, ReconcilerState.GROUPS_READY)

    def _load_records(self, report: ReconcileReport) -> None:
        records = self.entitlements.list_user_entitlements()
        report.users_loaded = len(records)
        for record in records:
            if contains_any(record.display_name, self.excluded_words) or contains_any(
                record.principal_name, self.excluded_upns
            ):
                report.users_excluded.append(record.principal_name)
                continue
            if record.license is None:
                logger.warning(
                    "License '%s' of '%s' is not managed; only deletion rules apply",
                    record.access_level.license_display_name,
                    record.principal_name,
                )
            self.records.append(record)
        logger.info(
            "Fetched %d users from Azure DevOps organization '%s' (%d excluded)",
            len(self.records),
            self.organization,
            len(report.users_excluded),
        )

    def _process(self, record: EntitlementRecord, index: int, total: int, report: ReconcileReport) -> None:
        logger.info(
            "Process '%s' (%d/%d) with lastAccessedDate '%s' and license '%s'",
            record.display_name,
            index,
            total,
            format_datetime(record.last_accessed),
            record.access_level.license_display_name,
        )
        try:
            identity = self.directory.get_identity(record.principal_name)
            decision = evaluate(
                record,
                self.cutoffs,
                identity,
                delete_directory_users=self.delete_directory_users,
            )
            if not decision.is_no_action:
                logger.info("Decision for '%s': %s", record.principal_name, decision.describe())
            outcome = self.applier.apply(record, decision)
        except REMOTE_CALL_ERRORS as exc:
            logger.error("Failed to reconcile '%s': %s", record.principal_name, exc)
            report.record_failure(record, exc)
            return

        report.processed += 1
        if record.license is None and decision.is_no_action:
            report.users_skipped.append(record.principal_name)
        else:
            report.record_decision(decision)
        if outcome.deleted:
            self.records.remove(record)

    def _transition(self, expected: ReconcilerState, target: ReconcilerState) -> None:
        if self.state is not expected:
            raise ReconcilerStateError(f"Cannot move from {self.state.value} to {target.value}")
        self.state = target


def build_reconciler(
    cfg,
    *,
    dry_run: Optional[bool] = None,
    delete_directory_users: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> OrganizationReconciler:
    """Wire clients and services from settings.

    Args:
        cfg: AppConfig from license_manager.config.load_settings()
        dry_run: Override cfg.dry_run
        delete_directory_users: Override cfg.delete_directory_users
        now: Reference time for the cutoffs (defaults to current UTC time)
    """
    dry_run = cfg.dry_run if dry_run is None else dry_run
    ado_client = AzureDevOpsClient(
        cfg.organization,
        cfg.personal_access_token,
        base_url=cfg.vsaex_url,
        dry_run=dry_run,
    )
    graph_client = GraphClient(
        cfg.graph_tenant_id,
        cfg.graph_client_id,
        cfg.graph_client_secret,
        authority_url=cfg.graph_authority_url,
        api_url=cfg.graph_api_url,
        dry_run=dry_run,
    )
    return OrganizationReconciler(
        EntitlementService(ado_client),
        DirectoryService(graph_client),
        cfg.cutoffs(now),
        group_prefix=cfg.group_entitlement_prefix,
        group_suffix=cfg.group_entitlement_suffix,
        excluded_words=cfg.excluded_words_in_user_names,
        excluded_upns=cfg.excluded_upns,
        delete_directory_users=cfg.delete_directory_users if delete_directory_users is None else delete_directory_users,
    )
