"""Apply reconciliation decisions to Azure DevOps and the directory.

Each step is one or more remote calls with no transaction around them. A
failing step raises and leaves earlier steps in place; the next pass
re-derives whatever is still missing.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field

from . import audit
from .azure_devops.entitlements import EntitlementService
from .catalog import GroupCatalog
from .graph.users import DirectoryService
from .models import EntitlementRecord, GroupEntitlement, License
from .policy import Action, Decision, Step

logger = logging.getLogger(__name__)


@dataclass
class ApplyOutcome:
    applied: list[Step] = field(default_factory=list)
    deleted: bool = False


class ConvergenceApplier:
    """Executes decisions for one organization."""

    def __init__(
        self,
        entitlements: EntitlementService,
        directory: DirectoryService,
        catalog: GroupCatalog,
    ):
        self.entitlements = entitlements
        self.directory = directory
        self.catalog = catalog

    @property
    def organization(self) -> str:
        return self.entitlements.organization

    def apply(self, record: EntitlementRecord, decision: Decision) -> ApplyOutcome:
        """Run every step of ``decision`` in order. Stops after a delete."""
        outcome = ApplyOutcome()
        for step in decision.steps:
            if step.action is Action.DELETE_FROM_DIRECTORY:
                self.delete_from_directory(record, reason=step.reason)
            elif step.action is Action.DELETE:
                self.delete(record, reason=step.reason)
                outcome.deleted = True
            elif step.action is Action.REMOVE_FROM_LICENSE_GROUPS:
                self.remove_from_license_groups(record)
            elif step.action is Action.ASSIGN_TO_GROUP:
                self.assign_to_group(record, step.license)
            elif step.action is Action.REMOVE_DIRECT_ASSIGNMENT:
                self.remove_direct_assignment(record)
            outcome.applied.append(step)
            if outcome.deleted:
                break
        return outcome

    def delete_from_directory(self, record: EntitlementRecord, reason: str = "") -> None:
        self.directory.delete_identity(record.principal_name)
        logger.info("Deleted user '%s' from the directory (%s).", record.principal_name, reason)
        self._audit("directory_user_deleted", record.principal_name, {"reason": reason}, self.directory.dry_run)

    def delete(self, record: EntitlementRecord, reason: str = "") -> None:
        self.entitlements.delete_user_entitlement(record.id)
        logger.info("Deleted user '%s' from organization (%s).", record.display_name, reason)
        self._audit("user_entitlement_deleted", record.principal_name, {"user_id": record.id, "reason": reason})

    def assign_to_group(self, record: EntitlementRecord, license: License) -> None:
        group = self.catalog.find(license)
        self.entitlements.add_group_member(group.id, record.id)
        logger.info("Added user '%s' to group entitlement '%s'.", record.display_name, group.display_name)
        self._audit("group_member_added", record.principal_name, {"group": group.display_name, "license": license.value})
        self.refresh(record)

    def remove_direct_assignment(self, record: EntitlementRecord) -> None:
        if record.license is not None and record.license.is_visual_studio:
            logger.info("Kept direct license assignment of Visual Studio user '%s'.", record.display_name)
            return
        self.entitlements.remove_direct_assignment(record.id)
        logger.info("Removed direct license assignment for user '%s'.", record.display_name)
        self._audit("direct_assignment_removed", record.principal_name, {"user_id": record.id})
        self.refresh(record)

    def remove_from_license_groups(self, record: EntitlementRecord) -> None:
        removed = False
        for license in License:
            membership = record.group_assignment(self.catalog.display_name_for(license))
            if membership is None:
                continue
            self.entitlements.remove_group_member(membership.id, record.id)
            removed = True
            logger.info("Removed user '%s' from group '%s'.", record.display_name, membership.display_name)
            self._audit("group_member_removed", record.principal_name, {"group": membership.display_name})
        if removed:
            self.refresh(record)

    def refresh(self, record: EntitlementRecord) -> None:
        """Re-read the record; membership writes are not reflected synchronously."""
        record.refresh_from(self.entitlements.get_user_entitlement(record.id))

    def record_group_created(self, group: GroupEntitlement) -> None:
        license = group.license_rule.license_display_name if group.license_rule else None
        self._audit("group_entitlement_created", group.display_name, {"license": license})

    def reevaluate_rules(self) -> None:
        logger.info("Re-evaluating group entitlement rules.")
        self.entitlements.trigger_rule_reevaluation()
        logger.info("Re-evaluated group entitlement rules.")
        self._audit("rules_reevaluated", self.organization, {})

    def _audit(self, event_type: audit.EventType, subject: str, details: dict, dry_run: bool | None = None) -> None:
        audit.safe_log_event(
            event_type,
            subject,
            organization=self.organization,
            details=details,
            dry_run=self.entitlements.dry_run if dry_run is None else dry_run,
        )
