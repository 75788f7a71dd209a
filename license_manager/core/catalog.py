"""Policy-managed group entitlements: naming, lookup and bootstrap."""
from __future__ import annotations
import logging
from typing import Iterable, Optional

from .azure_devops.entitlements import EntitlementService
from .azure_devops.exceptions import GroupEntitlementNotFoundError
from .models import GroupEntitlement, License, LicenseRule

logger = logging.getLogger(__name__)


def group_display_name(license: License, prefix: str = "", suffix: str = "") -> str:
    """Name of the group managing ``license``. Azure DevOps forbids '+' in group names."""
    return f"{prefix}{license.display_name}{suffix}".replace("+", "-")


class GroupCatalog:
    """The organization's group entitlements, indexed by license tier.

    Read-only while users are being evaluated.
    """

    def __init__(self, groups: Iterable[GroupEntitlement], prefix: str = "", suffix: str = ""):
        self.prefix = prefix
        self.suffix = suffix
        self.groups: list[GroupEntitlement] = list(groups)

    def display_name_for(self, license: License) -> str:
        return group_display_name(license, self.prefix, self.suffix)

    @property
    def managed_names(self) -> dict[License, str]:
        return {license: self.display_name_for(license) for license in License}

    def get(self, license: License) -> Optional[GroupEntitlement]:
        name = self.display_name_for(license)
        return next((g for g in self.groups if g.display_name == name), None)

    def find(self, license: License) -> GroupEntitlement:
        """Return the group for ``license``.

        Raises:
            GroupEntitlementNotFoundError: The group was expected to exist
        """
        group = self.get(license)
        if group is None:
            raise GroupEntitlementNotFoundError(
                f"Group entitlement '{self.display_name_for(license)}' for license '{license.value}' not found"
            )
        return group

    def missing_licenses(self) -> list[License]:
        return [license for license in License if self.get(license) is None]

    def is_managed(self, group: GroupEntitlement) -> bool:
        return group.display_name in self.managed_names.values()


def ensure_group_entitlements(
    service: EntitlementService,
    prefix: str = "",
    suffix: str = "",
) -> tuple[GroupCatalog, list[GroupEntitlement]]:
    """Fetch the group entitlements and create one per missing tier.

    Idempotent: with every group present nothing is created. After creating,
    the list is fetched again. Created groups the listing does not show yet
    (creation completes asynchronously) are kept from the create response; in
    dry-run mode the unsaved groups stand in for the ones that were not created.

    Returns:
        (catalog, created groups)

    Raises:
        GroupEntitlementNotFoundError: A created group did not come back
    """
    catalog = GroupCatalog(service.list_group_entitlements(), prefix, suffix)
    logger.info(
        "Fetched %d group entitlements from Azure DevOps organization '%s'",
        len(catalog.groups),
        service.organization,
    )

    created: list[GroupEntitlement] = []
    for license in catalog.missing_licenses():
        display_name = catalog.display_name_for(license)
        group = service.create_group_entitlement(display_name, LicenseRule.for_license(license))
        created.append(group)
        logger.info("Added group entitlement '%s'.", display_name)

    if not created:
        return catalog, created

    catalog = GroupCatalog(service.list_group_entitlements(), prefix, suffix)
    present = {g.display_name for g in catalog.groups}
    for group in created:
        if group.display_name in present or (group.id is None and not service.dry_run):
            continue
        logger.info("Group entitlement '%s' is not listed yet; using the created one.", group.display_name)
        catalog.groups.append(group)
    for license in License:
        catalog.find(license)
    return catalog, created
