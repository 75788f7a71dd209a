"""Core Business Logic Module

License reconciliation for one Azure DevOps organization, independent of
HTTP frameworks (Flask) and of the CLI.

Module Structure:
    - azure_devops/   : Azure DevOps entitlement API client and service
    - graph/          : Microsoft Graph client and directory lookups
    - models.py       : Entitlement, group and directory identity records
    - policy.py       : Cutoff clock and per-user rule evaluation (pure)
    - catalog.py      : Policy-managed group entitlements and bootstrap
    - convergence.py  : Applies decisions through the remote services
    - reconciler.py   : Organization-wide pass and run report
    - audit.py        : Signed JSONL audit trail

Usage Pattern:
    These modules are NOT auto-imported. Import explicitly when needed:
        from license_manager.core.reconciler import OrganizationReconciler, build_reconciler
        from license_manager.core.policy import compute_cutoffs, evaluate
"""
