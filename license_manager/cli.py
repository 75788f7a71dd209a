"""Command-line entry point for Azure DevOps license reconciliation.

Examples:
    manage-licenses reconcile --dry-run
    manage-licenses cutoffs
    manage-licenses verify-audit
"""
from __future__ import annotations
import argparse
import json
import sys

from license_manager.config import configure_logging, load_settings
from license_manager.core import audit
from license_manager.core.azure_devops.exceptions import GroupEntitlementNotFoundError
from license_manager.core.exceptions import ConfigurationError
from license_manager.core.reconciler import build_reconciler

EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage-licenses", description="Azure DevOps license reconciliation")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Log mutating calls instead of sending them (overrides DRY_RUN)")
    parser.add_argument("--delete-directory-users", action="store_true", default=None,
                        help="Also delete long-inactive identities from the directory")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")

    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("reconcile", help="Run one reconciliation pass and print its report")
    sub.add_parser("cutoffs", help="Print the policy cutoffs for the current settings")
    sub.add_parser("verify-audit", help="Verify audit trail signatures")
    return parser


def verify_audit() -> int:
    """Print the signature check of the audit trail.

    Lines with a wrong signature always fail. Unsigned lines only fail once a
    signing key is configured.
    """
    total, valid, unsigned = audit.verify_audit_log()
    invalid = total - valid - unsigned
    key_configured = audit.signing_key_configured()
    print(json.dumps({
        "audit_log": str(audit.AUDIT_LOG_FILE),
        "total": total,
        "valid": valid,
        "unsigned": unsigned,
        "invalid": invalid,
        "signing_key_configured": key_configured,
    }))
    if not key_configured and unsigned:
        print("[verify-audit] Warning: AUDIT_LOG_SIGNING_KEY is not set; events are unsigned", file=sys.stderr)
    if invalid or (key_configured and unsigned):
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    if args.cmd == "verify-audit":
        return verify_audit()

    try:
        cfg = load_settings()
    except ConfigurationError as e:
        print(f"[{args.cmd}] Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(args.log_level or cfg.log_level)

    if args.cmd == "cutoffs":
        print(json.dumps(cfg.cutoffs().to_dict(), indent=2))
        return 0

    if args.cmd == "reconcile":
        try:
            reconciler = build_reconciler(
                cfg,
                dry_run=args.dry_run,
                delete_directory_users=args.delete_directory_users,
            )
            report = reconciler.run()
        except ConfigurationError as e:
            print(f"[reconcile] Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR
        except GroupEntitlementNotFoundError as e:
            print(f"[reconcile] Error: {e}", file=sys.stderr)
            return 1
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
