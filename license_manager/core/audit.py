"""Audit logging for license reconciliation (signed JSONL trail)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "license-events.jsonl"

EventType = Literal[
    "group_entitlement_created",
    "group_member_added",
    "group_member_removed",
    "direct_assignment_removed",
    "user_entitlement_deleted",
    "directory_user_deleted",
    "rules_reevaluated",
]


def _get_signing_key() -> bytes:
    """Signing key from AUDIT_LOG_SIGNING_KEY or the file named by AUDIT_LOG_SIGNING_KEY_FILE."""
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if key_file and Path(key_file).exists():
        try:
            return Path(key_file).read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            logger.warning("Could not read audit signing key file %s", key_file)
    return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")


def signing_key_configured() -> bool:
    return bool(_get_signing_key())


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    subject: str,
    *,
    organization: str = "",
    details: dict[str, Any] | None = None,
    dry_run: bool = False,
    success: bool = True,
) -> None:
    """Append one event to the audit trail with timestamp and signature.

    Args:
        event_type: Kind of change applied
        subject: Principal name or group name affected
        organization: Azure DevOps organization
        details: Additional context (group, license, reason, ...)
        dry_run: Whether the change was only simulated
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "organization": organization,
        "subject": subject,
        "dry_run": dry_run,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(event_type: EventType, subject: str, **kwargs: Any) -> bool:
    """Log an event without ever raising.

    Audit failures must not interrupt a reconciliation pass.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_event(event_type, subject, **kwargs)
        return True
    except Exception as e:
        logger.warning("Failed to log %s event for %s: %s", event_type, subject, e)
        return False


def verify_audit_log() -> tuple[int, int, int]:
    """Verify all signatures in the audit log.

    Events written without a signing key carry no signature and are counted
    apart from the ones whose signature does not match.

    Returns:
        Tuple of (total_events, valid_signatures, unsigned_events)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0, 0

    total = 0
    valid = 0
    unsigned = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    unsigned += 1
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid, unsigned
