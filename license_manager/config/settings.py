"""Settings loader with environment variable, Docker secrets and Azure Key Vault integration."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from license_manager.core.exceptions import ConfigurationError
from license_manager.core.policy import Cutoffs, compute_cutoffs, parse_word_list

DEFAULT_DAYS_BEFORE_DELETION = 180
DEFAULT_DAYS_BEFORE_STAKEHOLDER = 90
DEFAULT_DAYS_GRACE_AFTER_CREATION = 30

# Environment variable -> Key Vault secret name (overridable via AZURE_SECRET_<VAR>)
KEYVAULT_SECRET_MAPPING = {
    "AZURE_DEVOPS_PAT": "azure-devops-pat",
    "GRAPH_CLIENT_SECRET": "graph-client-secret",
    "RECONCILE_TRIGGER_TOKEN": "reconcile-trigger-token",
    "AUDIT_LOG_SIGNING_KEY": "audit-log-signing-key",
}


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _load_keyvault_secrets() -> None:
    """Copy missing secrets from Azure Key Vault into the environment."""
    vault_name = os.environ.get("AZURE_KEY_VAULT_NAME", "").strip()
    if not vault_name:
        raise ConfigurationError("AZURE_KEY_VAULT_NAME required when AZURE_USE_KEYVAULT=true")

    from azure.identity import DefaultAzureCredential
    from azure.keyvault.secrets import SecretClient

    secret_client = SecretClient(
        vault_url=f"https://{vault_name}.vault.azure.net",
        credential=DefaultAzureCredential(),
    )
    for env_name, default_secret in KEYVAULT_SECRET_MAPPING.items():
        if os.environ.get(env_name):
            continue
        secret_name = os.environ.get(f"AZURE_SECRET_{env_name}", default_secret).strip()
        if not secret_name:
            continue
        try:
            secret = secret_client.get_secret(secret_name)
        except Exception as exc:
            print(f"[settings] ✗ Failed to load secret '{secret_name}' from Key Vault: {exc}")
            continue
        if secret.value:
            os.environ[env_name] = secret.value
            print(f"[settings] ✓ Loaded secret '{secret_name}' into {env_name}")


def _env_flag(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _require(name: str, value: Optional[str]) -> str:
    if not value or not value.strip():
        raise ConfigurationError(f"Environment variable {name} is required.")
    return value.strip()


def _parse_days(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        days = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a whole number of days, got {raw!r}")
    if days < 0:
        raise ConfigurationError(f"{name} must not be negative, got {days}")
    return days


@dataclass
class AppConfig:
    """Application configuration container."""
    # Azure DevOps
    organization: str
    personal_access_token: str
    vsaex_url: str = "https://vsaex.dev.azure.com"

    # Microsoft Graph
    graph_tenant_id: str = ""
    graph_client_id: str = ""
    graph_client_secret: str = ""
    graph_authority_url: str = "https://login.microsoftonline.com"
    graph_api_url: str = "https://graph.microsoft.com"

    # Policy
    days_before_deletion: int = DEFAULT_DAYS_BEFORE_DELETION
    days_before_stakeholder: int = DEFAULT_DAYS_BEFORE_STAKEHOLDER
    days_grace_after_creation: int = DEFAULT_DAYS_GRACE_AFTER_CREATION
    group_entitlement_prefix: str = "License-"
    group_entitlement_suffix: str = ""
    excluded_words_in_user_names: list[str] = field(default_factory=list)
    excluded_upns: list[str] = field(default_factory=list)

    # Behaviour
    dry_run: bool = False
    delete_directory_users: bool = False

    # HTTP trigger
    reconcile_trigger_token: str = ""

    # Runtime
    azure_use_keyvault: bool = False
    log_level: str = "INFO"

    def cutoffs(self, now: Optional[datetime] = None) -> Cutoffs:
        """Policy cutoffs relative to ``now`` (current UTC time by default)."""
        return compute_cutoffs(
            now,
            self.days_before_deletion,
            self.days_before_stakeholder,
            self.days_grace_after_creation,
        )


def load_settings() -> AppConfig:
    """Load application settings from environment, /run/secrets, and Azure Key Vault.

    Raises:
        ConfigurationError: If a required value is missing or a day count is invalid
    """
    azure_use_keyvault = _env_flag("AZURE_USE_KEYVAULT")
    if azure_use_keyvault:
        _load_keyvault_secrets()

    organization = _require("AZURE_DEVOPS_ORGANIZATION", os.environ.get("AZURE_DEVOPS_ORGANIZATION"))
    personal_access_token = _require(
        "AZURE_DEVOPS_PAT", _load_secret_from_file("azure_devops_pat", "AZURE_DEVOPS_PAT")
    )

    graph_tenant_id = _require("GRAPH_TENANT_ID", os.environ.get("GRAPH_TENANT_ID"))
    graph_client_id = _require("GRAPH_CLIENT_ID", os.environ.get("GRAPH_CLIENT_ID"))
    graph_client_secret = _require(
        "GRAPH_CLIENT_SECRET", _load_secret_from_file("graph_client_secret", "GRAPH_CLIENT_SECRET")
    )

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key

    # DISABLE_API_OPERATIONS is the legacy name of DRY_RUN
    dry_run = _env_flag("DRY_RUN", _env_flag("DISABLE_API_OPERATIONS"))

    cfg = AppConfig(
        organization=organization,
        personal_access_token=personal_access_token,
        vsaex_url=os.environ.get("AZURE_DEVOPS_VSAEX_URL", "https://vsaex.dev.azure.com").rstrip("/"),
        graph_tenant_id=graph_tenant_id,
        graph_client_id=graph_client_id,
        graph_client_secret=graph_client_secret,
        graph_authority_url=os.environ.get("GRAPH_AUTHORITY_URL", "https://login.microsoftonline.com").rstrip("/"),
        graph_api_url=os.environ.get("GRAPH_API_URL", "https://graph.microsoft.com").rstrip("/"),
        days_before_deletion=_parse_days("DAYS_BEFORE_DELETION", DEFAULT_DAYS_BEFORE_DELETION),
        days_before_stakeholder=_parse_days("DAYS_BEFORE_STAKEHOLDER", DEFAULT_DAYS_BEFORE_STAKEHOLDER),
        days_grace_after_creation=_parse_days("DAYS_GRACE_AFTER_CREATION", DEFAULT_DAYS_GRACE_AFTER_CREATION),
        group_entitlement_prefix=os.environ.get("GROUP_ENTITLEMENT_PREFIX", "License-"),
        group_entitlement_suffix=os.environ.get("GROUP_ENTITLEMENT_SUFFIX", ""),
        excluded_words_in_user_names=parse_word_list(os.environ.get("EXCLUDED_WORDS_IN_USER_NAMES", "")),
        excluded_upns=parse_word_list(os.environ.get("EXCLUDED_UPNS", "")),
        dry_run=dry_run,
        delete_directory_users=_env_flag("DELETE_DIRECTORY_USERS"),
        reconcile_trigger_token=_load_secret_from_file("reconcile_trigger_token", "RECONCILE_TRIGGER_TOKEN") or "",
        azure_use_keyvault=azure_use_keyvault,
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )

    cutoffs = cfg.cutoffs()
    print(f"[settings] Organization={organization}; dry_run={dry_run}; delete_directory_users={cfg.delete_directory_users}")
    print(f"[settings] Delete cutoff: {cutoffs.delete_cutoff.isoformat()}")
    print(f"[settings] Stakeholder cutoff: {cutoffs.demote_cutoff.isoformat()}")
    print(f"[settings] Created after cutoff: {cutoffs.created_after_cutoff.isoformat()}")
    if dry_run:
        print("[settings] WARNING: DRY_RUN=true, no changes will be written.")

    return cfg
