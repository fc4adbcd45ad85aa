"""Shared configuration utilities."""

import os
from dataclasses import dataclass
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean environment variable ("true"/"false")."""
    return get_env(key, "true" if default else "false").lower() == "true"


@dataclass
class SyncSettings:
    """Runtime settings for the reminder sync agent."""
    base_url: str = "https://go.tradifyhq.com/api"
    client_api_version: str = "69"
    created_by_user_id: str = "99724ead-3ce3-4457-9cdd-3f1ec120adbd"
    tenant_id: str = "00000000-0000-0000-0000-000000000000"
    description: str = "Automated creation"
    email_send_mode: int = 1  # 1 = Manual, 2 = Automatic
    email_template_id: Optional[str] = None
    reminder_link_template: str = "https://go.tradifyhq.com/#/servicereminder/{id}"

    trigger_field: str = "Custom4"
    job_entity_type: str = "Job:#Tradify.Models"
    reminder_entity_type: str = "ServiceReminder:#Tradify.Models"
    reminder_resource_name: str = "ServiceReminders"

    credential_header: str = "requestverificationantiforgerytoken"
    credential_storage_key: str = "tradify.antiforgery"
    credential_storage_file: Optional[str] = None
    credential_poll_interval: float = 0.25
    credential_max_wait: float = 10.0

    request_timeout: float = 15.0
    max_attempts: int = 4
    retry_initial_delay: float = 1.0

    debounce_seconds: float = 1.0
    settle_seconds: float = 0.5
    snapshot_wait_seconds: float = 3.0

    search_page_size: int = 100
    search_max_pages: int = 5
    date_dayfirst: bool = True


def get_sync_settings() -> SyncSettings:
    """Build SyncSettings from environment."""
    return SyncSettings(
        base_url=get_env("TRADIFY_BASE_URL", "https://go.tradifyhq.com/api"),
        client_api_version=get_env("TRADIFY_CLIENT_API_VERSION", "69"),
        created_by_user_id=get_env(
            "REMINDER_CREATED_BY_USER_ID", "99724ead-3ce3-4457-9cdd-3f1ec120adbd"
        ),
        tenant_id=get_env("REMINDER_TENANT_ID", "00000000-0000-0000-0000-000000000000"),
        description=get_env("REMINDER_DESCRIPTION", "Automated creation"),
        email_send_mode=int(get_env("REMINDER_EMAIL_SEND_MODE", "1")),
        trigger_field=get_env("TRIGGER_FIELD", "Custom4"),
        credential_storage_key=get_env("CREDENTIAL_STORAGE_KEY", "tradify.antiforgery"),
        credential_storage_file=get_env("CREDENTIAL_STORAGE_FILE"),
        credential_poll_interval=float(get_env("CREDENTIAL_POLL_INTERVAL", "0.25")),
        credential_max_wait=float(get_env("CREDENTIAL_MAX_WAIT", "10")),
        request_timeout=float(get_env("REQUEST_TIMEOUT", "15")),
        max_attempts=int(get_env("RETRY_MAX_ATTEMPTS", "4")),
        retry_initial_delay=float(get_env("RETRY_INITIAL_DELAY", "1.0")),
        debounce_seconds=float(get_env("DEBOUNCE_SECONDS", "1.0")),
        settle_seconds=float(get_env("SETTLE_SECONDS", "0.5")),
        snapshot_wait_seconds=float(get_env("SNAPSHOT_WAIT_SECONDS", "3.0")),
        search_page_size=int(get_env("SEARCH_PAGE_SIZE", "100")),
        search_max_pages=int(get_env("SEARCH_MAX_PAGES", "5")),
        date_dayfirst=get_bool_env("DATE_DAYFIRST", True),
    )
