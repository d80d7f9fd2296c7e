"""GA4 credential providers.

The credential used to call the GA4 Data API is chosen explicitly through
``GA4_AUTH_MODE`` and resolved once at startup; connectors receive the
resolved object instead of inspecting the process environment per call.

    service_account_key  key file at GA4_CREDENTIALS_PATH
    ambient              Application Default Credentials (workload identity,
                         metadata server, gcloud ADC)
    impersonated         ADC impersonating GA4_IMPERSONATE_SERVICE_ACCOUNT
    user                 authorized_user JSON at GA4_USER_CREDENTIALS_PATH

On PaaS hosts the key file cannot be committed, so ``bootstrap_credentials``
can write it from the ``GA4_CREDENTIALS_JSON`` env var before resolution.
"""
import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import google.auth
from google.auth import impersonated_credentials
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials

from app.config import Settings, get_settings
from app.utils.logger import log

GA4_SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]
CLOUD_PLATFORM_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
IMPERSONATION_LIFETIME_SECONDS = 3600


class CredentialMode(str, Enum):
    SERVICE_ACCOUNT_KEY = "service_account_key"
    AMBIENT = "ambient"
    IMPERSONATED = "impersonated"
    USER = "user"


@dataclass(frozen=True)
class ResolvedCredentials:
    """A credential ready to hand to BetaAnalyticsDataClient"""
    mode: CredentialMode
    credentials: Any
    principal: Optional[str] = None
    project_id: Optional[str] = None

    def describe(self) -> str:
        label = {
            CredentialMode.SERVICE_ACCOUNT_KEY: "Service account key file",
            CredentialMode.AMBIENT: "Application Default Credentials",
            CredentialMode.IMPERSONATED: "Service account impersonation",
            CredentialMode.USER: "Interactive user credentials",
        }[self.mode]
        if self.principal:
            return f"{label} ({self.principal})"
        return label


def _require(value: Optional[str], setting_name: str, mode: CredentialMode) -> str:
    if not value:
        raise ValueError(f"{setting_name} must be set when GA4_AUTH_MODE={mode.value}")
    return value


def resolve_credentials(settings: Optional[Settings] = None) -> ResolvedCredentials:
    """Build the GA4 credential for the configured auth mode."""
    settings = settings or get_settings()

    try:
        mode = CredentialMode(settings.ga4_auth_mode.strip().lower())
    except ValueError:
        valid = ", ".join(m.value for m in CredentialMode)
        raise ValueError(f"Unknown GA4_AUTH_MODE '{settings.ga4_auth_mode}'. Valid options: {valid}")

    if mode is CredentialMode.SERVICE_ACCOUNT_KEY:
        path = _require(settings.ga4_credentials_path, "GA4_CREDENTIALS_PATH", mode)
        credentials = service_account.Credentials.from_service_account_file(path, scopes=GA4_SCOPES)
        resolved = ResolvedCredentials(
            mode=mode,
            credentials=credentials,
            principal=getattr(credentials, "service_account_email", None),
            project_id=getattr(credentials, "project_id", None),
        )

    elif mode is CredentialMode.IMPERSONATED:
        target = _require(settings.ga4_impersonate_service_account, "GA4_IMPERSONATE_SERVICE_ACCOUNT", mode)
        source, project_id = google.auth.default(scopes=CLOUD_PLATFORM_SCOPES)
        credentials = impersonated_credentials.Credentials(
            source_credentials=source,
            target_principal=target,
            target_scopes=GA4_SCOPES,
            lifetime=IMPERSONATION_LIFETIME_SECONDS,
        )
        resolved = ResolvedCredentials(mode=mode, credentials=credentials, principal=target, project_id=project_id)

    elif mode is CredentialMode.USER:
        path = _require(settings.ga4_user_credentials_path, "GA4_USER_CREDENTIALS_PATH", mode)
        credentials = UserCredentials.from_authorized_user_file(path, scopes=GA4_SCOPES)
        resolved = ResolvedCredentials(mode=mode, credentials=credentials)

    else:
        credentials, project_id = google.auth.default(scopes=GA4_SCOPES)
        resolved = ResolvedCredentials(
            mode=mode,
            credentials=credentials,
            principal=getattr(credentials, "service_account_email", None),
            project_id=project_id,
        )

    log.info(f"GA4 credentials resolved: {resolved.describe()}")
    return resolved


def _is_json(value: str) -> bool:
    """Check if a string looks like JSON content (not a file path)."""
    stripped = value.strip()
    return stripped.startswith("{") and stripped.endswith("}")


def bootstrap_credentials(settings: Optional[Settings] = None) -> bool:
    """Write the service account key file from GA4_CREDENTIALS_JSON if missing.

    Returns True when a file was written.
    """
    settings = settings or get_settings()
    path = settings.ga4_credentials_path
    json_str = os.environ.get("GA4_CREDENTIALS_JSON", "")

    if not path or not json_str:
        return False

    if os.path.exists(path):
        log.info(f"Credential file {path} already exists, skipping")
        return False

    if not _is_json(json_str):
        log.error("GA4_CREDENTIALS_JSON does not contain JSON, skipping")
        return False

    try:
        json.loads(json_str)
    except json.JSONDecodeError:
        log.error("GA4_CREDENTIALS_JSON is not valid JSON, skipping")
        return False

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        f.write(json_str)
    log.info(f"Wrote {path} from GA4_CREDENTIALS_JSON")
    return True
