"""
GA4 provider error taxonomy

Every failure coming out of the GA4 Data API is converted into one of
these so the sync layer can tell configuration problems (access denied,
bad property id) from throttling and transient faults, and can give an
operator-legible message when the credential itself has expired.
"""
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions


REAUTH_HINT = (
    'Run "gcloud auth application-default login" (or refresh the configured '
    "GA4 credential) to re-authenticate."
)


class GA4Error(Exception):
    """Base class for GA4 Data API failures"""

    retryable = False
    category = "provider_error"

    def __init__(self, message: str, property_id: str = None):
        super().__init__(message)
        self.property_id = property_id


class AccessDeniedError(GA4Error):
    """Credential lacks Viewer access to the property"""
    category = "access_denied"


class InvalidArgumentError(GA4Error):
    """Malformed property id or date"""
    category = "invalid_argument"


class QuotaExhaustedError(GA4Error):
    """Provider rate limit / quota hit"""
    retryable = True
    category = "quota_exhausted"


class CredentialExpiredError(GA4Error):
    """Ambient credential expired, needs out-of-band re-authentication"""
    category = "credential_expired"


class ConfigurationError(GA4Error):
    """GA4_AUTH_MODE or the credential it points at is unusable"""
    category = "configuration"


class TransientProviderError(GA4Error):
    """Network blips, timeouts and 5xx responses"""
    retryable = True
    category = "transient"


_TRANSIENT_API_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    google_exceptions.BadGateway,
    google_exceptions.Aborted,
)


def _is_reauth_error(error: Exception) -> bool:
    text = str(error).lower()
    return "invalid_rapt" in text or "invalid_grant" in text or "reauth" in text


def map_provider_error(error: Exception, property_id: str = None, date_label: str = None) -> GA4Error:
    """
    Convert an exception raised by the GA4 client into the taxonomy.

    Already-mapped errors are returned unchanged.
    """
    if isinstance(error, GA4Error):
        return error

    if isinstance(error, auth_exceptions.RefreshError) or _is_reauth_error(error):
        return CredentialExpiredError(
            f"Google Cloud credential expired or was revoked. {REAUTH_HINT} ({error})",
            property_id=property_id,
        )

    if isinstance(error, google_exceptions.Unauthenticated):
        return CredentialExpiredError(
            f"GA4 rejected the credential as unauthenticated. {REAUTH_HINT} ({error})",
            property_id=property_id,
        )

    if isinstance(error, google_exceptions.PermissionDenied):
        return AccessDeniedError(
            f"Permission denied for property {property_id}. "
            f"Ensure the service account has Viewer access.",
            property_id=property_id,
        )

    if isinstance(error, google_exceptions.InvalidArgument):
        detail = f"{property_id}, {date_label}" if date_label else f"{property_id}"
        return InvalidArgumentError(
            f"Invalid property ID or date format: {detail} ({error})",
            property_id=property_id,
        )

    if isinstance(error, google_exceptions.ResourceExhausted):
        return QuotaExhaustedError(
            "GA4 API quota exceeded. Please try again later.",
            property_id=property_id,
        )

    if isinstance(error, _TRANSIENT_API_ERRORS + (ConnectionError, TimeoutError)):
        return TransientProviderError(
            f"Transient GA4 failure for property {property_id}: {error}",
            property_id=property_id,
        )

    return GA4Error(str(error), property_id=property_id)
