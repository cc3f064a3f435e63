import os
from typing import Any, Dict

from .errors import ConfigError


PORT = int(os.getenv("PORT", "3000"))
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "https://starfish-app-iuei7.ondigitalocean.app")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
USERS_COLLECTION = os.getenv("USERS_COLLECTION", "users")
REPORT_BUCKET = os.getenv("REPORT_BUCKET")
SUMMARY_STREAM_INTERVAL_SECONDS = float(os.getenv("SUMMARY_STREAM_INTERVAL_SECONDS", "5"))
SUMMARY_STREAM_MAX_POLLS = int(os.getenv("SUMMARY_STREAM_MAX_POLLS", "120"))

# Service-account fields that have no sensible default.
REQUIRED_CREDENTIAL_VARS = {
    "project_id": "FIREBASE_PROJECT_ID",
    "private_key_id": "FIREBASE_PRIVATE_KEY_ID",
    "private_key": "FIREBASE_PRIVATE_KEY",
    "client_email": "FIREBASE_CLIENT_EMAIL",
    "client_id": "FIREBASE_CLIENT_ID",
}

OPTIONAL_CREDENTIAL_VARS = {
    "auth_uri": ("FIREBASE_AUTH_URI", "https://accounts.google.com/o/oauth2/auth"),
    "token_uri": ("FIREBASE_TOKEN_URI", "https://oauth2.googleapis.com/token"),
    "auth_provider_x509_cert_url": (
        "FIREBASE_AUTH_PROVIDER_X509_CERT_URL",
        "https://www.googleapis.com/oauth2/v1/certs",
    ),
    "client_x509_cert_url": ("FIREBASE_CLIENT_X509_CERT_URL", None),
    "universe_domain": ("FIREBASE_UNIVERSE_DOMAIN", "googleapis.com"),
}


def load_service_account_info(environ=None) -> Dict[str, Any]:
    """Build the service-account mapping from ``FIREBASE_*`` environment variables.

    Raises ConfigError naming every missing required variable.
    """
    env = os.environ if environ is None else environ

    missing = [var for var in REQUIRED_CREDENTIAL_VARS.values() if not env.get(var)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    info: Dict[str, Any] = {"type": "service_account"}
    for field, var in REQUIRED_CREDENTIAL_VARS.items():
        info[field] = env[var]
    # Keys pasted into env files usually carry escaped newlines
    info["private_key"] = info["private_key"].replace("\\n", "\n")

    for field, (var, default) in OPTIONAL_CREDENTIAL_VARS.items():
        value = env.get(var) or default
        if value is not None:
            info[field] = value
    return info
