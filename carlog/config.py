"""Runtime configuration: defaults, then an optional YAML file, then environment."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .loader import load_yaml_file

# YAML key -> attribute name
_FILE_KEYS = {
    "dataDir": "data_dir",
    "userId": "user_id",
    "logLevel": "log_level",
    "secretKey": "secret_key",
    "baseUrl": "base_url",
    "webhookSecret": "webhook_secret",
    "webhookTolerance": "webhook_tolerance",
    "checkoutUrl": "checkout_url",
    "portalUrl": "portal_url",
    "emailFrom": "email_from",
    "resendApiKey": "resend_api_key",
    "receiptUrlExpiry": "receipt_url_expiry",
}

# Environment variable -> attribute name
_ENV_KEYS = {
    "CARLOG_DATA_DIR": "data_dir",
    "CARLOG_USER_ID": "user_id",
    "CARLOG_LOG_LEVEL": "log_level",
    "SECRET_KEY": "secret_key",
    "CARLOG_BASE_URL": "base_url",
    "STRIPE_WEBHOOK_SECRET": "webhook_secret",
    "CARLOG_CHECKOUT_URL": "checkout_url",
    "CARLOG_PORTAL_URL": "portal_url",
    "CARLOG_EMAIL_FROM": "email_from",
    "RESEND_API_KEY": "resend_api_key",
}


@dataclass
class Config:
    """Settings shared by the CLI, the web app and the billing webhook."""

    data_dir: str = "data"
    user_id: str = "local"
    log_level: str = "INFO"
    secret_key: str = "dev-secret-key-change-in-prod"
    base_url: str = ""
    webhook_secret: str = ""
    webhook_tolerance: int = 300  # seconds
    checkout_url: str = ""
    portal_url: str = ""
    email_from: str = "GetCarLog <noreply@getcarlog.com>"
    resend_api_key: str = ""
    receipt_url_expiry: int = 3600  # seconds

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> "Config":
        """
        Build a Config.

        Values in the YAML file at path override the defaults; environment
        variables override both.
        """
        values: Dict[str, Any] = {}
        if path is not None:
            data = load_yaml_file(path) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {path} must contain a mapping")
            for key, value in data.items():
                if key not in _FILE_KEYS:
                    raise ValueError(f"Unknown config key '{key}' in {path}")
                values[_FILE_KEYS[key]] = value

        environ = os.environ if environ is None else environ
        for var, attr in _ENV_KEYS.items():
            if environ.get(var):
                values[attr] = environ[var]

        config = cls(**values)
        for f in fields(config):
            if f.type is int:
                setattr(config, f.name, int(getattr(config, f.name)))
        return config
