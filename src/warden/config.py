"""
Runtime configuration.

Values come from environment variables and are overridden by ``config.json``
in the data directory when that file exists. The signing secret is read once
here and handed to the token service at startup.
"""

import base64
import json
import os
import secrets
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, field_validator

from .errors import ConfigurationInsecure

CONFIG_FILE_NAME = "config.json"

MIN_SECRET_BYTES = 32
SECRET_BYTES = 48

# Default insecure values that should be changed
INSECURE_DEFAULTS: Dict[str, List[str]] = {
    "passwords": ["changeme", "admin", "password", "123456", "test", ""],
    "jwt_secrets": ["please-change-this-secret-key", "secret", "your-secret-key", "changeme", ""],
}


class Settings(BaseModel):
    """
    Process-wide configuration.

    Attributes:
        data_path: Directory holding users.db and config.json
        jwt_secret: HMAC secret for token signing
        jwt_secret_file: File containing the secret (used when jwt_secret is empty)
        security_mode: "strict" refuses to start on insecure config, "warn" only logs
        manager_username: Bootstrap admin, created when no users exist
        manager_password: Bootstrap admin password
    """

    data_path: Path = Path("./data")
    jwt_secret: str = ""
    jwt_secret_file: Optional[Path] = None
    security_mode: str = "strict"

    manager_username: str = ""
    manager_password: str = ""

    access_token_ttl: int = 15 * 60
    refresh_token_ttl: int = 7 * 24 * 60 * 60
    ticket_ttl: float = 30.0
    max_outstanding_tickets: int = 10_000
    ticket_sweep_interval: float = 60.0
    bcrypt_rounds: int = 12

    host_data_path: Path = Path("/opt/hytale")
    server_path: Optional[Path] = None
    mods_path: Optional[Path] = None
    plugins_path: Optional[Path] = None
    backups_path: Optional[Path] = None
    assets_path: Optional[Path] = None

    http_host: str = "0.0.0.0"
    http_port: int = 18080
    stream_host: str = "0.0.0.0"
    stream_port: int = 18081
    cors_origins: str = ""

    log_level: str = "INFO"
    log_file: Optional[Path] = None

    login_attempts_per_window: int = 5
    login_window_seconds: float = 15 * 60
    refresh_per_minute: int = 10
    tickets_per_minute: int = 30

    @field_validator("security_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("strict", "warn"):
            raise ValueError("security_mode must be 'strict' or 'warn'")
        return value

    def _derived(self, value: Optional[Path], name: str) -> Path:
        return value if value is not None else self.host_data_path / name

    @property
    def db_path(self) -> Path:
        return self.data_path / "users.db"

    @property
    def config_file(self) -> Path:
        return self.data_path / CONFIG_FILE_NAME

    @property
    def file_roots(self) -> Dict[str, Path]:
        """Named directories user-supplied paths may resolve into."""
        return {
            "server": self._derived(self.server_path, "server"),
            "mods": self._derived(self.mods_path, "mods"),
            "plugins": self._derived(self.plugins_path, "plugins"),
            "backups": self._derived(self.backups_path, "backups"),
            "assets": self._derived(self.assets_path, "assets"),
        }

    def resolve_secret(self) -> str:
        """Secret from the setting, or from ``jwt_secret_file`` when unset."""
        if self.jwt_secret:
            return self.jwt_secret
        if self.jwt_secret_file is not None:
            try:
                return Path(self.jwt_secret_file).read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.error(f"Failed to read JWT secret file: {e}")
        return ""


# Environment variable -> Settings field
_ENV_FIELDS: Dict[str, str] = {
    "DATA_PATH": "data_path",
    "JWT_SECRET": "jwt_secret",
    "JWT_SECRET_FILE": "jwt_secret_file",
    "SECURITY_MODE": "security_mode",
    "MANAGER_USERNAME": "manager_username",
    "MANAGER_PASSWORD": "manager_password",
    "BCRYPT_ROUNDS": "bcrypt_rounds",
    "HOST_DATA_PATH": "host_data_path",
    "SERVER_PATH": "server_path",
    "MODS_PATH": "mods_path",
    "PLUGINS_PATH": "plugins_path",
    "BACKUPS_PATH": "backups_path",
    "ASSETS_PATH": "assets_path",
    "HTTP_PORT": "http_port",
    "STREAM_PORT": "stream_port",
    "CORS_ORIGINS": "cors_origins",
    "LOG_LEVEL": "log_level",
    "LOG_FILE": "log_file",
}


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build settings from the environment, then overlay config.json.

    Args:
        environ: Mapping to read instead of os.environ (tests)

    Returns:
        Validated Settings
    """
    env = os.environ if environ is None else environ
    values: Dict[str, object] = {}
    for var, field in _ENV_FIELDS.items():
        if env.get(var):
            values[field] = env[var]

    data_path = Path(str(values.get("data_path", Settings.model_fields["data_path"].default)))
    config_file = data_path / CONFIG_FILE_NAME
    if config_file.exists():
        try:
            file_values = json.loads(config_file.read_text(encoding="utf-8"))
            if isinstance(file_values, dict):
                values.update({k: v for k, v in file_values.items() if k in Settings.model_fields})
                logger.info(f"Loaded configuration from {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load {config_file}, using environment only: {e}")

    return Settings(**values)


def _secret_issue(secret: str) -> Optional[str]:
    if not secret:
        return "JWT secret is not set (generate one with `warden generate-secret`)"
    if secret in INSECURE_DEFAULTS["jwt_secrets"]:
        return "JWT secret is a known default value"
    if len(secret.encode("utf-8")) < MIN_SECRET_BYTES:
        return f"JWT secret must be at least {MIN_SECRET_BYTES} bytes"
    return None


def find_security_issues(settings: Settings, bootstrap_needed: bool = True) -> Dict[str, List[str]]:
    """
    Inspect settings for insecure values.

    Args:
        settings: Settings to check
        bootstrap_needed: Whether a bootstrap admin would be created from the manager credentials

    Returns:
        {"critical": [...], "warnings": [...]}
    """
    critical: List[str] = []
    warnings: List[str] = []

    secret_issue = _secret_issue(settings.resolve_secret())
    if secret_issue:
        critical.append(secret_issue)

    if bootstrap_needed:
        if not settings.manager_username:
            critical.append("MANAGER_USERNAME is not set")
        if settings.manager_password in INSECURE_DEFAULTS["passwords"]:
            critical.append("MANAGER_PASSWORD is missing or a default/weak value")
        elif len(settings.manager_password) < 12:
            warnings.append("MANAGER_PASSWORD should be at least 12 characters")

    if not settings.cors_origins:
        critical.append("CORS_ORIGINS is not set")
    elif settings.cors_origins.strip() == "*":
        warnings.append("CORS_ORIGINS is '*' (allows all origins)")

    return {"critical": critical, "warnings": warnings}


def check_security_config(settings: Settings, bootstrap_needed: bool = True) -> List[str]:
    """
    Validate security configuration on startup.

    In strict mode, critical issues raise ConfigurationInsecure. In warn mode
    they are logged and startup continues.

    Returns:
        Critical issues that were tolerated (warn mode), empty otherwise

    Raises:
        ConfigurationInsecure: strict mode with at least one critical issue
    """
    issues = find_security_issues(settings, bootstrap_needed=bootstrap_needed)

    for warning in issues["warnings"]:
        logger.warning(f"Security warning: {warning}")

    if not issues["critical"]:
        return []

    for issue in issues["critical"]:
        logger.error(f"Security configuration: {issue}")

    if settings.security_mode == "strict":
        raise ConfigurationInsecure(issues["critical"])

    logger.warning("SECURITY_MODE=warn: starting despite insecure configuration. Do not expose this server publicly.")
    return issues["critical"]


def generate_secret() -> str:
    """Generate a signing secret (48 random bytes, base64)."""
    return base64.b64encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii")
