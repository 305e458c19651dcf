"""Environment variable loading and validation."""

import os
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/notification_queue.db"
DEFAULT_SMTP_PORT = 587
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Secrets and deployment settings read from the environment."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = DEFAULT_SMTP_PORT,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        admin_email: Optional[str] = None,
        admin_api_token: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
        database_url: Optional[str] = None,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "Coral Store"
        self.admin_email = admin_email
        self.admin_api_token = admin_api_token
        self.log_level = log_level
        self.environment = environment or "local"
        self.database_url = database_url or DEFAULT_DATABASE_URL

    @property
    def smtp_enabled(self) -> bool:
        """Email delivery is on only when an SMTP host is configured."""
        return bool(self.smtp_host)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional. Without SMTP_HOST the worker runs with the
    logging channel, which records what would have been sent.

    Variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/notification_queue.db)
    - SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS / SMTP_SENDER_NAME
    - NOTIFY_ADMIN_EMAIL: Recipient for admin alerts (LOW_STOCK) and fallback
    - ADMIN_API_TOKEN: Shared secret required by the admin HTTP API
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Label attached to every log record

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is invalid
    """
    errors = []

    smtp_host = os.getenv("SMTP_HOST") or None
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER") or None
    smtp_pass = os.getenv("SMTP_PASS") or None
    admin_email = os.getenv("NOTIFY_ADMIN_EMAIL") or None
    log_level = os.getenv("LOG_LEVEL") or None

    smtp_port = DEFAULT_SMTP_PORT
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if not 1 <= smtp_port <= 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if admin_email:
        try:
            admin_email = validate_email(admin_email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors.append(f"Invalid NOTIFY_ADMIN_EMAIL '{admin_email}': {e}")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Leave SMTP_HOST unset to run without email delivery",
            ],
        )

    return EnvironmentConfig(
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=os.getenv("SMTP_SENDER_NAME") or None,
        admin_email=admin_email,
        admin_api_token=os.getenv("ADMIN_API_TOKEN") or None,
        log_level=log_level.upper() if log_level else None,
        environment=os.getenv("ENVIRONMENT") or None,
        database_url=os.getenv("DATABASE_URL") or None,
    )
