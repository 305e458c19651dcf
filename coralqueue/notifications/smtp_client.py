"""SMTP client wrapper for email delivery.

Thin wrapper around smtplib with TLS/SSL, authentication and connection
cleanup. Failures are classified for the dispatcher: refused recipients and
rejected content are permanent, everything else is worth retrying.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from coralqueue.config.environment import EnvironmentConfig

from .models import DeliveryError, PermanentDeliveryError

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


class SMTPClient:
    """Sends EmailMessage objects through the configured SMTP server.

    The smtplib factories can be injected so tests never open a socket.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        self.env_config = env_config
        self.use_tls = use_tls
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(self, message: EmailMessage) -> None:
        """Deliver one message.

        Raises:
            PermanentDeliveryError: The server refused the recipient or content
            DeliveryError: Any other SMTP or network failure
        """
        env = self.env_config
        smtp = None
        try:
            if env.smtp_port == IMPLICIT_TLS_PORT:
                logger.debug(f"Connecting to {env.smtp_host}:{env.smtp_port} with implicit TLS")
                smtp = self.smtp_ssl_factory(
                    env.smtp_host, env.smtp_port, context=ssl.create_default_context()
                )
            else:
                logger.debug(f"Connecting to {env.smtp_host}:{env.smtp_port}")
                smtp = self.smtp_factory(env.smtp_host, env.smtp_port)
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if env.smtp_user and env.smtp_pass:
                smtp.login(env.smtp_user, env.smtp_pass)

            smtp.send_message(message)
            logger.debug(f"Message sent to {message['To']}")

        except smtplib.SMTPRecipientsRefused as e:
            raise PermanentDeliveryError(f"Recipient refused: {message['To']}") from e
        except smtplib.SMTPDataError as e:
            if 500 <= e.smtp_code < 600:
                raise PermanentDeliveryError(f"Message rejected by server: {e}") from e
            raise DeliveryError(f"SMTP error during message delivery: {e}") from e
        except smtplib.SMTPException as e:
            raise DeliveryError(f"SMTP error during message delivery: {e}") from e
        except OSError as e:
            raise DeliveryError(f"Network error during SMTP connection: {e}") from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def normalize_recipient(address: str) -> str:
    """Validate an email address and return its normalized form.

    Raises:
        PermanentDeliveryError: If the address is not a valid email
    """
    try:
        return validate_email(address.strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise PermanentDeliveryError(f"Invalid recipient '{address}': {e}") from e


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the From header, e.g. ``Coral Store <orders@example.com>``.

    Falls back to noreply@<smtp host> when no SMTP user is configured.
    """
    sender_email = env_config.smtp_user or f"noreply@{env_config.smtp_host}"
    return f"{env_config.smtp_sender_name} <{sender_email}>"
