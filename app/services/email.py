import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from app.config import settings
from app.services.invoice_renderer import artifact_path

logger = logging.getLogger(__name__)

INVOICE_BODY_TEXT = (
    "Hello,\n\nplease find attached the invoice for your subscription.\n\n"
    "Kind regards,\n{company}"
)


class DeliveryError(Exception):
    pass


def _smtp_config() -> dict:
    return {
        "host": settings.smtp_host,
        "port": settings.smtp_port,
        "username": settings.smtp_username,
        "password": settings.smtp_password,
        "use_tls": settings.smtp_use_tls,
        "use_ssl": settings.smtp_use_ssl,
        "from_email": settings.smtp_from_email,
        "from_name": settings.smtp_from_name,
        "timeout": settings.smtp_timeout_seconds,
    }


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: int | None = None):
    if use_ssl:
        if timeout is None:
            return smtplib.SMTP_SSL(host, port)
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    if timeout is None:
        return smtplib.SMTP(host, port)
    return smtplib.SMTP(host, port, timeout=timeout)


def send_email(
    to_email: str,
    subject: str,
    body_text: str,
    attachments: list[Path] | None = None,
    config: dict | None = None,
) -> None:
    """
    Send an email via SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject
        body_text: Plain text body
        attachments: Files attached as application/pdf parts
        config: SMTP settings (defaults to the configured SMTP_* values)

    Raises:
        DeliveryError: An attachment could not be read or the SMTP exchange failed
    """
    config = config or _smtp_config()

    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = f"{config['from_name']} <{config['from_email']}>"
    msg["To"] = to_email
    msg.attach(MIMEText(body_text, "plain"))

    for path in attachments or []:
        try:
            part = MIMEApplication(path.read_bytes(), _subtype="pdf")
        except OSError as exc:
            raise DeliveryError(f"Attachment {path} is not readable: {exc}") from exc
        part.add_header("Content-Disposition", "attachment", filename=path.name)
        msg.attach(part)

    try:
        server = _create_smtp_client(
            config["host"],
            config["port"],
            bool(config["use_ssl"]),
            config.get("timeout"),
        )

        if config["use_tls"] and not config["use_ssl"]:
            server.starttls()

        if config["username"] and config["password"]:
            server.login(config["username"], config["password"])

        server.sendmail(config["from_email"], [to_email], msg.as_string())
        server.quit()
    except smtplib.SMTPAuthenticationError as exc:
        logger.error("SMTP authentication failed for %s: %s", to_email, exc)
        raise DeliveryError("SMTP authentication failed") from exc
    except (smtplib.SMTPException, OSError) as exc:
        logger.error(f"Failed to send email to {to_email}: {exc}")
        raise DeliveryError(str(exc)) from exc

    logger.info("Email sent successfully to %s", to_email)


class SmtpNotifier:
    def __init__(self, artifact_dir: str | None = None, config: dict | None = None):
        self.artifact_dir = artifact_dir
        self.config = config

    def send(self, to_email: str, subject: str, artifact_id: str) -> None:
        send_email(
            to_email,
            subject,
            INVOICE_BODY_TEXT.format(company=settings.company_name),
            attachments=[artifact_path(artifact_id, self.artifact_dir)],
            config=self.config,
        )
