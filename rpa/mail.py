"""
Activation mail delivery over SMTP.
"""

import logging
import smtplib
from email.message import EmailMessage

from .config import Options

logger = logging.getLogger(__name__)

SIGNATURE_LINES = ("", "Regards,", "The Milagro MFA Team")


def format_activation_code(activation_code: int) -> str:
    """Split a numeric code into three zero-padded groups: NNNN-NNNN-NNNN."""
    ac3 = activation_code % 10000
    ac2 = activation_code // 10000 % 10000
    ac1 = activation_code // (10000 * 10000)
    return f"{ac1:04d}-{ac2:04d}-{ac3:04d}"


class SmtpMailer:
    def __init__(self, options: Options):
        self.options = options

    def _message(self, user_id: str, lines) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.options.email_sender
        msg["To"] = user_id
        msg["Subject"] = self.options.email_subject
        msg.set_content("\n".join(list(lines) + list(SIGNATURE_LINES)) + "\n")
        return msg

    def send(self, msg: EmailMessage) -> None:
        o = self.options
        with smtplib.SMTP(o.smtp_server, o.smtp_port, timeout=30) as smtp:
            if o.smtp_use_tls:
                smtp.starttls()
            if o.smtp_password:
                smtp.login(o.smtp_user, o.smtp_password)
            smtp.send_message(msg)

    def send_activation_mail(self, user_id: str, device_name: str, validate_url: str) -> None:
        logger.debug("Activation link mail for %s (%s)", user_id, device_name)
        self.send(self._message(user_id, (
            "Your identity is now ready to activate:",
            "Click this activation link and follow the instructions:",
            validate_url,
        )))

    def send_activation_code_mail(self, user_id: str, device_name: str, activation_code: int) -> None:
        logger.debug("Activation code mail for %s (%s)", user_id, device_name)
        self.send(self._message(user_id, (
            "Your Activation code is",
            format_activation_code(activation_code),
        )))
