from flask import current_app
from flask_mail import Message

from voat.extensions import mail

OTP_SUBJECT = "Your VOAT OTP Code"
RESET_SUBJECT = "Password Reset Request"
EMAIL_CHANGE_SUBJECT = "Confirm your new email address"


class MailNotifier:
    """Delivers OTPs and verification links over Flask-Mail.

    Every method returns True on success and False when delivery failed; the
    failure itself is logged here. With ``MAIL_SUPPRESS_SEND`` or without SMTP
    credentials nothing is sent and the artifact is logged instead.
    """

    def send_otp(self, recipient: str, otp: str) -> bool:
        body = (
            "Hello,\n\n"
            f"Your One-Time Password (OTP) is: {otp}\n"
            "This code is valid for 5 minutes.\n\n"
            "If you did not request this OTP, please ignore this email.\n\n"
            "Regards,\nVOAT Team"
        )
        return self._send(recipient, OTP_SUBJECT, body, artifact=otp)

    def send_password_reset(self, recipient: str, reset_link: str) -> bool:
        body = (
            "You are receiving this because you (or someone else) requested a reset "
            "of the password for your account.\n\n"
            "Please click on the following link, or paste it into your browser, "
            f"to complete the process:\n{reset_link}\n\n"
            "The link is valid for 1 hour. If you did not request this, please ignore "
            "this email and your password will remain unchanged."
        )
        return self._send(recipient, RESET_SUBJECT, body, artifact=reset_link)

    def send_email_change(self, recipient: str, verify_link: str) -> bool:
        body = (
            "A request was made to use this address for a VOAT account.\n\n"
            f"Confirm the change by opening this link:\n{verify_link}\n\n"
            "The link is valid for 1 hour. If you did not request this, you can ignore this email."
        )
        return self._send(recipient, EMAIL_CHANGE_SUBJECT, body, artifact=verify_link)

    def _send(self, recipient: str, subject: str, body: str, artifact: str) -> bool:
        if not recipient:
            return False
        cfg = current_app.config
        try:
            suppress_send = cfg.get('MAIL_SUPPRESS_SEND')
            missing_creds = not cfg.get('MAIL_USERNAME') or not cfg.get('MAIL_PASSWORD')
            if suppress_send or missing_creds:
                current_app.logger.info("Dev email (not sent) to %s [%s]: %s", recipient, subject, artifact)
                return True
            msg = Message(subject=subject, recipients=[recipient], body=body)
            mail.send(msg)
            return True
        except Exception as exc:
            current_app.logger.error("Failed to send '%s' email to %s: %s", subject, recipient, exc)
            return False
