import asyncio
import logging
from functools import partial
import resend
from app.core.config import settings

logger = logging.getLogger(__name__)

SUBJECTS = {
    "verify": "Verify your email",
    "reset": "Reset your password",
}


class EmailService:
    """Send one-time codes through Resend."""

    def __init__(self, api_key: str | None, from_email: str, otp_expire_minutes: int):
        self.api_key = api_key
        self.from_email = from_email
        self.otp_expire_minutes = otp_expire_minutes

    @staticmethod
    async def _run_blocking(fn, *args, **kwargs):
        """Run the blocking SDK call in the default threadpool"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    def _send_email_blocking(self, to: str, subject: str, html: str) -> dict:
        resend.api_key = self.api_key
        return resend.Emails.send({
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html,
        })

    async def send_otp_email(self, email: str, otp_code: str, purpose: str = "verify",
                             max_retries: int = 3) -> bool:
        """Send an OTP; returns False once all attempts failed or mail is unconfigured"""
        if not self.api_key:
            logger.warning(f"RESEND_API_KEY not set; OTP for {email} ({purpose}): {otp_code}")
            return False

        subject = SUBJECTS.get(purpose, "Your verification code")
        html = (
            f"<p>Your OTP code is <strong>{otp_code}</strong>. "
            f"It will expire in {self.otp_expire_minutes} minutes.</p>"
        )

        backoff_seconds = 1
        for attempt in range(1, max_retries + 1):
            try:
                await self._run_blocking(self._send_email_blocking, email, subject, html)
                logger.info(f"Sent {purpose} OTP to {email} (attempt {attempt})")
                return True
            except Exception as exc:
                logger.error(f"Error sending OTP to {email} (attempt {attempt}): {exc}")
                if attempt < max_retries:
                    await asyncio.sleep(backoff_seconds)
                    backoff_seconds *= 2

        logger.error(f"Failed to send OTP to {email} after {max_retries} attempts")
        return False


email_service = EmailService(settings.RESEND_API_KEY, settings.EMAIL_FROM, settings.OTP_EXPIRE_MINUTES)
