"""
auth/email.py -- OTP delivery collaborators.

Only the send_otp(email, code) contract matters to AuthService; how mail
actually leaves the building is out of scope here. LoggingEmailSender is the
development implementation: it renders the message and writes it to the
log instead of an SMTP server, which is also how operators read codes in a
local environment.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("sessiongate.email")

_OTP_TEMPLATE = """\
<html>
<body>
    <h2>{app_name} - Email Verification</h2>
    <p>Your OTP code is: <strong>{code}</strong></p>
    <p>This code will expire in {ttl_minutes} minutes.</p>
    <p>If you did not request this code, please ignore this email.</p>
</body>
</html>
"""


def render_otp_email(code: str, app_name: str, ttl_minutes: int) -> str:
    return _OTP_TEMPLATE.format(app_name=app_name, code=code, ttl_minutes=ttl_minutes)


class LoggingEmailSender:
    def __init__(self, app_name: str = "SessionGate", ttl_minutes: int = 5) -> None:
        self.app_name = app_name
        self.ttl_minutes = ttl_minutes

    def send_otp(self, email: str, code: str) -> None:
        body = render_otp_email(code, self.app_name, self.ttl_minutes)
        logger.info("[MOCK EMAIL] Sending OTP to %s: %s", email, code)
        logger.debug("[MOCK EMAIL] Email body: %s", body)
