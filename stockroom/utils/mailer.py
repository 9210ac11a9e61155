"""
Outgoing mail hook.
Delivery itself is handled outside this service; the reset link is logged
so an operator or a log-shipping relay can forward it.
"""
import logging

logger = logging.getLogger(__name__)


def send_password_reset(email: str, username: str, reset_url: str) -> None:
    logger.info(f"Password reset requested for {username} <{email}>: {reset_url}")
