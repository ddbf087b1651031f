"""
Logging configuration
Chat events are logged but never include message text or credentials
"""

import logging
import sys
from typing import Set


class RedactionFilter(logging.Filter):
    """Filter that redacts sensitive information"""

    SENSITIVE_KEYS: Set[str] = {
        "password",
        "token",
        "secret",
        "api_key",
        "credential",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, "msg"):
            msg = str(record.msg).lower()
            for key in self.SENSITIVE_KEYS:
                if key in msg and "=" in str(record.msg):
                    # Likely contains sensitive value assignment
                    record.msg = "[REDACTED - Sensitive data filtered]"
                    record.args = ()
                    break
        return True


def setup_logging():
    """Configure application logging"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    handler.addFilter(RedactionFilter())

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    # Clear existing handlers to avoid duplicates
    root.handlers = []
    root.addHandler(handler)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# Chat event logger
chat_logger = logging.getLogger("chatty.events")


def log_send_failure(conversation_id: str, error: BaseException):
    """Log a failed message write (the text itself is never logged)"""
    chat_logger.warning(
        "Send failed in conversation %s (%s) - draft restored",
        conversation_id,
        type(error).__name__,
    )


def log_read_ack_failure(conversation_id: str, message_id: str, error: BaseException):
    """Log a failed read acknowledgement"""
    chat_logger.warning(
        "Read acknowledgement failed for message %s in %s (%s)",
        message_id,
        conversation_id,
        type(error).__name__,
    )


def log_follow_up_failure(operation: str, subject: str, error: BaseException):
    """Log a failed best-effort follow-up write"""
    chat_logger.warning(
        "Best-effort %s failed for %s (%s)", operation, subject, type(error).__name__
    )


def log_profile_dropped(user_id: str, error: BaseException):
    """Log a counterpart profile that could not be resolved"""
    chat_logger.info(
        "Dropping conversation with unresolved profile %s (%s)",
        user_id,
        type(error).__name__,
    )


def log_session_cleared(session_id: str):
    """Log session teardown on logout"""
    chat_logger.info(f"Session {session_id[:8]} cleared")


def log_rate_limited(client: str):
    """Log a rate-limited client"""
    chat_logger.warning(f"Rate limited: {client}")
