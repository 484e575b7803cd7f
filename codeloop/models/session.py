"""Interactive session state."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cuid2 import cuid_wrapper

from codeloop.models.llm import LLMUsage
from codeloop.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


@dataclass
class Session:
    """Running totals for one interactive chat session."""

    session_id: str = field(default_factory=lambda: cuid())
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))
    message_count: int = 0
    failed_messages: int = 0
    usage: LLMUsage = field(default_factory=LLMUsage)
    total_cost: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        """Return the session as a dictionary."""
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "message_count": self.message_count,
            "failed_messages": self.failed_messages,
            "input_tokens": self.usage.input_tokens,
            "output_tokens": self.usage.output_tokens,
            "cache_creation_input_tokens": self.usage.cache_creation_input_tokens,
            "cache_read_input_tokens": self.usage.cache_read_input_tokens,
            "total_cost": self.total_cost,
        }

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    def record_message(self, usage: LLMUsage, cost: float, success: bool = True) -> None:
        """Fold one processed message into the session totals."""
        self.message_count += 1
        if not success:
            self.failed_messages += 1
        self.usage.add(usage)
        self.total_cost += cost
        self.update_activity()
        logger.debug(f"Session {self.session_id} totals: {self.as_dict()}")

    def reset(self) -> None:
        """Start fresh counters under a new session id."""
        logger.info(f"Resetting session {self.session_id}")
        self.session_id = cuid()
        self.created_at = datetime.now(UTC)
        self.message_count = 0
        self.failed_messages = 0
        self.usage = LLMUsage()
        self.total_cost = 0.0
        self.update_activity()
