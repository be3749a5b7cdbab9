"""Chat message model."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())[:8]


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    content: str
    # "user", "assistant", or any other sender label. Only "user"
    # is rendered as the user's own bubble.
    sender: str = MessageRole.ASSISTANT.value
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    streaming: bool = False

    @property
    def is_user(self) -> bool:
        return self.sender == MessageRole.USER.value
