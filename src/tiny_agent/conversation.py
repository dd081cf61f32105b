# conversation.py
# Conversation history persistence.
#
# Persistence is best-effort: a history that cannot be loaded starts empty,
# and a history that cannot be saved is logged and dropped. Neither ever
# fails a run.

import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from tiny_agent.models import Message
from tiny_agent.state import atomic_write

logger = logging.getLogger(__name__)


class ConversationStore:
    """In-memory history, optionally mirrored to a JSON file."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path
        self._history: list[Message] = []

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    def start_session(self) -> None:
        self._history = []

    def load(self) -> list[Message]:
        """History from disk, or [] when the file is missing or unusable."""
        if not self.path:
            return self.history

        try:
            with open(self.path, encoding="utf-8") as fh:
                parsed = json.load(fh)
        except FileNotFoundError:
            return []
        except ValueError as exc:
            logger.warning("Malformed JSON in %s: %s", self.path, exc)
            return []
        except OSError as exc:
            logger.warning("Failed to load conversation from %s: %s", self.path, exc)
            return []

        if not isinstance(parsed, dict) or not isinstance(parsed.get("messages"), list):
            logger.warning("Conversation file missing messages array in %s", self.path)
            return []

        try:
            self._history = [Message.model_validate(m) for m in parsed["messages"]]
        except ValidationError as exc:
            logger.warning("Invalid conversation file format in %s: %s", self.path, exc)
            return []
        return self.history

    def save(self, messages: list[Message]) -> bool:
        """Replace the history and flush it. Returns False when the flush failed."""
        self._history = list(messages)
        if not self.path:
            return True

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "messages": [m.model_dump(exclude_none=True) for m in self._history],
        }
        try:
            atomic_write(self.path, json.dumps(payload, indent=2, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save conversation to %s: %s", self.path, exc)
            return False
        return True
