"""
Chat input parsing.
Recognizes slash commands and decides when the bot should answer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import Attachment, MessageKind


class InputKind(Enum):
    TEXT = "text"
    ACTION = "action"  # /me
    NICK = "nick"      # /nick


# Slash commands understood by the client; anything else is plain text.
COMMANDS = {
    "/me": InputKind.ACTION,
    "/nick": InputKind.NICK,
}

BOT_TRIGGERS = ("gemini", "@bot", "@ai")


@dataclass(frozen=True)
class ParsedInput:
    kind: InputKind
    body: str


def parse_input(text: str) -> ParsedInput:
    """
    Split a composer line into a command and its argument.

    Args:
        text: Raw line typed by the user

    Returns:
        ParsedInput: plain text unless the first word is a known command
    """
    if text.startswith('/'):
        parts = text.split(maxsplit=1)
        kind = COMMANDS.get(parts[0].lower())
        if kind is not None:
            argument = parts[1].strip() if len(parts) > 1 else ""
            return ParsedInput(kind, argument)
    return ParsedInput(InputKind.TEXT, text)


def should_trigger_bot(text: str) -> bool:
    lowered = (text or "").lower()
    return any(trigger in lowered for trigger in BOT_TRIGGERS)


def format_history_line(display_name: str, body: str) -> str:
    return f"{display_name}: {body}"


def kind_for_attachment(attachment: Optional[Attachment], default: MessageKind = MessageKind.TEXT) -> MessageKind:
    """Message kind implied by an attachment's content type."""
    if attachment is None:
        return default
    content_type = (attachment.content_type or "").lower()
    if content_type.startswith("audio/"):
        return MessageKind.AUDIO
    return MessageKind.IMAGE
