import logging
import re
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ZERO_WIDTH_SPACE = "\u200b"

_ESCAPED_CHARS = "\\*_~`|"
_ESCAPE_PATTERN = re.compile(r"([\\*_~`|])")
_UNESCAPE_PATTERN = re.compile(r"\\([\\*_~`|])")
_URL_TOKEN = re.compile(r"^\W*https?://")
_WHITESPACE = re.compile(r"(\s+)")


def _escape_token(token: str) -> str:
    if _URL_TOKEN.match(token):
        return token
    return _ESCAPE_PATTERN.sub(r"\\\1", token)


def escape_markdown(text: str) -> str:
    """Backslash-escape Discord markdown characters, leaving URLs untouched."""
    return "".join(
        part if _WHITESPACE.fullmatch(part) else _escape_token(part)
        for part in _WHITESPACE.split(text)
    )


def unescape_markdown(text: str) -> str:
    return _UNESCAPE_PATTERN.sub(r"\1", text)


async def escape_discord(text: str, can_notify_room: Callable[[], Awaitable[bool]]) -> str:
    """Escape Matrix text for Discord.

    Broadcast mentions are defused with a zero width space. ``@room`` is
    turned into ``@here`` only when the sender is allowed to notify the room;
    the permission check is awaited only if ``@room`` actually occurs.
    """
    text = text.replace("@everyone", f"@{ZERO_WIDTH_SPACE}everyone")
    text = text.replace("@here", f"@{ZERO_WIDTH_SPACE}here")
    if "@room" in text and await can_notify_room():
        text = text.replace("@room", "@here")
    return escape_markdown(text)


def unescape_discord(text: str) -> str:
    """Undo ``escape_discord`` for the markdown alphabet and defused mentions."""
    text = unescape_markdown(text)
    return text.replace(f"@{ZERO_WIDTH_SPACE}everyone", "@everyone").replace(f"@{ZERO_WIDTH_SPACE}here", "@here")
