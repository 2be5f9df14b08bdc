from dataclasses import dataclass

EMOTE_MSGTYPE = "m.emote"


@dataclass(frozen=True)
class MatrixMessage:
    """Content of a Matrix ``m.room.message`` event."""
    body: str
    formatted_body: str | None = None
    msgtype: str = "m.text"
