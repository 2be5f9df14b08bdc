"""Directory lookup contracts the transcoders depend on.

The bridge implements these on top of its own room/user stores. Every lookup
may miss, in which case ``None`` is returned and the transcoder falls back to
a literal rendering of the entity.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from discord_types import DiscordEmoji, DiscordMessage


@dataclass(frozen=True)
class DiscordMessageParserEntity:
    """A Discord user or channel resolved to its Matrix counterpart."""
    mxid: str
    name: str


class DiscordMessageParserCallbacks(ABC):
    """Lookups needed when converting Discord messages to Matrix."""

    @abstractmethod
    async def get_user(self, user_id: str) -> DiscordMessageParserEntity | None:
        pass

    @abstractmethod
    async def get_channel(self, channel_id: str) -> DiscordMessageParserEntity | None:
        pass

    @abstractmethod
    async def get_emoji(self, name: str, animated: bool, emoji_id: str) -> str | None:
        """Return the mxc:// URL of a custom emoji."""
        pass

    @abstractmethod
    async def get_reference(self, message_id: str) -> DiscordMessage | None:
        pass


class MatrixMessageParserCallbacks(ABC):
    """Lookups needed when converting Matrix messages to Discord."""

    @abstractmethod
    async def can_notify_room(self) -> bool:
        """Whether the sender may use @room in the bridged room."""
        pass

    @abstractmethod
    async def get_user_id(self, mxid: str) -> str | None:
        pass

    @abstractmethod
    async def get_channel_id(self, mxid: str) -> str | None:
        pass

    @abstractmethod
    async def get_emoji(self, mxc: str, name: str) -> DiscordEmoji | None:
        pass

    @abstractmethod
    def mxc_url_to_http(self, mxc: str) -> str:
        pass
