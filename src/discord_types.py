from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DiscordRole:
    id: str
    name: str
    color: int = 0


@dataclass(frozen=True)
class DiscordGuild:
    """Guild data that can be queried synchronously while parsing."""
    id: str
    roles: Mapping[str, DiscordRole] = field(default_factory=dict)

    def get_role(self, role_id: str) -> DiscordRole | None:
        return self.roles.get(role_id)


@dataclass(frozen=True)
class DiscordAuthor:
    id: str
    username: str = ""
    bot: bool = False


@dataclass(frozen=True)
class DiscordEmoji:
    """Custom emoji as known to Discord."""
    id: str
    name: str
    animated: bool = False


@dataclass(frozen=True)
class DiscordEmbedAuthor:
    name: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class DiscordEmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class DiscordEmbedImage:
    url: str


@dataclass(frozen=True)
class DiscordEmbedFooter:
    text: str | None = None


@dataclass(frozen=True)
class DiscordEmbed:
    """Link preview or bot embed attached to a message."""
    title: str | None = None
    description: str | None = None
    url: str | None = None
    author: DiscordEmbedAuthor | None = None
    fields: tuple[DiscordEmbedField, ...] = ()
    image: DiscordEmbedImage | None = None
    footer: DiscordEmbedFooter | None = None

    @property
    def is_empty(self) -> bool:
        return self.title is None and self.description is None


@dataclass(frozen=True)
class DiscordMessage:
    """Discord message as handed over by the gateway integration."""
    id: str
    content: str
    author: DiscordAuthor
    reference: str | None = None  # id of the message this one replies to
    embeds: tuple[DiscordEmbed, ...] = ()
    mention_everyone: bool = False
    guild: DiscordGuild | None = None
    webhook_id: str | None = None
