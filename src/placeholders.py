"""Deferred resolution of entities referenced from Discord markdown.

Markdown rules run synchronously, but users, channels and custom emoji can only
be resolved through an async directory lookup. Rendering therefore produces a
list of fragments in which those entities are kept as typed placeholder
objects. ``PlaceholderResolver`` replaces them afterwards in three sweeps
(emoji, then users, then channels), left to right and one lookup at a time.
"""

import html
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from opentelemetry.trace import SpanKind

from directory import DiscordMessageParserCallbacks
from open_telemetry import Telemetry

logger = logging.getLogger(__name__)

MATRIX_TO_LINK = "https://matrix.to/#/"
EMOJI_SIZE = 32


@dataclass(frozen=True)
class EmojiPlaceholder:
    name: str
    animated: bool
    id: str

    def literal(self) -> str:
        return f"<{'a' if self.animated else ''}:{self.name}:{self.id}>"


@dataclass(frozen=True)
class UserPlaceholder:
    id: str

    def literal(self) -> str:
        return f"<@{self.id}>"


@dataclass(frozen=True)
class ChannelPlaceholder:
    id: str

    def literal(self) -> str:
        return f"<#{self.id}>"


Placeholder = EmojiPlaceholder | UserPlaceholder | ChannelPlaceholder
Fragment = str | Placeholder


async def resolve_placeholders(
    fragments: Iterable[Fragment],
    kind: type,
    render: Callable[[Placeholder], Awaitable[str]],
) -> list[Fragment]:
    """Replace every placeholder of ``kind`` with its rendered text.

    Placeholders are awaited strictly in order of appearance; a later lookup
    never starts before an earlier one has finished.
    """
    resolved: list[Fragment] = []
    for fragment in fragments:
        if isinstance(fragment, kind):
            fragment = await render(fragment)
        resolved.append(fragment)
    return resolved


def join_fragments(fragments: Iterable[Fragment]) -> str:
    parts = []
    for fragment in fragments:
        if not isinstance(fragment, str):
            raise ValueError(f"Unresolved placeholder: {fragment!r}")
        parts.append(fragment)
    return "".join(parts)


class PlaceholderResolver:
    """Resolves the placeholders of one rendering, either plain text or HTML."""

    def __init__(self, callbacks: DiscordMessageParserCallbacks, telemetry: Telemetry, html: bool = False):
        self.callbacks = callbacks
        self.telemetry = telemetry
        self.html = html

    async def resolve(self, fragments: Iterable[Fragment]) -> str:
        async with self.telemetry.async_create_span("placeholders.resolve", kind=SpanKind.CLIENT) as span:
            span.set_attribute("html", self.html)
            sweeps = (
                (EmojiPlaceholder, self.render_emoji),
                (UserPlaceholder, self.render_user),
                (ChannelPlaceholder, self.render_channel),
            )
            for kind, render in sweeps:
                fragments = await resolve_placeholders(fragments, kind, render)
            return join_fragments(fragments)

    def _miss(self, placeholder: Placeholder) -> str:
        literal = placeholder.literal()
        return html.escape(literal) if self.html else literal

    def _record(self, kind: str, hit: bool) -> None:
        outcome = "hit" if hit else "miss"
        self.telemetry.metrics.entity_lookups.add(1, {"kind": kind, "outcome": outcome})

    async def render_emoji(self, placeholder: EmojiPlaceholder) -> str:
        mxc = await self.callbacks.get_emoji(placeholder.name, placeholder.animated, placeholder.id)
        self._record("emoji", mxc is not None)
        if not mxc:
            logger.debug(f"Emoji {placeholder.name} ({placeholder.id}) not found")
            return self._miss(placeholder)
        if not self.html:
            return f":{placeholder.name}:"
        name = html.escape(placeholder.name)
        return (
            f'<img alt=":{name}:" title=":{name}:" height="{EMOJI_SIZE}" '
            f'src="{html.escape(mxc)}" data-mx-emoticon />'
        )

    async def render_user(self, placeholder: UserPlaceholder) -> str:
        user = await self.callbacks.get_user(placeholder.id)
        self._record("user", user is not None)
        if user is None:
            logger.debug(f"User {placeholder.id} not found")
            return self._miss(placeholder)
        if not self.html:
            return f"{user.name} ({user.mxid})"
        return f'<a href="{MATRIX_TO_LINK}{html.escape(user.mxid)}">{html.escape(user.name)}</a>'

    async def render_channel(self, placeholder: ChannelPlaceholder) -> str:
        channel = await self.callbacks.get_channel(placeholder.id)
        self._record("channel", channel is not None)
        if channel is None:
            logger.debug(f"Channel {placeholder.id} not found")
            return self._miss(placeholder)
        name = f"#{channel.name}"
        if not self.html:
            return name
        return f'<a href="{MATRIX_TO_LINK}{html.escape(channel.mxid)}">{html.escape(name)}</a>'
