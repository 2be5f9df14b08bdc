"""Discord message → Matrix ``m.room.message`` content."""

import dataclasses
import html
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from directory import DiscordMessageParserCallbacks
from discord_markdown import FragmentWriter, MarkdownCallbacks, to_fragments
from discord_types import DiscordEmbed, DiscordMessage
from open_telemetry import Telemetry
from placeholders import Fragment, PlaceholderResolver, UserPlaceholder
from utils import number_to_html_color

logger = logging.getLogger(__name__)

MAX_EDIT_MSG_LENGTH = 50


class MessageKind(str, Enum):
    NORMAL = "m.text"
    BOT_NOTICE = "m.notice"


@dataclass(frozen=True)
class FormattingResult:
    body: str
    formatted_body: str
    msgtype: str


# === Embed dedupe ===


class EmbedUrlEquivalence(ABC):
    """Decides whether an embed URL is already present in another shape."""

    @abstractmethod
    def matches(self, embed_url: str, content: str) -> bool:
        pass


class YoutubeShortLinkEquivalence(EmbedUrlEquivalence):
    """``youtube.com/watch?v=<id>`` embeds are covered by a ``youtu.be/<id>`` link."""

    WATCH_URL = re.compile(r"^https?://(?:www\.)?youtube\.com/watch\?.*v=([^&]+)")
    SHORT_URL = re.compile(r"https?://youtu\.be/([^/? ]+)")

    def matches(self, embed_url: str, content: str) -> bool:
        watch = self.WATCH_URL.match(embed_url)
        if not watch:
            return False
        return any(short.group(1) == watch.group(1) for short in self.SHORT_URL.finditer(content))


DEFAULT_EMBED_URL_RULES: tuple[EmbedUrlEquivalence, ...] = (YoutubeShortLinkEquivalence(),)


# === Structural callbacks ===


class _MessageMarkdownCallbacks(MarkdownCallbacks):
    """Callbacks bound to one message and one output flavour."""

    def __init__(self, msg: DiscordMessage, html_output: bool):
        self.msg = msg
        self.html_output = html_output

    def broadcast(self, keyword: str) -> Fragment:
        return "@room" if self.msg.mention_everyone else f"@{keyword}"

    def role(self, role_id: str) -> Fragment:
        role = self.msg.guild.get_role(role_id) if self.msg.guild else None
        if role is None:
            literal = f"<@&{role_id}>"
            return html.escape(literal) if self.html_output else literal
        if not self.html_output:
            return f"@{role.name}"
        color = number_to_html_color(role.color)
        return f'<span data-mx-color="{color}"><strong>@{html.escape(role.name)}</strong></span>'

    def spoiler(self, content: list[Fragment]) -> list[Fragment]:
        if not self.html_output:
            return ["(Spoiler: ", *content, ")"]
        return ["<span data-mx-spoiler>", *content, "</span>"]


class DiscordMessageParser:
    """Converts Discord messages, their replies and embeds to Matrix content.

    The parser keeps no per-call state, one instance can serve concurrent calls.
    """

    def __init__(self, telemetry: Telemetry, embed_url_rules: Sequence[EmbedUrlEquivalence] = DEFAULT_EMBED_URL_RULES):
        self.telemetry = telemetry
        self.embed_url_rules = tuple(embed_url_rules)

    async def format_message(
        self,
        callbacks: DiscordMessageParserCallbacks,
        msg: DiscordMessage,
        replying: bool = False,
    ) -> FormattingResult:
        """
        Convert a Discord message.

        Args:
            callbacks: Directory lookups for users, channels, emoji and replies
            msg: The message to convert
            replying: Set when rendering the quoted message of a reply; a quoted
                message never quotes its own reply

        Returns:
            Plain body, HTML body and msgtype
        """
        async with self.telemetry.async_create_span("discord_message_parser.format_message") as span:
            span.set_attribute("message_id", msg.id)
            span.set_attribute("replying", replying)
            elapsed = self.telemetry.metrics.timer()

            plain = FragmentWriter()
            formatted = FragmentWriter()

            if not replying:
                await self._insert_reply(callbacks, msg, plain, formatted)

            plain.extend(to_fragments(msg.content, _MessageMarkdownCallbacks(msg, False)))
            formatted.extend(to_fragments(
                msg.content,
                _MessageMarkdownCallbacks(msg, True),
                html_output=True,
                allow_links=msg.author.bot,
            ))

            for embed in msg.embeds:
                if embed.is_empty or self.is_embed_in_body(msg, embed):
                    continue
                plain.extend(self._embed_plain(msg, embed))
                formatted.extend(self._embed_html(msg, embed))

            body = await PlaceholderResolver(callbacks, self.telemetry).resolve(plain.fragments)
            formatted_body = await PlaceholderResolver(callbacks, self.telemetry, html=True).resolve(formatted.fragments)

            msgtype = MessageKind.BOT_NOTICE if msg.author.bot else MessageKind.NORMAL
            if not replying:
                self.telemetry.record_format_latency("discord_to_matrix", elapsed())
            return FormattingResult(body=body, formatted_body=formatted_body, msgtype=msgtype.value)

    async def format_edit(
        self,
        callbacks: DiscordMessageParserCallbacks,
        old_msg: DiscordMessage,
        new_msg: DiscordMessage,
        link: str | None = None,
    ) -> FormattingResult:
        """Render an edit as the struck-through old message followed by the new one.

        ``link`` points at the original Matrix event and wraps the "edit:" label.
        """
        async with self.telemetry.async_create_span("discord_message_parser.format_edit") as span:
            span.set_attribute("message_id", new_msg.id)
            old_parsed = await self.format_message(callbacks, dataclasses.replace(old_msg, embeds=()))
            new_parsed = await self.format_message(callbacks, new_msg)

            label = "<em>edit:</em>"
            if link:
                label = f'<a href="{html.escape(link)}">{label}</a>'

            multiline = (
                "\n" in old_msg.content
                or "\n" in new_msg.content
                or len(new_msg.content) > MAX_EDIT_MSG_LENGTH
            )
            if multiline:
                formatted_body = (
                    f"<p>{label}</p><p><del>{old_parsed.formatted_body}</del></p>"
                    f"<hr><p>{new_parsed.formatted_body}</p>"
                )
            else:
                formatted_body = f"{label} <del>{old_parsed.formatted_body}</del> -&gt; {new_parsed.formatted_body}"

            return FormattingResult(
                body=f"*edit:* ~~{old_parsed.body}~~ -> {new_parsed.body}",
                formatted_body=formatted_body,
                msgtype=new_parsed.msgtype,
            )

    async def _insert_reply(
        self,
        callbacks: DiscordMessageParserCallbacks,
        msg: DiscordMessage,
        plain: FragmentWriter,
        formatted: FragmentWriter,
    ) -> None:
        if not msg.reference:
            return
        reply = await callbacks.get_reference(msg.reference)
        if reply is None:
            logger.debug(f"Referenced message {msg.reference} not found")
            return
        parsed = await self.format_message(callbacks, reply, replying=True)

        plain.write(f">  {parsed.body}\n\n")

        # Webhook authors have no Discord user to look up
        pill = UserPlaceholder(reply.author.id) if reply.webhook_id is None else html.escape(reply.author.username)
        formatted.extend([
            "<mx-reply><blockquote><a>In reply to</a> ",
            pill,
            f"<br>{parsed.formatted_body}</blockquote></mx-reply>",
        ])

    def is_embed_in_body(self, msg: DiscordMessage, embed: DiscordEmbed) -> bool:
        if not embed.url:
            return False
        url = embed.url[:-1] if embed.url.endswith("/") else embed.url
        if url in msg.content:
            return True
        return any(rule.matches(url, msg.content) for rule in self.embed_url_rules)

    def _embed_plain(self, msg: DiscordMessage, embed: DiscordEmbed) -> list[Fragment]:
        callbacks = _MessageMarkdownCallbacks(msg, False)
        out = FragmentWriter()
        out.write("\n\n----")
        if embed.title:
            title = f"[{embed.title}]({embed.url})" if embed.url else embed.title
            out.write(f"\n##### {title}")
        if embed.author and embed.author.name:
            out.write(f"\n**{embed.author.name}**")
        if embed.description:
            out.write("\n")
            out.extend(to_fragments(embed.description, callbacks))
        for embed_field in embed.fields:
            out.write(f"\n**{embed_field.name}**\n")
            out.extend(to_fragments(embed_field.value, callbacks))
        if embed.image:
            out.write(f"\nImage: {embed.image.url}")
        if embed.footer and embed.footer.text:
            out.write("\n")
            out.extend(to_fragments(embed.footer.text, callbacks))
        return out.fragments

    def _embed_html(self, msg: DiscordMessage, embed: DiscordEmbed) -> list[Fragment]:
        callbacks = _MessageMarkdownCallbacks(msg, True)

        def render(source: str) -> list[Fragment]:
            return to_fragments(source, callbacks, html_output=True, allow_links=True)

        out = FragmentWriter()
        out.write("<hr>")
        if embed.title:
            title = html.escape(embed.title)
            if embed.url:
                title = f'<a href="{html.escape(embed.url)}">{title}</a>'
            out.write(f"<h5>{title}</h5>")
        if embed.author and embed.author.name:
            out.write(f"<strong>{html.escape(embed.author.name)}</strong><br>")
        if embed.description:
            out.extend(["<p>", *render(embed.description), "</p>"])
        for embed_field in embed.fields:
            out.extend([f"<p><strong>{html.escape(embed_field.name)}</strong><br>", *render(embed_field.value), "</p>"])
        if embed.image:
            image_url = html.escape(embed.image.url)
            out.write(f'<p>Image: <a href="{image_url}">{image_url}</a></p>')
        if embed.footer and embed.footer.text:
            out.extend(["<p>", *render(embed.footer.text), "</p>"])
        return out.fragments
