"""Matrix ``m.room.message`` content → Discord markdown."""

import logging
import re
from dataclasses import dataclass
from urllib.parse import unquote

from pygments.lexers import guess_lexer
from pygments.util import ClassNotFound

from directory import MatrixMessageParserCallbacks
from discord_escape import escape_discord
from html_tree import ElementNode, TextNode, parse_html
from list_renderer import ListContext, parse_start, render_list
from matrix_types import EMOTE_MSGTYPE, MatrixMessage
from open_telemetry import Telemetry
from placeholders import MATRIX_TO_LINK
from url_shortener_client import UrlShortener

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 32

BLOCK_TAGS = frozenset({"blockquote", "ul", "ol", "h1", "h2", "h3", "h4", "h5", "h6"})
HEADING_PATTERN = re.compile(r"h([1-6])")
LANGUAGE_CLASS_PATTERN = re.compile(r"language-(\w*)", re.IGNORECASE)

# Lexers pygments falls back to when it has no real guess
_UNDETERMINED_LANGUAGES = frozenset({"text", "output"})


@dataclass(frozen=True)
class MatrixMessageParserOpts:
    callbacks: MatrixMessageParserCallbacks
    displayname: str = ""
    determine_code_language: bool = False
    url_shortener: UrlShortener | None = None


class MatrixMessageParser:
    """Converts Matrix message content to Discord markdown.

    Lookups are awaited in document order, one at a time. List depth travels
    with the walk in a ``ListContext``, so the parser has no per-call state.
    """

    def __init__(self, telemetry: Telemetry):
        self.telemetry = telemetry

    async def format_message(self, opts: MatrixMessageParserOpts, msg: MatrixMessage) -> str:
        """
        Convert a Matrix message to Discord markdown.

        Args:
            opts: Directory callbacks, sender display name and optional features
            msg: Matrix message content; ``formatted_body`` wins over ``body``

        Returns:
            Discord message text
        """
        async with self.telemetry.async_create_span("matrix_message_parser.format_message") as span:
            span.set_attribute("msgtype", msg.msgtype)
            span.set_attribute("formatted", bool(msg.formatted_body))
            elapsed = self.telemetry.metrics.timer()

            if msg.formatted_body:
                tree = parse_html(msg.formatted_body)
                reply = await self._walk_children(opts, tree, ListContext())
                reply = reply.rstrip()
            else:
                reply = await self._escape(opts, msg.body)

            if msg.msgtype == EMOTE_MSGTYPE:
                if MIN_NAME_LENGTH <= len(opts.displayname) <= MAX_NAME_LENGTH:
                    reply = f"_{await self._escape(opts, opts.displayname)} {reply}_"
                else:
                    reply = f"_{reply}_"

            self.telemetry.record_format_latency("matrix_to_discord", elapsed())
            return reply

    async def _escape(self, opts: MatrixMessageParserOpts, text: str) -> str:
        return await escape_discord(text, opts.callbacks.can_notify_room)

    def _record(self, kind: str, hit: bool) -> None:
        self.telemetry.metrics.entity_lookups.add(1, {"kind": kind, "outcome": "hit" if hit else "miss"})

    # === Tree walk ===

    async def _walk_children(self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext) -> str:
        out = ""
        previous_tag = None
        for child in node.children:
            rendered = await self._walk(opts, child, context)
            if isinstance(child, TextNode):
                if rendered:
                    previous_tag = None
                out += rendered
                continue

            if child.tag in BLOCK_TAGS:
                if out and not out.endswith("\n") and not rendered.startswith("\n"):
                    out += "\n"
            elif child.tag == "p" and previous_tag == "p" and out:
                out += "\n\n"
            out += rendered
            previous_tag = child.tag
        return out

    async def _walk(self, opts: MatrixMessageParserOpts, node, context: ListContext) -> str:
        if isinstance(node, TextNode):
            # newlines between elements are layout, not content
            if node.text == "\n":
                return ""
            return await self._escape(opts, node.text)

        tag = node.tag
        if tag in ("em", "i"):
            return f"*{await self._walk_children(opts, node, context)}*"
        if tag in ("strong", "b"):
            return f"**{await self._walk_children(opts, node, context)}**"
        if tag == "u":
            return f"__{await self._walk_children(opts, node, context)}__"
        if tag in ("del", "s", "strike"):
            return f"~~{await self._walk_children(opts, node, context)}~~"
        if tag == "code":
            return f"`{node.text_content}`"
        if tag == "pre":
            return f"```{self._parse_pre_content(opts, node)}```"
        if tag == "a":
            return await self._parse_pill_content(opts, node, context)
        if tag == "img":
            return await self._parse_image_content(opts, node)
        if tag == "br":
            return "\n"
        if tag == "hr":
            return "\n----------\n"
        if tag == "blockquote":
            return await self._parse_blockquote_content(opts, node, context)
        if tag in ("ul", "ol"):
            return await self._parse_list_content(opts, node, context)
        if tag == "mx-reply":
            return ""
        if tag == "span":
            return await self._parse_span_content(opts, node, context)
        heading = HEADING_PATTERN.fullmatch(tag)
        if heading:
            return await self._parse_heading_content(opts, node, context, int(heading.group(1)))
        return await self._walk_children(opts, node, context)

    def _parse_pre_content(self, opts: MatrixMessageParserOpts, node: ElementNode) -> str:
        text = node.text_content
        if not text.startswith("\n"):
            text = "\n" + text

        language = None
        code = node.find("code")
        if code is not None:
            match = LANGUAGE_CLASS_PATTERN.search(code.get("class") or "")
            if match:
                language = match.group(1)
        if language is None and opts.determine_code_language:
            language = self._guess_language(text)
        return f"{language or ''}{text}"

    def _guess_language(self, code: str) -> str | None:
        try:
            lexer = guess_lexer(code)
        except ClassNotFound:
            return None
        if not lexer.aliases or lexer.aliases[0] in _UNDETERMINED_LANGUAGES:
            return None
        logger.debug(f"Guessed code language {lexer.aliases[0]}")
        return lexer.aliases[0]

    async def _parse_link_content(self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext) -> str:
        href = node.get("href")
        content = await self._walk_children(opts, node, context)
        if not href or content == href:
            return content
        return f"[{content}]({href})"

    async def _parse_pill_content(self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext) -> str:
        href = node.get("href")
        if not href or not href.startswith(MATRIX_TO_LINK):
            return await self._parse_link_content(opts, node, context)

        target = unquote(href[len(MATRIX_TO_LINK):])
        mention = None
        if target.startswith("@"):
            user_id = await opts.callbacks.get_user_id(target)
            self._record("user", bool(user_id))
            if user_id:
                mention = f"<@{user_id}>"
        elif target.startswith(("#", "!")):
            channel_id = await opts.callbacks.get_channel_id(target)
            self._record("channel", bool(channel_id))
            if channel_id:
                mention = f"<#{channel_id}>"

        if mention is None:
            return await self._parse_link_content(opts, node, context)
        return mention

    async def _parse_image_content(self, opts: MatrixMessageParserOpts, node: ElementNode) -> str:
        src = node.get("src") or ""
        name = node.get("alt") or node.get("title") or ""
        if not src:
            return await self._escape(opts, name)

        emoji = await opts.callbacks.get_emoji(src, name)
        self._record("emoji", emoji is not None)
        if emoji is not None:
            return f"<{'a' if emoji.animated else ''}:{emoji.name}:{emoji.id}>"

        content = await self._escape(opts, name)
        url = await self._shorten(opts, opts.callbacks.mxc_url_to_http(src))
        return f"[{content} {url} ]"

    async def _shorten(self, opts: MatrixMessageParserOpts, url: str) -> str:
        if opts.url_shortener is None:
            return url
        try:
            return await opts.url_shortener.shorten(url)
        except Exception:
            logger.warning(f"Failed to shorten {url}, keeping the original URL", exc_info=True)
            return url

    async def _parse_blockquote_content(
        self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext
    ) -> str:
        content = await self._walk_children(opts, node, context)
        # a Discord quote ends at the next line on its own
        return "\n".join(f"> {line}" for line in content.split("\n")) + "\n"

    async def _parse_span_content(self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext) -> str:
        content = await self._walk_children(opts, node, context)
        if not node.has("data-mx-spoiler"):
            return content
        reason = node.get("data-mx-spoiler")
        if reason:
            return f"({reason})||{content}||"
        return f"||{content}||"

    async def _parse_list_content(self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext) -> str:
        items = []
        for child in node.children:
            if isinstance(child, ElementNode) and child.tag == "li":
                items.append(await self._walk_children(opts, child, context.enter()))
        ordered = node.tag == "ol"
        start = parse_start(node.get("start")) if ordered else 1
        return render_list(items, context, ordered=ordered, start=start)

    async def _parse_heading_content(
        self, opts: MatrixMessageParserOpts, node: ElementNode, context: ListContext, level: int
    ) -> str:
        content = await self._walk_children(opts, node, context)
        if level <= 2:
            content = content.upper()
        prefix = "" if level == 1 else "#" * level + " "
        return f"**{prefix}{content}**\n"
