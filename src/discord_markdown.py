"""Discord markdown parser and renderers.

Discord markdown is parsed into a small AST with an ordered list of regex
rules, each tried at the current position; the first one that matches wins.
The AST is rendered into a list of fragments: plain strings plus placeholder
objects for entities that still need an async lookup (see ``placeholders``).

Two rule sets exist:

* formatted: full Discord markdown, rendered to Matrix HTML with every
  literal text run HTML-escaped.
* plain: only Discord specific constructs (mentions, emoji, spoilers,
  @everyone/@here) are recognised. Everything else, code included, is kept
  exactly as written.
"""

import html
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from placeholders import ChannelPlaceholder, EmojiPlaceholder, Fragment, UserPlaceholder

logger = logging.getLogger(__name__)


# === AST ===


@dataclass(frozen=True)
class Text:
    content: str


@dataclass(frozen=True)
class LineBreak:
    pass


@dataclass(frozen=True)
class Styled:
    """Emphasis, strong, underline or strikethrough, keyed by its HTML tag."""
    tag: str
    children: tuple


@dataclass(frozen=True)
class InlineCode:
    content: str


@dataclass(frozen=True)
class CodeBlock:
    content: str
    language: str | None = None


@dataclass(frozen=True)
class BlockQuote:
    children: tuple


@dataclass(frozen=True)
class Link:
    target: str
    children: tuple


@dataclass(frozen=True)
class Spoiler:
    children: tuple


@dataclass(frozen=True)
class Broadcast:
    keyword: str  # "everyone" or "here"


@dataclass(frozen=True)
class RoleMention:
    id: str


@dataclass(frozen=True)
class UserMention:
    id: str


@dataclass(frozen=True)
class ChannelMention:
    id: str


@dataclass(frozen=True)
class CustomEmoji:
    name: str
    animated: bool
    id: str


# === Rules ===


@dataclass(frozen=True)
class _Rule:
    name: str
    pattern: re.Pattern
    parse: Callable[["_Parser", re.Match, bool], object]
    block: bool = False  # only at the start of a line, outside inline content and quotes


def _raw(parser, match, in_quote):
    return Text(match.group(0))


def _styled(tag: str):
    def parse(parser, match, in_quote):
        inner = next(group for group in match.groups() if group is not None)
        return Styled(tag, parser.parse(inner, inline=True, in_quote=in_quote))
    return parse


def _parse_block_quote(parser, match, in_quote):
    source = match.group(0)
    if re.match(r" *>>> ?", source):
        content = re.sub(r"^ *>>> ?", "", source, count=1)
    else:
        content = re.sub(r"^ *> ?", "", source, flags=re.MULTILINE)
    return BlockQuote(parser.parse(content, in_quote=True))


def _parse_code_block(parser, match, in_quote):
    return CodeBlock(match.group(2), match.group(1))


def _parse_link(parser, match, in_quote):
    return Link(match.group(2), parser.parse(match.group(1), inline=True, in_quote=in_quote))


def _parse_url(parser, match, in_quote):
    return Link(match.group(1), (Text(match.group(1)),))


def _parse_spoiler(parser, match, in_quote):
    return Spoiler(parser.parse(match.group(1), inline=True, in_quote=in_quote))


_CODE_BLOCK = _Rule("code_block", re.compile(r"```(?:([a-z0-9_+\-.#]+?)\n)?\n*([^\n][\s\S]*?)\n*```"), _parse_code_block)
_RAW_CODE_BLOCK = _Rule("code_block", _CODE_BLOCK.pattern, _raw)
_BLOCK_QUOTE = _Rule(
    "block_quote",
    re.compile(r" *>>> [\s\S]*| *> [^\n]*(?:\n *> [^\n]*)*\n?"),
    _parse_block_quote,
    block=True,
)
_ESCAPE = _Rule("escape", re.compile(r"\\([^0-9A-Za-z\s])"), lambda parser, match, in_quote: Text(match.group(1)))
_AUTOLINK = _Rule("autolink", re.compile(r"<([^: >]+:/[^ >]+)>"), _parse_url)
_URL = _Rule("url", re.compile(r"(https?://[^\s<]+[^<.,:;\"')\]\s])"), _parse_url)
_LINK = _Rule(
    "link",
    re.compile(
        r"\[((?:\[[^\]]*\]|[^\[\]]|\](?=[^\[]*\]))*)\]"
        r"\(\s*<?((?:\([^)]*\)|[^\s\\]|\\.)*?)>?(?:\s+['\"]([\s\S]*?)['\"])?\s*\)"
    ),
    _parse_link,
)
_EMOTICON = _Rule("emoticon", re.compile(r"¯\\_\(ツ\)_/¯"), _raw)
_STRONG = _Rule("strong", re.compile(r"\*\*((?:\\[\s\S]|[^\\])+?)\*\*(?!\*)"), _styled("strong"))
_UNDERLINE = _Rule("underline", re.compile(r"__((?:\\[\s\S]|[^\\])+?)__(?!_)"), _styled("u"))
_EM = _Rule(
    "em",
    re.compile(
        r"\b_((?:__|\\[\s\S]|[^\\_])+?)_\b"
        r"|\*(?=\S)((?:\*\*|\\[\s\S]|\s+(?:\\[\s\S]|[^\s*\\]|\*\*)|[^\s*\\])+?)\*(?!\*)"
    ),
    _styled("em"),
)
_STRIKE = _Rule("strike", re.compile(r"~~([\s\S]+?)~~(?!_)"), _styled("del"))
_INLINE_CODE = _Rule(
    "inline_code",
    re.compile(r"(`+)([\s\S]*?[^`])\1(?!`)"),
    lambda parser, match, in_quote: InlineCode(match.group(2)),
)
_RAW_INLINE_CODE = _Rule("inline_code", _INLINE_CODE.pattern, _raw)
_SPOILER = _Rule("spoiler", re.compile(r"\|\|([\s\S]+?)\|\|"), _parse_spoiler)
_BR = _Rule("br", re.compile(r"\n"), lambda parser, match, in_quote: LineBreak())
_EVERYONE = _Rule("everyone", re.compile(r"@(everyone|here)"), lambda parser, match, in_quote: Broadcast(match.group(1)))
_ROLE = _Rule("role", re.compile(r"<@&([0-9]+)>"), lambda parser, match, in_quote: RoleMention(match.group(1)))
_USER = _Rule("user", re.compile(r"<@!?([0-9]+)>"), lambda parser, match, in_quote: UserMention(match.group(1)))
_CHANNEL = _Rule("channel", re.compile(r"<#([0-9]+)>"), lambda parser, match, in_quote: ChannelMention(match.group(1)))
_EMOJI = _Rule(
    "emoji",
    re.compile(r"<(a?):(\w+):([0-9]+)>"),
    lambda parser, match, in_quote: CustomEmoji(match.group(2), match.group(1) == "a", match.group(3)),
)
_TEXT = _Rule(
    "text",
    re.compile(r"[\s\S]+?(?=[^0-9A-Za-z\s\u00c0-\U0010ffff]|\n|\w+:\S|$)"),
    lambda parser, match, in_quote: Text(match.group(0)),
)

_DISCORD_RULES = [_SPOILER, _EVERYONE, _ROLE, _USER, _CHANNEL, _EMOJI]

PLAIN_RULES = [_RAW_CODE_BLOCK, _RAW_INLINE_CODE, *_DISCORD_RULES, _TEXT]

FORMATTED_RULES = [
    _CODE_BLOCK,
    _BLOCK_QUOTE,
    _EMOTICON,
    _ESCAPE,
    _AUTOLINK,
    _URL,
    _STRONG,
    _UNDERLINE,
    _EM,
    _STRIKE,
    _INLINE_CODE,
    _BR,
    *_DISCORD_RULES,
    _TEXT,
]

# Masked links are only honoured in embeds and in messages sent by bots.
LINKED_RULES = FORMATTED_RULES[:6] + [_LINK] + FORMATTED_RULES[6:]


class _Parser:
    def __init__(self, rules: Sequence[_Rule]) -> None:
        self.rules = rules

    def parse(self, source: str, inline: bool = False, in_quote: bool = False) -> tuple:
        nodes: list = []
        pos = 0
        while pos < len(source):
            at_line_start = pos == 0 or source[pos - 1] == "\n"
            for rule in self.rules:
                if rule.block and (inline or in_quote or not at_line_start):
                    continue
                match = rule.pattern.match(source, pos)
                if match is None or match.end() == pos:
                    continue
                _append_node(nodes, rule.parse(self, match, in_quote))
                pos = match.end()
                break
            else:
                _append_node(nodes, Text(source[pos]))
                pos += 1
        return tuple(nodes)


def _append_node(nodes: list, node) -> None:
    if isinstance(node, Text) and nodes and isinstance(nodes[-1], Text):
        nodes[-1] = Text(nodes[-1].content + node.content)
    else:
        nodes.append(node)


def parse(source: str, rules: Sequence[_Rule] = FORMATTED_RULES) -> tuple:
    """Parse Discord markdown into a tuple of AST nodes."""
    return _Parser(rules).parse(source)


# === Rendering ===


class MarkdownCallbacks(ABC):
    """Structural callbacks invoked while rendering.

    They run synchronously, so entities that need a directory lookup come
    back as placeholders by default.
    """

    @abstractmethod
    def broadcast(self, keyword: str) -> Fragment:
        pass

    @abstractmethod
    def role(self, role_id: str) -> Fragment:
        pass

    @abstractmethod
    def spoiler(self, content: list[Fragment]) -> list[Fragment]:
        pass

    def user(self, user_id: str) -> Fragment:
        return UserPlaceholder(user_id)

    def channel(self, channel_id: str) -> Fragment:
        return ChannelPlaceholder(channel_id)

    def emoji(self, name: str, animated: bool, emoji_id: str) -> Fragment:
        return EmojiPlaceholder(name, animated, emoji_id)


class FragmentWriter:
    """Collects fragments, merging adjacent strings."""

    def __init__(self) -> None:
        self.fragments: list[Fragment] = []

    def write(self, fragment: Fragment) -> None:
        if isinstance(fragment, str):
            if not fragment:
                return
            if self.fragments and isinstance(self.fragments[-1], str):
                self.fragments[-1] += fragment
                return
        self.fragments.append(fragment)

    def extend(self, fragments) -> None:
        for fragment in fragments:
            self.write(fragment)


class _Renderer:
    def __init__(self, callbacks: MarkdownCallbacks, html_output: bool) -> None:
        self.callbacks = callbacks
        self.html_output = html_output

    def render(self, nodes) -> list[Fragment]:
        writer = FragmentWriter()
        for node in nodes:
            writer.extend(self._render_node(node))
        return writer.fragments

    def _text(self, text: str) -> str:
        return html.escape(text) if self.html_output else text

    def _render_node(self, node) -> list[Fragment]:
        if isinstance(node, Text):
            return [self._text(node.content)]
        if isinstance(node, LineBreak):
            return ["<br>"]
        if isinstance(node, Styled):
            return [f"<{node.tag}>", *self.render(node.children), f"</{node.tag}>"]
        if isinstance(node, InlineCode):
            return [f"<code>{html.escape(node.content)}</code>"]
        if isinstance(node, CodeBlock):
            attrs = f' class="language-{html.escape(node.language)}"' if node.language else ""
            return [f"<pre><code{attrs}>{html.escape(node.content)}</code></pre>"]
        if isinstance(node, BlockQuote):
            return ["<blockquote>", *self.render(node.children), "</blockquote>"]
        if isinstance(node, Link):
            return [f'<a href="{html.escape(node.target)}">', *self.render(node.children), "</a>"]
        if isinstance(node, Spoiler):
            return self.callbacks.spoiler(self.render(node.children))
        if isinstance(node, Broadcast):
            return [self.callbacks.broadcast(node.keyword)]
        if isinstance(node, RoleMention):
            return [self.callbacks.role(node.id)]
        if isinstance(node, UserMention):
            return [self.callbacks.user(node.id)]
        if isinstance(node, ChannelMention):
            return [self.callbacks.channel(node.id)]
        if isinstance(node, CustomEmoji):
            return [self.callbacks.emoji(node.name, node.animated, node.id)]
        raise TypeError(f"Unknown markdown node: {node!r}")


def to_fragments(
    source: str,
    callbacks: MarkdownCallbacks,
    html_output: bool = False,
    allow_links: bool = False,
) -> list[Fragment]:
    """Render Discord markdown to fragments.

    Args:
        source: Discord message text
        callbacks: Structural callbacks for mentions, roles and spoilers
        html_output: Render Matrix HTML instead of plain text
        allow_links: Parse ``[text](url)`` masked links (HTML only)

    Returns:
        Strings interleaved with unresolved placeholders
    """
    if html_output:
        rules = LINKED_RULES if allow_links else FORMATTED_RULES
    else:
        rules = PLAIN_RULES
    return _Renderer(callbacks, html_output).render(parse(source, rules))
