"""Immutable tree of a Matrix ``formatted_body``."""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

import lxml.html

logger = logging.getLogger(__name__)

# libxml2 rejects these outright
_XML_INCOMPATIBLE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class ElementNode:
    tag: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    children: tuple = ()

    def get(self, name: str) -> str | None:
        return self.attributes.get(name)

    def has(self, name: str) -> bool:
        return name in self.attributes

    @property
    def text_content(self) -> str:
        """Concatenated text of all descendants, entities already decoded."""
        parts = []
        for child in self.children:
            if isinstance(child, TextNode):
                parts.append(child.text)
            else:
                parts.append(child.text_content)
        return "".join(parts)

    def find(self, tag: str) -> "ElementNode | None":
        """First direct child element with the given tag."""
        for child in self.children:
            if isinstance(child, ElementNode) and child.tag == tag:
                return child
        return None


ParsedNode = TextNode | ElementNode


def _convert(element) -> ElementNode:
    children = []
    if element.text:
        children.append(TextNode(element.text))
    for child in element:
        # comments and processing instructions carry a non-string tag
        if isinstance(child.tag, str):
            children.append(_convert(child))
        if child.tail:
            children.append(TextNode(child.tail))
    attributes = {name: value or "" for name, value in element.attrib.items()}
    return ElementNode(element.tag.lower(), attributes, tuple(children))


def parse_html(body: str) -> ElementNode:
    """Parse an HTML fragment into a tree rooted at a synthetic ``div``.

    Tag names are lower-cased, entities decoded and valueless attributes
    mapped to the empty string. Control characters libxml2 cannot hold are
    dropped.
    """
    root = lxml.html.fragment_fromstring(_XML_INCOMPATIBLE.sub("", body), create_parent="div")
    return _convert(root)
