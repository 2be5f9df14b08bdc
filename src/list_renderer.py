import re
from collections.abc import Sequence
from dataclasses import dataclass

BULLETS = ("●", "○", "■", "‣")
INDENT = "    "

_START_PATTERN = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class ListContext:
    """Nesting depth of the list currently being rendered."""
    depth: int = 0

    def enter(self) -> "ListContext":
        return ListContext(self.depth + 1)

    @property
    def bullet(self) -> str:
        return BULLETS[self.depth % len(BULLETS)]

    @property
    def indent(self) -> str:
        return INDENT * self.depth


def parse_start(value: str | None) -> int:
    """Starting number of an ordered list from its ``start`` attribute."""
    if value is None or not _START_PATTERN.fullmatch(value):
        return 1
    return int(value)


def render_list(items: Sequence[str], context: ListContext, ordered: bool = False, start: int = 1) -> str:
    """Render already converted list items.

    Args:
        items: Text of each ``li``, with nested lists already rendered
        context: Depth of this list
        ordered: Number the items instead of using bullets
        start: First number of an ordered list

    Returns:
        The list block; a top level list is surrounded by line breaks, a
        nested one is returned bare and placed by its parent item
    """
    lines = []
    for number, item in enumerate(items, start):
        marker = f"{number}." if ordered else context.bullet
        lines.append(f"{context.indent}{marker} {item}")
    block = "\n".join(lines)
    if context.depth == 0:
        return f"\n{block}\n\n"
    return block
