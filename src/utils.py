_COLOR_MAX = 0xFFFFFF


def number_to_html_color(color: int) -> str:
    """Convert a Discord role color integer to a ``#rrggbb`` string."""
    color = max(0, min(color, _COLOR_MAX))
    return f"#{color:06x}"
