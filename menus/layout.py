"""Two-panel frame: playlists on the left (30%), tracks on the right (70%).

build_frame() is a pure function of the session; render_frame() turns the
result into a terminal string with blessed formatting.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .session import FocusPanel, LibrarySession

PLAYLISTS_PERCENT = 30
HIGHLIGHT_SYMBOL = "> "
KEY_HELP = "q quit | Tab switch | Up/Down move | Enter select/play"


@dataclass(frozen=True)
class PanelView:
    title: str
    items: List[str]
    cursor: Optional[int]
    focused: bool
    left: int
    width: int


@dataclass(frozen=True)
class Frame:
    playlists: PanelView
    tracks: PanelView
    footer: str
    width: int
    height: int


def split_widths(width: int) -> Tuple[int, int]:
    left = width * PLAYLISTS_PERCENT // 100
    return left, width - left


def scroll_offset(count: int, cursor: Optional[int], rows: int) -> int:
    """First visible index so that the cursor row stays on screen."""
    if rows <= 0 or cursor is None or count <= rows:
        return 0
    return min(max(0, cursor - rows + 1), count - rows)


def build_frame(session: LibrarySession, focus: FocusPanel, width: int, height: int) -> Frame:
    left_width, right_width = split_widths(width)

    device = session.selected_device()
    footer = f"{KEY_HELP} | Device: {device.name if device else 'none'}"
    if session.status_message:
        footer = f"{footer} | {session.status_message}"

    return Frame(
        playlists=PanelView(
            title="Playlists",
            items=[p.display_name for p in session.playlists],
            cursor=session.playlist_cursor,
            focused=focus is FocusPanel.PLAYLISTS,
            left=0,
            width=left_width,
        ),
        tracks=PanelView(
            title="Tracks",
            items=[t.display_name for t in session.tracks],
            cursor=session.track_cursor,
            focused=focus is FocusPanel.TRACKS,
            left=left_width,
            width=right_width,
        ),
        footer=footer,
        width=width,
        height=height,
    )


def _fit(term, text: str, width: int) -> str:
    """Truncate or pad to exactly width terminal cells (wide characters count as two)."""
    if width <= 0:
        return ""
    return term.ljust(term.truncate(text, width), width)


def panel_lines(term, panel: PanelView, height: int) -> List[str]:
    """Bordered, titled list; every line is exactly panel.width cells wide."""
    inner = panel.width - 2
    if inner < 0 or height < 2:
        return []

    title = term.truncate(panel.title, inner)
    fill = "─" * (inner - term.length(title))
    if panel.focused:
        border = term.yellow
        lines = [border("┌") + term.bold_yellow(title) + border(fill + "┐")]
    else:
        border = str
        lines = ["┌" + title + fill + "┐"]

    rows = height - 2
    offset = scroll_offset(len(panel.items), panel.cursor, rows)
    for index in range(offset, offset + rows):
        if index < len(panel.items):
            is_cursor = index == panel.cursor
            prefix = HIGHLIGHT_SYMBOL if is_cursor else " " * len(HIGHLIGHT_SYMBOL)
            body = _fit(term, prefix + panel.items[index], inner)
            if is_cursor:
                body = term.bold(body)
        else:
            body = " " * inner
        lines.append(border("│") + body + border("│"))

    lines.append(border("└" + "─" * inner + "┘"))
    return lines


def render_frame(term, frame: Frame, *, clear: bool = False) -> str:
    """Full-width lines overwrite the previous frame; clear only after a resize."""
    panel_height = max(0, frame.height - 1)
    out = [term.home + term.clear if clear else term.home]

    for panel in (frame.playlists, frame.tracks):
        for row, line in enumerate(panel_lines(term, panel, panel_height)):
            out.append(term.move_xy(panel.left, row) + line)

    if frame.height > 0:
        out.append(term.move_xy(0, frame.height - 1) + term.reverse(_fit(term, frame.footer, frame.width)))

    return "".join(out)
