from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from rich.color import Color

from tallypoint.errors import NoData
from tallypoint.models import Metric

log = logging.getLogger(__name__)

DEFAULT_SIZE = (80, 24)  # (width, height) when the terminal cannot be queried
MAX_ROWS = 20

VERTICAL_SEP = "|"
HORIZONTAL_SEP = "_"
HIT_GLYPH = "o"
ERROR_GLYPH = "*"

RESET, NORMAL, ERROR = "reset", "normal", "error"


def _sgr(color_name: str) -> str:
    codes = Color.parse(color_name).get_ansi_codes(foreground=True)
    return f"\x1b[{';'.join(codes)}m"


def ansi_palette() -> Dict[str, str]:
    return {RESET: "\x1b[0m", NORMAL: _sgr("green"), ERROR: _sgr("red")}


def terminal_size() -> Tuple[int, int]:
    try:
        size = os.get_terminal_size(sys.stdout.fileno())
    except (OSError, ValueError) as exc:
        log.warning("terminal size unavailable (%s), using %dx%d", exc, *DEFAULT_SIZE)
        return DEFAULT_SIZE
    if size.columns <= 0 or size.lines <= 0:
        return DEFAULT_SIZE
    return size.columns, size.lines


class StyleRun:
    """
    Decorates text with style markers, emitting one only when the style
    differs from the previous cell's.
    """

    def __init__(self, palette: Optional[Mapping[str, str]] = None, initial: str = RESET):
        self.palette = palette or {}
        self.current = initial

    def paint(self, style: str, text: str) -> str:
        if style == self.current:
            return text
        self.current = style
        return self.palette.get(style, "") + text

    def close(self) -> str:
        return self.paint(RESET, "")


@dataclass
class Chart:
    lines: List[str]
    rows: int
    columns: int
    minimum: int
    maximum: int
    truncated: bool = False
    buckets: List[int] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def _series(results: Mapping, metric: int) -> Dict[int, int]:
    raw = results.get(metric)
    if raw is None:
        raw = results.get(str(int(metric)))
    return {int(k): int(v) for k, v in (raw or {}).items()}


def render_chart(results: Mapping, width: Optional[int] = None, height: Optional[int] = None,
                 color: bool = True) -> Chart:
    """
    Render the match series of a filter as a bar chart, with buckets whose
    error count reaches a row drawn in the error style.

    ``results`` maps metric -> bucket -> count. Missing dimensions are read
    from the terminal.
    """
    primary_series = _series(results, Metric.MATCH)
    if not primary_series:
        raise NoData("Metrics not available for this filter")
    error_series = _series(results, Metric.ERROR)

    if width is None or height is None:
        term_w, term_h = terminal_size()
        width = term_w if width is None else width
        height = term_h if height is None else height

    buckets = sorted(primary_series)
    primary = [primary_series[b] for b in buckets]
    secondary = [error_series.get(b, 0) for b in buckets]

    truncated = False
    # one cell per point plus the vertical axis
    keep = max(1, width - 1)
    if len(primary) > keep:
        log.warning("truncating %d points to match terminal width %d", len(primary), width)
        buckets, primary, secondary = buckets[:keep], primary[:keep], secondary[:keep]
        truncated = True

    n = len(primary)
    rows = max(1, min(MAX_ROWS, height - 4))
    min_val, max_val = min(primary), max(primary)
    col_pad = max(0, (width - 1 - n) // n)

    run = StyleRun(ansi_palette() if color else None)
    lines: List[str] = []
    for row in range(rows, -1, -1):
        if row == 0:
            axis = HORIZONTAL_SEP * (1 + n * (1 + col_pad))
            lines.append(run.paint(RESET, axis))
            continue

        threshold = row * max_val // rows if max_val > 0 else 0
        parts = [run.paint(RESET, VERTICAL_SEP)]
        for val, err in zip(primary, secondary):
            if val >= threshold:
                if err >= threshold:
                    parts.append(run.paint(ERROR, ERROR_GLYPH))
                else:
                    parts.append(run.paint(NORMAL, HIT_GLYPH))
            else:
                parts.append(" ")
            parts.append(" " * col_pad)
        lines.append("".join(parts))
    lines.append(run.close())

    return Chart(lines=lines, rows=rows, columns=n, minimum=min_val, maximum=max_val,
                 truncated=truncated, buckets=buckets)
