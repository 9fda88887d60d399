"""
Download traffic bar chart for the speed panel
"""

from typing import List, Sequence

from rich.text import Text

from ..core.types import TrafficSample
from ..utils.formatting import format_bytes

BAR = '█'
EMPTY = '·'
AXIS = '─'


def chart_lines(values: Sequence[int], width: int, height: int) -> List[str]:
    """
    Plain-text bar chart, newest sample on the right

    The samples are stretched or squeezed to ``width`` columns. The top row
    carries the scale (largest value) at its left edge.
    """
    width = max(width, 10)
    height = max(height, 3)

    if not values:
        return [AXIS * width for _ in range(height)]

    peak = max(max(values), 1)
    grid = [[EMPTY] * width for _ in range(height)]

    count = len(values)
    for col in range(width):
        idx = min(col * count // width, count - 1)
        bar = int(values[idx] / peak * (height - 1))
        bar = min(max(bar, 0), height - 1)
        for h in range(bar + 1):
            grid[height - 1 - h][col] = BAR

    lines = [''.join(row) for row in grid]
    label = format_bytes(peak)
    lines[0] = label + EMPTY * max(width - len(label), 0)
    return lines


def render_traffic_chart(history: Sequence[TrafficSample],
                         width: int, height: int) -> Text:
    """Chart of per-sample download volume (difference of cumulative counters)"""
    deltas = [
        max(0, cur.download_bytes - prev.download_bytes)
        for prev, cur in zip(history, history[1:])
    ]
    lines = chart_lines(deltas, width, height)

    text = Text()
    for i, line in enumerate(lines):
        if i:
            text.append('\n')
        if not deltas:
            text.append(line, style='grey42')
        elif i == 0:
            label = format_bytes(max(max(deltas), 1))
            text.append(line[:len(label)], style='yellow')
            text.append(line[len(label):], style='green')
        else:
            text.append(line, style='green')
    return text
