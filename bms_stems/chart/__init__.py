"""BMS chart parsing.

Pipeline:
- split_sections(text) -> header lines, data lines
- resolve_random_blocks(lines) -> flattened lines + unsupported-feature signals
- classify_line(line) -> typed events for one `#BBBCC:...` line
- parse_chart(text) -> immutable Chart
"""

from .classify import ClassifiedLine, classify_line
from .parse import ChartSections, load_chart, parse_chart, split_sections
from .random_blocks import resolve_random_blocks

__all__ = [
    "ChartSections",
    "ClassifiedLine",
    "classify_line",
    "load_chart",
    "parse_chart",
    "split_sections",
    "resolve_random_blocks",
]
