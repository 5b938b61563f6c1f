from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from bms_stems.chart.classify import random_boundary
from bms_stems.model.types import UnsupportedFeature


@dataclass
class _Frame:
    randomness: int | None
    line: int
    branch: int | None = None
    in_if: bool = False
    orphan: bool = False

    def merges(self) -> bool:
        # Content outside any #IF is unconditional.
        if not self.in_if:
            return not self.orphan
        return self.randomness == 1 and self.branch == 1


def resolve_random_blocks(lines: list[str], *, first_line: int = 1) -> tuple[list[str], list[UnsupportedFeature]]:
    """Flatten `#RANDOM` / `#IF` blocks.

    Only single-outcome blocks (`#RANDOM 1`) are resolved: the content of their
    `#IF 1` branches is kept in place. Blocks with any other randomness keep their
    unconditional lines but drop every branch, and are reported back as
    `UnsupportedFeature` records so callers know the timing data may be partial.

    `#ENDRANDOM` is optional: a new `#RANDOM` outside an open `#IF` closes the
    previous block, as does the end of input.
    """

    out: list[str] = []
    unsupported: list[UnsupportedFeature] = []
    stack: list[_Frame] = []

    for no, raw in enumerate(lines, start=first_line):
        b = random_boundary(raw)
        if b is None:
            if all(f.merges() for f in stack):
                out.append(raw)
            continue

        if b.kind == "random":
            if stack and not stack[-1].in_if:
                stack.pop()
            reachable = all(f.merges() for f in stack)
            stack.append(_Frame(randomness=b.value, line=no))
            if b.value != 1 and reachable:
                unsupported.append(UnsupportedFeature(feature="random", line=no, detail=f"#RANDOM {b.value}"))
                logger.info(
                    "Unsupported chart feature at line {}: #RANDOM {} (only #RANDOM 1 is resolved, output may be incomplete).",
                    no,
                    b.value,
                )
            continue

        if b.kind == "if":
            if not stack:
                logger.warning("#IF outside #RANDOM at line {}; ignoring its content.", no)
                stack.append(_Frame(randomness=None, line=no, orphan=True))
            top = stack[-1]
            top.in_if = True
            top.branch = b.value
            continue

        if b.kind == "endif":
            if not stack or not stack[-1].in_if:
                logger.warning("Stray #ENDIF at line {}. Skipping.", no)
                continue
            top = stack[-1]
            top.in_if = False
            top.branch = None
            if top.orphan:
                stack.pop()
            continue

        # endrandom
        if not stack:
            logger.warning("Stray #ENDRANDOM at line {}. Skipping.", no)
            continue
        stack.pop()

    if any(f.in_if for f in stack):
        logger.warning("Unterminated #IF block starting near line {}.", stack[-1].line)

    return out, unsupported
