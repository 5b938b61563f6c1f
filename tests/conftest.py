from __future__ import annotations

from typing import Iterator

import pytest
from loguru import logger


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Collect `LEVEL: message` strings logged while the test runs."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda m: messages.append(f"{m.record['level'].name}: {m.record['message']}"),
        level="DEBUG",
        format="{message}",
    )
    yield messages
    try:
        logger.remove(handler_id)
    except ValueError:
        # setup_logging() already dropped every handler.
        pass
