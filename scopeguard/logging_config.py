from __future__ import annotations

import logging


def configure_logging(level: str = "INFO") -> None:
    """
    Set the level for the ``scopeguard`` logger tree.

    Notes:
    - Plain stdlib logging; the host application owns handlers and formatting.
    - Set ``SCOPEGUARD_LOG_LEVEL=DEBUG`` to trace individual decisions.
    """

    normalized = level.upper()
    logging.getLogger("scopeguard").setLevel(normalized)
    logging.getLogger("scopeguard").propagate = True
