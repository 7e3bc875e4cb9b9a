from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


def run(item: str, *, connection: Any = None) -> dict[str, Any]:
    logger.info("crawled item=%s", item)
    return {"handled": True, "item": item}
