"""Bridge from synchronous click callbacks to async command bodies."""

from __future__ import annotations

import asyncio
import functools
from typing import Any


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper
