"""Typewriter replay: turns a complete text into a paced series of prefixes.

Used when a tier returned the whole reply at once but the caller asked for
incremental updates. Frames are prefixes of the text at `chunk_size`
code-point steps; the last frame is always the full text.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from divination.config import TYPEWRITER_CHUNK_SIZE, TYPEWRITER_INTERVAL


def frames(full_text: str, chunk_size: int = TYPEWRITER_CHUNK_SIZE) -> list[str]:
    """All frames for `full_text`, strictly increasing in length.

    An empty text yields the single frame "".
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not full_text:
        return [""]
    out = [full_text[:end] for end in range(chunk_size, len(full_text), chunk_size)]
    out.append(full_text)
    return out


async def simulate(
    full_text: str,
    sink: Callable[[str], None],
    chunk_size: int = TYPEWRITER_CHUNK_SIZE,
    interval: float = TYPEWRITER_INTERVAL,
) -> None:
    """Deliver frames(full_text) to `sink`, sleeping `interval` between frames."""
    all_frames = frames(full_text, chunk_size)
    for i, frame in enumerate(all_frames):
        if i:
            await asyncio.sleep(interval)
        sink(frame)
