"""Cooperative pause and stop signalling for pipeline runs.

Both signals are only observed at node boundaries: a node that is already
running always runs to completion.

Typical usage:
1. The pipeline awaits ``gate.wait()`` and checks ``stop.is_stopped``
   before starting each node.
2. ``pause()`` closes the gate; the next boundary blocks.
3. ``resume()`` opens it again; ``stop()`` requests the loop to end and
   opens the gate so a paused loop can observe the request.
"""

from __future__ import annotations

import asyncio


class PauseGate:
    """An awaitable latch that is open unless paused.

    Example:
        >>> gate = PauseGate()
        >>> gate.pause()
        >>> waiter = asyncio.create_task(gate.wait())
        >>> gate.resume()
        >>> await waiter  # returns once resumed
    """

    def __init__(self) -> None:
        self._open = asyncio.Event()
        self._open.set()

    @property
    def is_paused(self) -> bool:
        return not self._open.is_set()

    def pause(self) -> None:
        """Close the gate. Safe to call repeatedly."""
        self._open.clear()

    def resume(self) -> None:
        """Open the gate and release every waiter."""
        self._open.set()

    async def wait(self) -> None:
        """Return immediately when open, otherwise block until resumed."""
        await self._open.wait()


class StopToken:
    """One-way stop request.

    Unlike a pause, a stop is never undone for the run that observed it;
    the pipeline clears the token when a new run starts.
    """

    def __init__(self) -> None:
        self._stopped = False

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Request the run to end at the next node boundary."""
        self._stopped = True

    def reset(self) -> None:
        """Clear the request for a fresh run."""
        self._stopped = False
