"""Scene activation.

Activating a scene schedules one independent task per scene value.  The
task sleeps for the entry's delay and then issues the write.  Tasks are
not coordinated: entries fire in delay order, overlapping activations of
the same scene simply add more tasks, and :meth:`SceneScheduler.activate`
returns as soon as everything is scheduled.

Pending tasks are tracked per ``(scene_id, activation)`` so the gateway
can cancel whatever is still waiting when it shuts down.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from zwave2mqtt._registry import ValueRef
from zwave2mqtt._scenes import SceneStore, SceneValue

logger = logging.getLogger(__name__)

ValueWriter = Callable[[ValueRef, Any], Awaitable[None]]
"""Async callable writing a value to the mesh."""

Sleeper = Callable[[float], Awaitable[None]]

ActivationKey = tuple[int, int]
"""``(scene_id, activation number)``."""


class SceneScheduler:
    """Fires scene writes after their configured delays.

    Args:
        scenes: Scene store the activated scene is resolved from.
        writer: Performs each write.
        sleep: Awaitable delay, replaceable in tests.
    """

    def __init__(
        self,
        scenes: SceneStore,
        writer: ValueWriter,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._scenes = scenes
        self._writer = writer
        self._sleep = sleep
        self._counter = itertools.count(1)
        self._tasks: dict[ActivationKey, set[asyncio.Task[None]]] = {}

    def activate(self, scene_id: int) -> int:
        """Schedule every write of *scene_id*; return how many were scheduled.

        Raises:
            SceneNotFoundError: If there is no such scene.
        """
        values = self._scenes.get_values(scene_id)
        key: ActivationKey = (scene_id, next(self._counter))
        tasks: set[asyncio.Task[None]] = set()
        self._tasks[key] = tasks

        for entry in values:
            task = asyncio.create_task(
                self._fire(entry, scene_id),
                name=f"scene-{scene_id}-{key[1]}-{entry.value_id}",
            )
            tasks.add(task)
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        if not tasks:
            del self._tasks[key]
        logger.info(
            "Activated scene %d: %d writes scheduled",
            scene_id,
            len(values),
            extra={"scene_id": scene_id},
        )
        return len(values)

    @property
    def active(self) -> list[ActivationKey]:
        """Activations that still have writes waiting."""
        return list(self._tasks)

    @property
    def pending(self) -> int:
        """Number of writes not yet issued."""
        return sum(len(tasks) for tasks in self._tasks.values())

    async def cancel_all(self) -> None:
        """Cancel every pending write and wait for the tasks to finish."""
        tasks = [task for group in self._tasks.values() for task in group]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _fire(self, entry: SceneValue, scene_id: int) -> None:
        await self._sleep(entry.timeout)
        try:
            await self._writer(entry.ref, entry.value)
        except Exception:
            logger.exception(
                "Scene %d write to %s failed",
                scene_id,
                entry.value_id,
                extra={"scene_id": scene_id},
            )

    def _forget(self, key: ActivationKey, task: asyncio.Task[None]) -> None:
        tasks = self._tasks.get(key)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._tasks[key]
