"""Scene storage: named macros of value writes with optional delays.

A scene is an ordered list of :class:`SceneValue` entries, each naming a
target value, the value to write and a delay in seconds.  Entries are
identified by ``value_id`` (``node-class-instance-index``); adding a
second entry for the same target replaces its value and delay.

The whole collection is one JSON document.  Every mutation updates
memory first and then schedules an asynchronous rewrite of the document
without waiting for it.  A failed rewrite is logged and never rolls the
in-memory collection back, which stays authoritative for the running
process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, computed_field

from zwave2mqtt._errors import (
    InvalidSceneValueError,
    PersistenceError,
    SceneNotFoundError,
    ValueNotFoundError,
)
from zwave2mqtt._registry import DeviceRegistry, ValueRef
from zwave2mqtt._store import DocumentStorePort

logger = logging.getLogger(__name__)

DEFAULT_KEY = "scenes.json"


class SceneValue(BaseModel):
    """One write performed when a scene is activated."""

    model_config = ConfigDict(extra="ignore")

    node_id: int
    class_id: int
    instance: int
    index: int
    label: str = ""
    units: str = ""
    value: Any = None
    timeout: float = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def value_id(self) -> str:
        return self.ref.value_id

    @property
    def ref(self) -> ValueRef:
        return ValueRef.of(self.node_id, self.class_id, self.instance, self.index)


class Scene(BaseModel):
    """A labelled, ordered list of scene values."""

    model_config = ConfigDict(extra="ignore")

    sceneid: int
    label: str = ""
    values: list[SceneValue] = Field(default_factory=list)


_SCENE_LIST = TypeAdapter(list[Scene])


class SceneStore:
    """CRUD over the scene collection.

    Args:
        store: Document store holding the collection.
        registry: Registry that new scene values are resolved against.
        key: Document key of the collection.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        registry: DeviceRegistry,
        *,
        key: str = DEFAULT_KEY,
    ) -> None:
        self._store = store
        self._registry = registry
        self._key = key
        self._scenes: list[Scene] = []
        self._pending: set[asyncio.Task[None]] = set()

    def load(self) -> list[Scene]:
        """Replace the in-memory collection with the persisted document.

        An invalid document is logged and yields an empty collection.
        """
        raw = self._store.get(self._key, [])
        try:
            self._scenes = _SCENE_LIST.validate_python(raw)
        except ValidationError as exc:
            logger.error("Ignoring invalid scene document %s: %s", self._key, exc)
            self._scenes = []
        logger.info("Loaded %d scenes", len(self._scenes))
        return self.get_scenes()

    # -- Queries ------------------------------------------------------------

    def get_scenes(self) -> list[Scene]:
        return list(self._scenes)

    def get_scene(self, scene_id: int) -> Scene:
        """Return the scene with *scene_id*.

        Raises:
            SceneNotFoundError: If there is no such scene.
        """
        for scene in self._scenes:
            if scene.sceneid == scene_id:
                return scene
        raise SceneNotFoundError(scene_id)

    def get_values(self, scene_id: int) -> list[SceneValue]:
        return list(self.get_scene(scene_id).values)

    def __len__(self) -> int:
        return len(self._scenes)

    # -- Mutation -----------------------------------------------------------

    def set_scenes(self, raw: Any) -> list[Scene]:
        """Replace the whole collection.

        Raises:
            pydantic.ValidationError: If *raw* is not a list of scenes.
        """
        self._scenes = _SCENE_LIST.validate_python(raw)
        self._persist()
        return self.get_scenes()

    def create(self, label: str) -> Scene:
        """Append an empty scene whose id is one above the highest in use."""
        scene_id = max((s.sceneid for s in self._scenes), default=0) + 1
        scene = Scene(sceneid=scene_id, label=label)
        self._scenes.append(scene)
        self._persist()
        logger.info("Created scene %d (%s)", scene_id, label, extra={"scene_id": scene_id})
        return scene

    def remove(self, scene_id: int) -> Scene:
        """Remove and return the scene with *scene_id*.

        Raises:
            SceneNotFoundError: If there is no such scene.
        """
        scene = self.get_scene(scene_id)
        self._scenes.remove(scene)
        self._persist()
        logger.info("Removed scene %d", scene_id, extra={"scene_id": scene_id})
        return scene

    def upsert_value(
        self,
        scene_id: int,
        ref: ValueRef,
        value: Any,
        timeout: float | None = 0,
    ) -> SceneValue:
        """Add or replace the entry targeting *ref*.

        The target must exist in the registry; its label and units are
        copied into the entry.

        Raises:
            SceneNotFoundError: If there is no such scene.
            NodeNotFoundError: If the target node is unknown.
            ValueNotFoundError: If the target value is unknown.
            InvalidSceneValueError: If *timeout* is negative or not a number.
        """
        scene = self.get_scene(scene_id)
        target = self._registry.get_value(ref)
        try:
            entry = SceneValue(
                node_id=target.node_id,
                class_id=target.class_id,
                instance=target.instance,
                index=target.index,
                label=target.label,
                units=target.units,
                value=value,
                timeout=timeout or 0,
            )
        except ValidationError as exc:
            raise InvalidSceneValueError(timeout) from exc
        for position, existing in enumerate(scene.values):
            if existing.value_id == entry.value_id:
                scene.values[position] = entry
                break
        else:
            scene.values.append(entry)
        self._persist()
        return entry

    def remove_value(self, scene_id: int, ref: ValueRef) -> SceneValue:
        """Remove the entry targeting *ref*.

        The target does not need to exist in the registry any more.

        Raises:
            SceneNotFoundError: If there is no such scene.
            ValueNotFoundError: If the scene has no entry for *ref*.
        """
        scene = self.get_scene(scene_id)
        for position, existing in enumerate(scene.values):
            if existing.value_id == ref.value_id:
                del scene.values[position]
                self._persist()
                return existing
        raise ValueNotFoundError(ref.value_id, "No valueid match found in given scene")

    # -- Persistence --------------------------------------------------------

    def to_document(self) -> list[dict[str, Any]]:
        """Serialise the collection as it is written to the store."""
        return [scene.model_dump(mode="json") for scene in self._scenes]

    async def flush(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*self._pending)

    def _persist(self) -> None:
        task = asyncio.get_running_loop().create_task(self._write(self.to_document()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, document: list[dict[str, Any]]) -> None:
        try:
            await self._store.put(self._key, document)
        except PersistenceError as exc:
            logger.error("Failed to persist scenes: %s", exc)
