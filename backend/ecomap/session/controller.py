import inspect
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ecomap.config import get_settings
from ecomap.extraction.vision_extractor import ImageData, VisionExtractor, extract_with_retry
from ecomap.ir import operations
from ecomap.ir.ecosystem import EcosystemCandidate, EcosystemMap, empty_candidate
from ecomap.ir.errors import NotFound
from ecomap.store.map_store import MapStore, Snapshot, Subscription

log = logging.getLogger(__name__)


class SessionStatus(Enum):
    NO_MAPS = "no_maps"
    MAPS_PRESENT = "maps_present"
    MAP_SELECTED = "map_selected"


@dataclass(frozen=True)
class SessionState:
    maps: Tuple[EcosystemMap, ...] = ()
    selected_id: Optional[str] = None
    loaded: bool = False           # at least one snapshot received

    @property
    def status(self) -> SessionStatus:
        if not self.maps:
            return SessionStatus.NO_MAPS
        if self.selected_id is None:
            return SessionStatus.MAPS_PRESENT
        return SessionStatus.MAP_SELECTED

    @property
    def current(self) -> Optional[EcosystemMap]:
        for m in self.maps:
            if m.id == self.selected_id:
                return m
        return None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "selectedId": self.selected_id,
            "maps": [m.to_document() for m in self.maps],
        }


# ============================================================
# REDUCERS
# ============================================================

def reduce_snapshot(state: SessionState, snapshot: Snapshot) -> SessionState:
    """
    Fold a store snapshot (most recently updated first) into the session.

    The selection only moves when nothing is selected or the selected map
    vanished; a still-present map stays selected even if others changed.
    """
    maps = tuple(snapshot)
    ids = {m.id for m in maps}

    selected = state.selected_id
    if selected is None or selected not in ids:
        selected = maps[0].id if maps else None

    return SessionState(maps=maps, selected_id=selected, loaded=True)


def reduce_selection(state: SessionState, map_id: str) -> SessionState:
    if map_id not in {m.id for m in state.maps}:
        raise NotFound(map_id)
    return replace(state, selected_id=map_id)


StateListener = Callable[[SessionState], Union[None, Awaitable[None]]]


class MapSession:
    """
    One client's view of the shared maps collection.

    Reads come from the latest delivered snapshot; writes go straight to the
    store and become visible here only once the store redelivers.
    """

    def __init__(self, store: MapStore, extractor: Optional[VisionExtractor] = None):
        self.store = store
        self.extractor = extractor or VisionExtractor()
        self._state = SessionState()
        self._subscription: Optional[Subscription] = None
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await self.store.subscribe(self._on_snapshot)

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def _on_snapshot(self, snapshot: Snapshot) -> None:
        previous = self._state.selected_id
        self._state = reduce_snapshot(self._state, snapshot)
        if self._state.selected_id != previous:
            log.info("[MapSession] selection %s -> %s", previous, self._state.selected_id)
        await self._notify()

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            result = listener(self._state)
            if inspect.isawaitable(result):
                await result

    # ---------- reads ----------

    def list_maps(self) -> List[EcosystemMap]:
        return list(self._state.maps)

    def get_current_map(self) -> Optional[EcosystemMap]:
        return self._state.current

    async def select_map(self, map_id: str) -> EcosystemMap:
        self._state = reduce_selection(self._state, map_id)
        await self._notify()
        return self._state.current

    # ---------- writes ----------

    async def create_or_replace_map(self, ecosystem_map: Any) -> Optional[EcosystemMap]:
        return await self.store.save(ecosystem_map)

    async def create_empty_map(self, name: str) -> Optional[EcosystemMap]:
        return await self.store.save(empty_candidate(name, section=self.store.section))

    async def save_candidate(
        self,
        candidate: EcosystemCandidate,
        map_id: Optional[str] = None,
    ) -> Optional[EcosystemMap]:
        """Persist an extraction candidate, as a new map or over map_id (re-import)."""
        document = candidate.to_document()
        if map_id:
            document["id"] = map_id
        return await self.store.save(document)

    async def patch_map(self, map_id: str, fields: Dict[str, Any]) -> Optional[EcosystemMap]:
        return await self.store.update(map_id, fields)

    async def rename_map(self, map_id: str, name: str) -> Optional[EcosystemMap]:
        return await self.store.update(map_id, {"name": name})

    async def delete_map(self, map_id: str) -> bool:
        return await self.store.delete(map_id)

    async def import_from_image(
        self,
        image_data: ImageData,
        attempts: Optional[int] = None,
    ) -> EcosystemCandidate:
        """Extract a candidate map from an image. Nothing is persisted."""
        if attempts is None:
            attempts = get_settings().vision_extract_attempts
        return await extract_with_retry(self.extractor, image_data, attempts=attempts)

    # ---------- node / edge editing ----------

    async def _graph(self, map_id: str) -> Optional[EcosystemMap]:
        if not self.store.available:
            return None
        current = await self.store.get(map_id)
        if current is None:
            raise NotFound(map_id)
        return current

    async def _edit(self, map_id: str, operation, *args) -> Optional[EcosystemMap]:
        graph = await self._graph(map_id)
        if graph is None:
            return None
        return await self.store.update(map_id, operation(graph, *args))

    async def add_node(self, map_id: str, node: Dict[str, Any]) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.add_node, node)

    async def update_node(self, map_id: str, node_id: str, fields: Dict[str, Any]) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.update_node, node_id, fields)

    async def remove_node(self, map_id: str, node_id: str) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.remove_node, node_id)

    async def add_edge(self, map_id: str, edge: Dict[str, Any]) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.add_edge, edge)

    async def update_edge(self, map_id: str, edge_id: str, fields: Dict[str, Any]) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.update_edge, edge_id, fields)

    async def remove_edge(self, map_id: str, edge_id: str) -> Optional[EcosystemMap]:
        return await self._edit(map_id, operations.remove_edge, edge_id)
