from __future__ import annotations

import asyncio
import copy
from typing import Optional

from api_client import MindmapApiClient, log_connection_event, validate_title
from graph_store import GraphStore, ReplaceReport
from node_models import MindMap, Node

UNTITLED = "Untitled"
CENTRAL_NODE_POSITION = (400.0, 300.0)


class PersistenceClient:
    """Keeps the open mind map in step with the backend.

    Remembers the id the backend assigned so the first save creates and
    every later save updates. At most one save runs at a time: auto-save
    skips while one is in flight, a manual save waits for it.
    """

    def __init__(self, api: MindmapApiClient, store: GraphStore) -> None:
        self.api = api
        self.store = store
        self.current_id: Optional[str] = None
        self.title: Optional[str] = None
        self.description: str = ""
        # Bumped whenever a different document takes over the store.
        self._generation = 0
        self._save_lock = asyncio.Lock()

    @property
    def saving(self) -> bool:
        return self._save_lock.locked()

    def document_title(self) -> str:
        if self.title:
            return self.title
        first = next(iter(self.store.nodes), None)
        if first is not None and first.text.strip():
            return first.text.strip()
        return UNTITLED

    def new_mind_map(self, title: str, description: str = "") -> Node:
        cleaned = validate_title(title)
        self.store.clear()
        self.current_id = None
        self._generation += 1
        self.title = cleaned
        self.description = description.strip()
        x, y = CENTRAL_NODE_POSITION
        return self.store.add_node(cleaned, x, y)

    async def save(self) -> MindMap:
        async with self._save_lock:
            generation = self._generation
            snapshot = self.store.snapshot()
            nodes = copy.deepcopy(snapshot.nodes)
            connections = copy.deepcopy(snapshot.connections)
            saved = await asyncio.to_thread(
                self.api.save,
                self.current_id,
                self.document_title(),
                self.description,
                nodes,
                connections,
            )
            if generation == self._generation and not self.current_id:
                self.current_id = saved.id
            return saved

    async def autosave(self) -> Optional[MindMap]:
        """Save unless the graph is empty or another save is already running."""
        if self.store.is_empty() or self.saving:
            return None
        return await self.save()

    async def list_mindmaps(self) -> list[MindMap]:
        return await asyncio.to_thread(self.api.list_mindmaps)

    async def load(self, mindmap_id: str) -> tuple[MindMap, ReplaceReport]:
        mindmap = await asyncio.to_thread(self.api.get_mindmap, mindmap_id)
        return mindmap, self.open(mindmap)

    def open(self, mindmap: MindMap) -> ReplaceReport:
        """Replace the whole graph with ``mindmap`` and adopt its identity."""
        report = self.store.replace(mindmap.nodes, mindmap.connections)
        self._generation += 1
        if not report.clean:
            log_connection_event("REPAIR", f"mindmap {mindmap.id}", f"dropped {report.describe()}")
        self.current_id = mindmap.id
        self.title = mindmap.title or None
        self.description = mindmap.description or ""
        return report

    async def delete(self, mindmap_id: str) -> None:
        await asyncio.to_thread(self.api.delete_mindmap, mindmap_id)
        if mindmap_id == self.current_id:
            self.current_id = None
