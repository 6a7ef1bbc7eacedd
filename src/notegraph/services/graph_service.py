"""Read-only graph and backlink projections."""
import logging
from typing import List

from notegraph.models.schema import Graph, GraphEdge, NoteRef
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.relation_index import RelationIndex

logger = logging.getLogger(__name__)


class GraphService:
    """Projections computed from the note store and the relation index.

    Link targets are titles, resolved to note ids only here, at read time.
    A link to a title no note carries is a valid state and yields no edge.
    """

    def __init__(self, notes: NoteRepository, relations: RelationIndex):
        self.notes = notes
        self.relations = relations

    def backlinks(self, note_id: str) -> List[NoteRef]:
        """Notes linking to the note with ``note_id``, most recent first.

        Raises:
            NoteNotFoundError: If no note has ``note_id``.
        """
        note = self.notes.get(note_id)
        return self.relations.backlinks_of(note.title)

    def graph(self) -> Graph:
        """Every note as a node and every resolvable link as an edge."""
        nodes = self.notes.all_refs()
        edges = [
            GraphEdge(source=source, target=target)
            for source, target in self.relations.resolved_edges()
        ]
        logger.debug(f"Graph projection: {len(nodes)} nodes, {len(edges)} edges")
        return Graph(nodes=nodes, edges=edges)
