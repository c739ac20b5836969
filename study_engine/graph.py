"""Relationship graph between study sets based on shared vocabulary."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Set

from .config import GraphConfig
from .errors import NotFoundError
from .logging import get_logger, log_with_context
from .storage import SQLiteStore

logger = get_logger(__name__)


def tokenize(text: str) -> Set[str]:
    return set(re.findall(r"\w+", text.lower()))


def jaccard_similarity(text_a: str, text_b: str) -> float:
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def connection_type(strength: float) -> str:
    if strength > 0.7:
        return "strongly_related"
    if strength > 0.5:
        return "related"
    if strength > 0.3:
        return "loosely_related"
    return "tangentially_related"


class RelationshipGraphBuilder:
    """Recomputes a set's edges against every other set."""

    def __init__(self, store: SQLiteStore, config: GraphConfig):
        self.store = store
        self.config = config

    def build_connections(self, set_id: str) -> Dict[str, Any]:
        if self.store.get_set(set_id) is None:
            raise NotFoundError("Set", set_id)

        current = self.store.set_text(set_id)
        created = 0
        removed = 0
        for other in self.store.list_sets(exclude_id=set_id):
            similarity = jaccard_similarity(current, self.store.set_text(other.id))
            if similarity > self.config.threshold:
                kind = connection_type(similarity)
                # Jaccard is symmetric, so both directions are refreshed together
                self.store.upsert_connection(set_id, other.id, kind, similarity)
                self.store.upsert_connection(other.id, set_id, kind, similarity)
                created += 1
            else:
                for source, target in ((set_id, other.id), (other.id, set_id)):
                    if self.store.get_connection(source, target) is not None:
                        self.store.delete_connection(source, target)
                        removed += 1

        log_with_context(
            logger, logging.INFO, "Connections rebuilt", set_id=set_id, linked=created, removed=removed
        )
        return {"success": True, "set_id": set_id, "linked_sets": created, "removed_edges": removed}

    def get_set_connections(self, set_id: str) -> List[Dict[str, Any]]:
        return self.store.list_connections(set_id)

    def get_graph_data(self) -> Dict[str, List[Dict[str, Any]]]:
        nodes = [
            {
                "id": s.id,
                "name": s.name,
                "subject": s.subject,
                "level": s.level,
                "difficulty": s.difficulty,
            }
            for s in self.store.list_sets()
        ]
        links = [
            {
                "source": c["source_set_id"],
                "target": c["target_set_id"],
                "type": c["connection_type"],
                "strength": c["strength"],
            }
            for c in self.store.list_connections()
        ]
        return {"nodes": nodes, "links": links}
