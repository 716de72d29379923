"""Static relation graph between entities (tables or collections)."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Any, Iterable, Union
import json
import logging

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Relation:
    """A declared foreign-key association between two entities."""
    from_entity: str
    to_entity: str
    local_key: str
    foreign_key: str

    def connects(self, a: str, b: str) -> bool:
        """Whether this relation links ``a`` and ``b`` in either direction."""
        return (
            (self.from_entity == a and self.to_entity == b)
            or (self.from_entity == b and self.to_entity == a)
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "from": self.from_entity,
            "to": self.to_entity,
            "localKey": self.local_key,
            "foreignKey": self.foreign_key,
        }


class RelationGraph:
    """Undirected view over an ordered, read-only list of relations.

    The declaration order is significant: neighbours are enumerated in the
    order their relations were declared, which makes path tie-breaking
    reproducible.
    """

    def __init__(self, relations: Iterable[Relation]):
        self._relations = tuple(relations)
        self._adjacency: Dict[str, List[str]] = {}

        for relation in self._relations:
            if relation.from_entity == relation.to_entity:
                raise ConfigurationError(
                    f"Relation must join two distinct entities, got '{relation.from_entity}' twice",
                    context={"relation": relation.to_dict()}
                )
            self._add_neighbor(relation.from_entity, relation.to_entity)
            self._add_neighbor(relation.to_entity, relation.from_entity)

    def _add_neighbor(self, entity: str, neighbor: str) -> None:
        neighbors = self._adjacency.setdefault(entity, [])
        if neighbor not in neighbors:
            neighbors.append(neighbor)

    @classmethod
    def from_config(cls, records: List[Dict[str, Any]], source: Optional[str] = None) -> "RelationGraph":
        """Build a graph from ``{from, to, localKey, foreignKey}`` records."""
        if not isinstance(records, list):
            raise ConfigurationError(
                "Relation config must be a list of records",
                source=source
            )

        relations = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise ConfigurationError(
                    f"Relation #{index} is not an object",
                    source=source
                )

            # Accept the short key names used by older configs
            local_key = record.get("localKey", record.get("local"))
            foreign_key = record.get("foreignKey", record.get("foreign"))
            values = {
                "from": record.get("from"),
                "to": record.get("to"),
                "localKey": local_key,
                "foreignKey": foreign_key,
            }
            missing = [key for key, value in values.items() if not value]
            if missing:
                raise ConfigurationError(
                    f"Relation #{index} is missing {', '.join(missing)}",
                    source=source,
                    context={"relation": record}
                )

            relations.append(Relation(
                from_entity=values["from"],
                to_entity=values["to"],
                local_key=local_key,
                foreign_key=foreign_key,
            ))

        graph = cls(relations)
        logger.debug(f"Loaded {len(relations)} relations over {len(graph.entities)} entities")
        return graph

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RelationGraph":
        """Load a graph from a JSON file holding an ordered relation list."""
        path = Path(path)
        try:
            records = json.loads(path.read_text())
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read relation config: {e.strerror}",
                source=str(path)
            ) from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Relation config is not valid JSON (line {e.lineno})",
                source=str(path)
            ) from e

        return cls.from_config(records, source=str(path))

    @property
    def relations(self) -> tuple:
        return self._relations

    @property
    def entities(self) -> List[str]:
        """All entity names, in first-declared order."""
        return list(self._adjacency)

    def __contains__(self, entity: str) -> bool:
        return entity in self._adjacency

    def __len__(self) -> int:
        return len(self._relations)

    def neighbors(self, entity: str) -> List[str]:
        """Entities directly related to ``entity``, in declaration order."""
        return list(self._adjacency.get(entity, []))

    def relation_between(self, a: str, b: str) -> Optional[Relation]:
        """The first declared relation linking ``a`` and ``b``, if any."""
        for relation in self._relations:
            if relation.connects(a, b):
                return relation
        return None

    def referenced_key(self, entity: str, foreign_key: str) -> Optional[str]:
        """Key on ``entity`` that a ``foreign_key`` column elsewhere points at."""
        for relation in self._relations:
            if relation.from_entity == entity and relation.foreign_key == foreign_key:
                return relation.local_key
            if relation.to_entity == entity and relation.local_key == foreign_key:
                return relation.foreign_key
        return None

    def to_config(self) -> List[Dict[str, str]]:
        return [relation.to_dict() for relation in self._relations]
