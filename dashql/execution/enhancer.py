"""Decorates result rows with readable fields of the records they reference."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import asyncio
import logging

from ..schema.relations import RelationGraph
from .executor import QueryExecutor

logger = logging.getLogger(__name__)


NAME_FIELDS = ("name", "title", "label")


@dataclass(frozen=True)
class LookupSpec:
    """Entity a key field points at, plus extra fields to copy onto the row."""
    entity: str
    extra_fields: Mapping[str, str] = field(default_factory=dict)  # source -> output key

    @property
    def name_key(self) -> str:
        return f"{self.entity}_name"


DEFAULT_LOOKUPS = {
    "customer_id": LookupSpec("customers", {"region": "customer_region", "zone": "customer_zone"}),
    "product_id": LookupSpec("products"),
    "category_id": LookupSpec("categories"),
}


def display_name(record: Mapping[str, Any], key_field: str) -> Any:
    """First non-empty of name/title/label, else the record identifier."""
    for name in NAME_FIELDS:
        if record.get(name):
            return record[name]
    return record.get(key_field)


class ResultEnhancer:
    """Adds ``<entity>_name`` and whitelisted fields for known key fields.

    Each referenced entity is fetched once per response with a single
    batched lookup. Enhancement never drops or reorders rows; references
    that cannot be resolved simply get no extra fields.
    """

    def __init__(self,
                 executor: QueryExecutor,
                 graph: Optional[RelationGraph] = None,
                 lookups: Optional[Mapping[str, LookupSpec]] = None,
                 default_key: str = "_id"):
        """
        Initialize the enhancer.

        Args:
            executor: Executor used for the batched lookups
            graph: Relation graph used to find the key a field points at
            lookups: Key field to LookupSpec mapping
            default_key: Identifier field when the graph has no answer
        """
        self.executor = executor
        self.graph = graph
        self.lookups = dict(DEFAULT_LOOKUPS if lookups is None else lookups)
        self.default_key = default_key

    def key_for(self, key_field: str, spec: LookupSpec) -> str:
        """Identifier field on ``spec.entity`` referenced by ``key_field``."""
        if self.graph is not None:
            key = self.graph.referenced_key(spec.entity, key_field)
            if key:
                return key
        return self.default_key

    async def enhance(
        self,
        rows: List[Dict[str, Any]],
        context: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Return ``rows`` with referenced records' fields merged in."""
        if not rows:
            return rows

        wanted = []
        for key_field, spec in self.lookups.items():
            ids = _unique(row.get(key_field) for row in rows)
            if ids:
                wanted.append((key_field, spec, ids))

        if not wanted:
            return rows

        results = await asyncio.gather(
            *(self._fetch(key_field, spec, ids, context) for key_field, spec, ids in wanted)
        )

        enhanced = [dict(row) for row in rows]
        for (key_field, spec, _), records in zip(wanted, results):
            if not records:
                continue
            for row in enhanced:
                record = records.get(_hashable(row.get(key_field)))
                if record is None:
                    continue
                row[spec.name_key] = display_name(record, self.key_for(key_field, spec))
                for source, target in spec.extra_fields.items():
                    if source in record:
                        row[target] = record[source]

        return enhanced

    async def _fetch(
        self,
        key_field: str,
        spec: LookupSpec,
        ids: List[Any],
        context: Optional[Dict[str, Any]]
    ) -> Dict[Any, Dict[str, Any]]:
        key = self.key_for(key_field, spec)
        try:
            records = await self.executor.fetch_by_ids(spec.entity, key, ids, context)
        except Exception as e:
            correlation_id = context.get("correlation_id") if context else None
            logger.warning(
                f"[{correlation_id}] Lookup of {len(ids)} {spec.entity} for '{key_field}' failed: {e}",
                extra={"correlation_id": correlation_id, "entity": spec.entity}
            )
            return {}

        return {_hashable(record.get(key)): record for record in records}


def _hashable(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return str(value)
    return value


def _unique(values) -> List[Any]:
    seen = set()
    result = []
    for value in values:
        if value is None:
            continue
        marker = _hashable(value)
        if marker not in seen:
            seen.add(marker)
            result.append(value)
    return result
