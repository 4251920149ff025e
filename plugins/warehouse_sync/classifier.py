"""
Table Classification Module

Assigns each configured table to exactly one replication strategy. The
predicates are checked in precedence order:

1. stored_proc:       table_type sproc
2. incremental_fact:  fact with update_date_column and primary_key
3. full_fact:         fact with neither update_date_column nor primary_key
4. dimension:         dim (always truncate + reload)
5. historical:        historical with update_date_column (reserved, not dispatched)

Tables matching none of these are left out of the run with a warning.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence
import logging

from warehouse_sync.config import TableKind, TableSpec

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    STORED_PROC = "stored_proc"
    INCREMENTAL_FACT = "incremental_fact"
    FULL_FACT = "full_fact"
    DIMENSION = "dimension"
    HISTORICAL = "historical"


def strategy_for(spec: TableSpec) -> Optional[Strategy]:
    """Return the strategy for a table spec, or None if it fits no strategy."""
    if spec.kind == TableKind.STORED_PROC:
        return Strategy.STORED_PROC

    if spec.kind == TableKind.FACT:
        if spec.update_date_column and spec.primary_key:
            return Strategy.INCREMENTAL_FACT
        if not spec.update_date_column and not spec.primary_key:
            return Strategy.FULL_FACT
        return None

    if spec.kind == TableKind.DIMENSION:
        return Strategy.DIMENSION

    if spec.kind == TableKind.HISTORICAL and spec.update_date_column:
        return Strategy.HISTORICAL

    return None


def _unclassified_reason(spec: TableSpec) -> str:
    if spec.kind == TableKind.FACT:
        return (
            "fact tables need both update_date_column and primary_key "
            "(incremental) or neither (full load)"
        )
    if spec.kind == TableKind.HISTORICAL:
        return "historical tables need an update_date_column"
    return "no matching strategy"


@dataclass
class ClassifiedTables:
    """Strategy buckets, each in declared configuration order."""

    stored_procs: List[TableSpec] = field(default_factory=list)
    incremental_facts: List[TableSpec] = field(default_factory=list)
    full_facts: List[TableSpec] = field(default_factory=list)
    dimensions: List[TableSpec] = field(default_factory=list)
    historical: List[TableSpec] = field(default_factory=list)
    unclassified: List[TableSpec] = field(default_factory=list)

    def bucket(self, strategy: Strategy) -> List[TableSpec]:
        return {
            Strategy.STORED_PROC: self.stored_procs,
            Strategy.INCREMENTAL_FACT: self.incremental_facts,
            Strategy.FULL_FACT: self.full_facts,
            Strategy.DIMENSION: self.dimensions,
            Strategy.HISTORICAL: self.historical,
        }[strategy]

    def names(self) -> Dict[str, List[str]]:
        """Table names per bucket, for logging and XCom."""
        result = {s.value: [t.name for t in self.bucket(s)] for s in Strategy}
        result["unclassified"] = [t.name for t in self.unclassified]
        return result


def classify_tables(specs: Sequence[TableSpec]) -> ClassifiedTables:
    """
    Partition table specs into disjoint strategy buckets.

    Misconfigured specs are not fatal: they are collected in `unclassified`
    and reported at warning level.
    """
    classified = ClassifiedTables()

    for spec in specs:
        strategy = strategy_for(spec)
        if strategy is None:
            logger.warning(
                f"Skipping {spec.name} ({spec.kind.value}): {_unclassified_reason(spec)}"
            )
            classified.unclassified.append(spec)
            continue
        classified.bucket(strategy).append(spec)

    logger.info(
        f"Classified {len(specs)} tables: "
        f"{len(classified.stored_procs)} stored procedures, "
        f"{len(classified.incremental_facts)} incremental facts, "
        f"{len(classified.full_facts)} full facts, "
        f"{len(classified.dimensions)} dimensions, "
        f"{len(classified.historical)} historical, "
        f"{len(classified.unclassified)} skipped"
    )
    return classified
