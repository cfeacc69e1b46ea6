from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from schemas import CategoryRef, RecurringRecord, TransactionRecord

logger = logging.getLogger(__name__)

OTHER_GROUP = "Other"
INCOME_GROUP = "Income"


@dataclass(frozen=True)
class Taxonomy:
    """Read-only category lookup for one recommendation run."""

    by_id: dict[int, CategoryRef] = field(default_factory=dict)
    by_name: dict[str, CategoryRef] = field(default_factory=dict)
    group_ids: dict[str, Optional[int]] = field(default_factory=dict)

    @classmethod
    def from_refs(
        cls, refs: Iterable[CategoryRef], groups: Iterable[tuple[str, Optional[int]]] = ()
    ) -> "Taxonomy":
        by_id: dict[int, CategoryRef] = {}
        by_name: dict[str, CategoryRef] = {}
        group_ids: dict[str, Optional[int]] = dict(groups)
        for ref in refs:
            by_id[ref.category_id] = ref
            by_name[ref.category_name.lower()] = ref
            group_ids.setdefault(ref.group_name, ref.group_id)
        return cls(by_id=by_id, by_name=by_name, group_ids=group_ids)

    def __bool__(self) -> bool:
        return bool(self.by_id)

    def lookup_name(self, name: Optional[str]) -> Optional[CategoryRef]:
        if not name:
            return None
        return self.by_name.get(name.strip().lower())

    @property
    def group_names(self) -> list[str]:
        return list(self.group_ids)


def is_income_group(group_name: str) -> bool:
    return group_name.strip().lower() == INCOME_GROUP.lower()


def classify(
    transaction: TransactionRecord,
    taxonomy: Taxonomy,
    mapping: Mapping[str, str],
) -> Optional[CategoryRef]:
    if transaction.category_id is not None:
        ref = taxonomy.by_id.get(transaction.category_id)
        if ref is not None:
            return ref
    if transaction.provider_category:
        name = mapping.get(transaction.provider_category)
        if name:
            return taxonomy.lookup_name(name)
    return None


def classify_recurring(
    record: RecurringRecord,
    instances: Mapping[str, Optional[CategoryRef]],
    taxonomy: Taxonomy,
    mapping: Mapping[str, str],
) -> Optional[CategoryRef]:
    """Resolve a recurring record's category.

    Precedence: categories of its instance transactions when they all agree,
    then the category stored on the record itself (id first, provider
    category second), then uncategorized.
    """
    resolved = [instances.get(instance_id) for instance_id in record.instance_ids]
    found = [ref for ref in resolved if ref is not None]
    if found and len(found) == len(resolved):
        counts = Counter(ref.category_id for ref in found)
        if len(counts) == 1:
            return found[0]
    if record.category_id is not None and record.category_id in taxonomy.by_id:
        return taxonomy.by_id[record.category_id]
    if record.provider_category:
        name = mapping.get(record.provider_category)
        if name:
            return taxonomy.lookup_name(name)
    return None


@dataclass
class ClassifiedTransaction:
    transaction: TransactionRecord
    category: CategoryRef


def classify_all(
    transactions: Iterable[TransactionRecord],
    taxonomy: Taxonomy,
    mapping: Mapping[str, str],
) -> tuple[list[ClassifiedTransaction], list[TransactionRecord]]:
    classified: list[ClassifiedTransaction] = []
    uncategorized: list[TransactionRecord] = []
    for txn in transactions:
        ref = classify(txn, taxonomy, mapping)
        if ref is None:
            uncategorized.append(txn)
            continue
        classified.append(ClassifiedTransaction(transaction=txn, category=ref))
    if uncategorized:
        logger.warning(
            f"classify: uncategorized={len(uncategorized)} classified={len(classified)}"
        )
    return classified, uncategorized
