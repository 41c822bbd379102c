"""
Snapshot comparison for change detection.

This module provides:
- Material equality between two snapshots (ignoring volatile fields)
- Per-item delta computation in category declaration order
"""

from typing import List, Optional

from pipeline.models import CATEGORIES, CanonicalSnapshot, Delta


def _category_names(*snapshots: Optional[CanonicalSnapshot]) -> List[str]:
    """Declared categories first, then any extra ones in first-seen order."""
    names = list(CATEGORIES)
    for snapshot in snapshots:
        if snapshot is None:
            continue
        for name in snapshot.categories:
            if name not in names:
                names.append(name)
    return names


def materially_equal(prev: CanonicalSnapshot, curr: CanonicalSnapshot) -> bool:
    """
    Compare two snapshots ignoring observed_at and display-only fields.

    Equality is per category on the item to quantity mapping: order does not
    matter, a missing item, an extra item or a different quantity does.
    """
    for category in _category_names(prev, curr):
        if prev.quantities(category) != curr.quantities(category):
            return False
    return True


def diff(prev: Optional[CanonicalSnapshot], curr: CanonicalSnapshot) -> List[Delta]:
    """
    Compute the ordered list of quantity changes from prev to curr.

    Only items present in curr are considered; an item new in curr counts as
    previously 0. Items that disappeared from curr produce no delta.
    """
    deltas: List[Delta] = []

    for category in _category_names(prev, curr):
        previous = prev.quantities(category) if prev is not None else {}
        for item in curr.items(category):
            previous_quantity = previous.get(item.name, 0)
            change = item.quantity - previous_quantity
            if change == 0:
                continue
            deltas.append(Delta(
                category=category,
                item_name=item.name,
                previous_quantity=previous_quantity,
                current_quantity=item.quantity,
                change=change,
            ))

    return deltas
