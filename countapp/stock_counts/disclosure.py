"""Which categories a field counter sees expanded, and where focus goes next.

Everything here is derived from the walk order, per-category completion and
the counter's manual expand/collapse actions. Nothing is stored; the field
client recomputes the state after every save.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence


@dataclass(frozen=True)
class ManualOverride:
    """An expand/collapse the counter chose by hand.

    ``completed_at_override`` is the set of complete categories when the
    action was taken. The override stops applying once another category
    completes.
    """

    category: str
    expanded: bool
    completed_at_override: frozenset[str] = frozenset()

    def is_active(self, completed: frozenset[str]) -> bool:
        return completed <= self.completed_at_override


@dataclass(frozen=True)
class DisclosureState:
    expanded: tuple[str, ...]
    next_incomplete: str | None

    @property
    def all_collapsed(self) -> bool:
        return not self.expanded

    def is_expanded(self, category: str) -> bool:
        return category in self.expanded


def completed_categories(completion: Mapping[str, bool]) -> frozenset[str]:
    return frozenset(name for name, complete in completion.items() if complete)


def first_incomplete(
    category_order: Sequence[str], completion: Mapping[str, bool]
) -> str | None:
    for category in category_order:
        if not completion.get(category, False):
            return category
    return None


def derive_disclosure(
    category_order: Sequence[str],
    completion: Mapping[str, bool],
    overrides: Iterable[ManualOverride] = (),
) -> DisclosureState:
    """Expanded categories for the current completion state.

    Only the first incomplete category is open by default, so completing a
    category closes it and opens the next incomplete one, or closes
    everything when none remain. Overrides still in effect are applied in
    the order given.
    """

    completed = completed_categories(completion)
    target = first_incomplete(category_order, completion)
    expanded = {target} if target is not None else set()

    for override in overrides:
        if override.category not in category_order:
            continue
        if not override.is_active(completed):
            continue
        if override.expanded:
            expanded.add(override.category)
        else:
            expanded.discard(override.category)

    return DisclosureState(
        expanded=tuple(name for name in category_order if name in expanded),
        next_incomplete=target,
    )


def next_focus(
    layout: Sequence[tuple[str, Sequence[int]]],
    state: DisclosureState,
    current_product_id: int | None = None,
) -> int | None:
    """Next visible product field after ``current_product_id``.

    ``layout`` lists ``(category, product_ids)`` in walk order. When the
    current field is hidden because its category just completed, focus moves
    to the first field of the category that opened in its place.
    """

    visible = [
        product_id
        for category, product_ids in layout
        if state.is_expanded(category)
        for product_id in product_ids
    ]
    if not visible:
        return None
    if current_product_id is None:
        return visible[0]

    walk = [product_id for _, product_ids in layout for product_id in product_ids]
    if current_product_id not in walk:
        return visible[0]

    visible_set = set(visible)
    position = walk.index(current_product_id)
    for product_id in walk[position + 1:]:
        if product_id in visible_set:
            return product_id

    if current_product_id in visible_set:
        # Last visible field; stay put.
        return None

    if state.next_incomplete is not None:
        for category, product_ids in layout:
            if category == state.next_incomplete and product_ids:
                return product_ids[0]
    return visible[0]
