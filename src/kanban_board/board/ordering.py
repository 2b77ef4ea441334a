"""Position engine for ordered board collections.

Projects and tasks are ordered by a real-valued ``position``.  A move only
ever rewrites the moved item's position: the new value is placed between
the item's new neighbours, so siblings are never renumbered.  Tasks are
ordered inside ``(project_id, done)`` buckets and cannot be dragged across
them.

All functions here are pure; they never mutate their inputs.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from ..constants import POSITION_EPSILON, POSITION_GAP
from .model import Project, Task, now_ms


class Positioned(Protocol):
    id: str
    position: float


P = TypeVar("P", bound=Positioned)


def _by_position(items: Iterable[P]) -> list[P]:
    return sorted(items, key=lambda item: item.position)


# ---------------------------------------------------------------------------
# Position arithmetic
# ---------------------------------------------------------------------------

def next_position(ordered_items: Sequence[Positioned]) -> float:
    """Position for appending after the last of *ordered_items*."""
    if not ordered_items:
        return float(POSITION_GAP)
    return ordered_items[-1].position + POSITION_GAP


def position_between(prev: Optional[float] = None, next_: Optional[float] = None) -> float:
    """Position strictly between *prev* and *next_*.

    A missing neighbour means the item sits at that boundary of the
    collection.  The result may be negative when prepending.
    """
    if prev is None and next_ is None:
        return float(POSITION_GAP)
    if prev is None:
        return next_ - POSITION_GAP
    if next_ is None:
        return prev + POSITION_GAP
    return prev + (next_ - prev) / 2


def next_task_position(tasks: Iterable[Task], project_id: str) -> float:
    scoped = _by_position(t for t in tasks if t.project_id == project_id)
    return next_position(scoped)


# ---------------------------------------------------------------------------
# Reordering
# ---------------------------------------------------------------------------

def reorder_items(items: Sequence[P], active_id: str, over_id: str) -> list[P]:
    """Move *active_id* into the slot currently held by *over_id*.

    Splice semantics: the active item is removed and reinserted at the
    target's former index, shifting the items in between.  Unknown ids
    leave the order unchanged.
    """
    ids = [item.id for item in items]
    if active_id not in ids or over_id not in ids:
        return list(items)
    active_index = ids.index(active_id)
    over_index = ids.index(over_id)
    updated = list(items)
    moved = updated.pop(active_index)
    updated.insert(over_index, moved)
    return updated


def _position_in(ordered: Sequence[P], active_id: str, over_id: str) -> float:
    reordered = reorder_items(ordered, active_id, over_id)
    index = next(i for i, item in enumerate(reordered) if item.id == active_id)
    prev = reordered[index - 1].position if index > 0 else None
    nxt = reordered[index + 1].position if index + 1 < len(reordered) else None
    return position_between(prev, nxt)


def compute_task_position_after_reorder(
    tasks: Sequence[Task],
    active_id: str,
    over_id: str,
) -> Optional[float]:
    """New position for the dragged task, or ``None`` when nothing moves.

    ``None`` covers unknown ids, dropping a task onto itself, and moves
    across projects or across the active/done split.
    """
    if active_id == over_id:
        return None
    active = next((t for t in tasks if t.id == active_id), None)
    over = next((t for t in tasks if t.id == over_id), None)
    if active is None or over is None:
        return None
    if active.bucket != over.bucket:
        return None
    ordered = _by_position(t for t in tasks if t.bucket == active.bucket)
    return _position_in(ordered, active_id, over_id)


def compute_project_position_after_reorder(
    projects: Sequence[Project],
    active_id: str,
    over_id: str,
) -> Optional[float]:
    if active_id == over_id:
        return None
    ids = {p.id for p in projects}
    if active_id not in ids or over_id not in ids:
        return None
    return _position_in(_by_position(projects), active_id, over_id)


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

def complete_task(task: Task, done: bool, now: Optional[int] = None) -> Task:
    """Copy of *task* with ``done`` set and ``completed_at`` kept in step."""
    return replace(
        task,
        done=done,
        completed_at=(now if now is not None else now_ms()) if done else None,
    )


def position_for_status_change(tasks: Sequence[Task], task: Task, done: bool) -> float:
    """Position for *task* once it enters the done (or active) bucket.

    Completed tasks go after every other task of the project so they sink
    to the end; reactivated tasks go before the first active task.
    """
    siblings = _by_position(t for t in tasks if t.project_id == task.project_id and t.id != task.id)
    if not siblings:
        return float(POSITION_GAP)
    if done:
        return siblings[-1].position + POSITION_GAP
    first_active = next((t for t in siblings if not t.done), None)
    if first_active is None:
        return float(POSITION_GAP)
    return position_between(None, first_active.position)


# ---------------------------------------------------------------------------
# Rebalancing
# ---------------------------------------------------------------------------

def needs_rebalance(items: Iterable[Positioned], epsilon: float = POSITION_EPSILON) -> bool:
    """True once two neighbours sit closer than *epsilon*.

    Repeated midpoint insertions halve the gap each time; past this point
    further inserts stop producing distinct positions.
    """
    ordered = _by_position(items)
    return any(b.position - a.position < epsilon for a, b in zip(ordered, ordered[1:]))


def recalc_positions(items: Sequence[P]) -> list[P]:
    """Copies of *items*, in their given order, renumbered to multiples of the gap."""
    return [replace(item, position=float((idx + 1) * POSITION_GAP)) for idx, item in enumerate(items)]
