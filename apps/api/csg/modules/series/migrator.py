"""
Dimension migration for a series' stat vectors and axis names.

Pure: inputs are never mutated; the caller commits the returned copies.

- grow   (new > old, no axis): append zeros / "Stat n" placeholders
- shrink (new < old, no axis): truncate trailing entries
- insert (axis given, new == old + 1): splice one zero / one name at axis
- remove (axis given, new == old - 1): splice out one entry at axis
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from csg.core.errors import ValidationError

from .document import MIN_DIMENSIONS, Character, placeholder_stat_name, resize_stat_names, resize_stats

DEFAULT_INSERTED_NAME = "New Stat"


@dataclass(frozen=True)
class Migration:
    characters: List[Character]
    stat_names: Optional[List[str]]
    dimensions: int


def migrate_dimensions(
    characters: Sequence[Character],
    old_dim: int,
    new_dim: int,
    *,
    axis_index: Optional[int] = None,
    stat_names: Optional[Sequence[str]] = None,
    axis_name: Optional[str] = None,
) -> Migration:
    if new_dim < MIN_DIMENSIONS:
        raise ValidationError(
            f"dimensions must be >= {MIN_DIMENSIONS}",
            {"dimensions": new_dim, "min": MIN_DIMENSIONS},
        )

    if axis_index is None:
        return Migration(
            characters=[c.model_copy(update={"stats": resize_stats(c.stats, new_dim)}, deep=True) for c in characters],
            stat_names=resize_stat_names(stat_names, new_dim),
            dimensions=new_dim,
        )

    if new_dim == old_dim + 1:
        idx = min(max(int(axis_index), 0), old_dim)
        names = list(stat_names) if stat_names is not None else [placeholder_stat_name(i) for i in range(old_dim)]
        names = resize_stat_names(names, old_dim) or []
        names.insert(idx, axis_name if axis_name else DEFAULT_INSERTED_NAME)
        out: List[Character] = []
        for c in characters:
            stats = resize_stats(c.stats, old_dim)
            stats.insert(idx, 0)
            out.append(c.model_copy(update={"stats": stats}, deep=True))
        return Migration(characters=out, stat_names=names, dimensions=new_dim)

    if new_dim == old_dim - 1:
        idx = int(axis_index)
        if idx < 0 or idx >= old_dim:
            raise ValidationError("axis index out of range", {"index": idx, "dimensions": old_dim})
        names = None
        if stat_names is not None:
            names = resize_stat_names(stat_names, old_dim) or []
            del names[idx]
        out = []
        for c in characters:
            stats = resize_stats(c.stats, old_dim)
            del stats[idx]
            out.append(c.model_copy(update={"stats": stats}, deep=True))
        return Migration(characters=out, stat_names=names, dimensions=new_dim)

    raise ValidationError(
        "axis migration changes dimensions by exactly one",
        {"old": old_dim, "new": new_dim, "index": axis_index},
    )
