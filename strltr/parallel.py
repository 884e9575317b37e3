"""
Parallel map with a deterministic merge.

Work is split into partitions keyed so that every key lives in exactly one
partition, each partition is processed by a pure function with no shared
state, and results are merged by concatenation followed by a sort on the
key. Merge order therefore never changes the output.
"""

import logging
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


def _mixed_order(value) -> str:
    return f"{value}\x00{type(value).__name__}"


def sort_keys(values) -> list:
    """
    Sorted key values. Keys of mixed types (e.g. int and str ids) that do
    not compare with each other are ordered by their string form.
    """
    values = list(values)
    try:
        return sorted(values)
    except TypeError:
        return sorted(values, key=_mixed_order)


def partition_frame(
    df: pd.DataFrame,
    key: str,
    n_partitions: int
) -> List[pd.DataFrame]:
    """
    Split a frame into at most n_partitions pieces by sorted unique key.

    All rows sharing a key value land in the same partition. Empty
    partitions are dropped.
    """
    if n_partitions < 1:
        raise ValueError(f"n_partitions must be >= 1, got {n_partitions}")
    if df.empty:
        return []

    keys = np.array(sort_keys(df[key].dropna().unique()), dtype=object)
    chunks = np.array_split(keys, min(n_partitions, len(keys)))
    return [df[df[key].isin(chunk)] for chunk in chunks if len(chunk) > 0]


def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    n_jobs: int = 1,
) -> List[R]:
    """
    Apply func to every item, in parallel when n_jobs != 1.

    Results come back in item order. func must be a picklable top-level
    callable for multi-process runs.
    """
    if n_jobs == 1 or len(items) <= 1:
        return [func(item) for item in items]

    logger.debug(f"Dispatching {len(items)} tasks to {n_jobs} workers")
    return Parallel(n_jobs=n_jobs)(delayed(func)(item) for item in items)


def merge_frames(
    frames: Sequence[pd.DataFrame],
    sort_by: Sequence[str],
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Concatenate partition results and sort by key for a stable order.
    """
    frames = [f for f in frames if f is not None and not f.empty]
    if not frames:
        return pd.DataFrame(columns=list(columns) if columns else list(sort_by))

    merged = pd.concat(frames, ignore_index=True)
    try:
        merged = merged.sort_values(list(sort_by), kind='mergesort')
    except TypeError:
        # Mixed-type keys
        merged = merged.sort_values(list(sort_by), kind='mergesort', key=lambda s: s.map(_mixed_order))
    merged = merged.reset_index(drop=True)
    if columns is not None:
        merged = merged[list(columns)]
    return merged
