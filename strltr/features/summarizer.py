"""
Daily observation summarizer.

Reduces each property's daily calendar ledger to one PropertySummary:
occupancy shares, median booked price, and blocked-period statistics.

Blocked periods are found by run-length encoding over calendar dates: a run
continues only while consecutive observed rows are one calendar day apart
and both blocked. A gap in the observed dates ends the run even if the
days on either side are blocked.
"""

import logging
from datetime import date
from functools import partial
from typing import Optional

import numpy as np
import pandas as pd

from strltr.config import StudyConfig
from strltr.data.schema import (
    STATUS_AVAILABLE,
    STATUS_BLOCKED,
    STATUS_BOOKED,
    SUMMARY_COLUMNS,
    PropertySummary,
)
from strltr.parallel import merge_frames, parallel_map, partition_frame

logger = logging.getLogger(__name__)

# Tie-breakers for keep-first deduplication, so the kept row never depends
# on the order rows arrived in
DEDUP_ORDER = ['date', 'status', 'price', 'booking_date']


def blocked_runs(days: np.ndarray, is_blocked: np.ndarray) -> np.ndarray:
    """
    Lengths of contiguous blocked runs.

    Args:
        days: Sorted, unique day numbers (e.g. proleptic ordinals)
        is_blocked: Boolean mask aligned with days

    Returns:
        Array of run lengths in date order (empty if nothing is blocked)
    """
    days = np.asarray(days, dtype=np.int64)
    is_blocked = np.asarray(is_blocked, dtype=bool)
    if not is_blocked.any():
        return np.array([], dtype=np.int64)

    prev_blocked = np.r_[False, is_blocked[:-1]]
    prev_day = np.r_[days[0] - 2, days[:-1]]
    continues = prev_blocked & (days - prev_day == 1)
    starts = is_blocked & ~continues

    run_id = np.cumsum(starts)
    return np.bincount(run_id[is_blocked])[1:]


def _canonical_rows(rows: pd.DataFrame, window_start: date, window_end: date) -> pd.DataFrame:
    """Window, deduplicate (keep-first in canonical order) and sort by date."""
    df = rows.copy()
    df['date'] = pd.to_datetime(df['date']).dt.normalize()
    if 'booking_date' not in df.columns:
        df['booking_date'] = pd.NaT

    in_window = (df['date'] >= pd.Timestamp(window_start)) & (df['date'] < pd.Timestamp(window_end))
    df = df[in_window]
    if df.empty:
        return df

    df = df.sort_values(DEDUP_ORDER, kind='mergesort', na_position='last')
    df = df.drop_duplicates(subset=['date'], keep='first')
    return df.reset_index(drop=True)


def summarize_property(
    rows: pd.DataFrame,
    window_start: date,
    window_end: date
) -> Optional[PropertySummary]:
    """
    Summarize one property's daily observations inside [window_start, window_end).

    Args:
        rows: DailyObservation rows for a single property
        window_start: First day of the window
        window_end: Exclusive end of the window

    Returns:
        PropertySummary, or None when the property has no in-window rows
    """
    if rows.empty:
        return None

    property_id = rows['property_id'].iloc[0]
    df = _canonical_rows(rows, window_start, window_end)
    if df.empty:
        return None

    total_days = len(df)
    status = df['status']
    booked = status == STATUS_BOOKED
    blocked = status == STATUS_BLOCKED
    available = status == STATUS_AVAILABLE

    block_rate = blocked.sum() / total_days
    avail_rate = available.sum() / total_days

    priced = df.loc[booked, 'price'].dropna()
    med_rate = float(priced.median()) if len(priced) > 0 else np.nan

    days = df['date'].map(pd.Timestamp.toordinal).to_numpy()
    runs = blocked_runs(days, blocked.to_numpy())

    return PropertySummary(
        property_id=property_id,
        total_days=int(total_days),
        bookings=int(booked.sum()),
        block_rate=float(block_rate),
        avail_rate=float(avail_rate),
        occ_rate=float(1.0 - block_rate - avail_rate),
        med_rate=med_rate,
        nbr_block=int(len(runs)),
        med_block_len=float(np.median(runs)) if len(runs) > 0 else np.nan,
    )


def summarize_partition(
    daily: pd.DataFrame,
    window_start: date,
    window_end: date
) -> pd.DataFrame:
    """Summarize every property in one partition of the ledger."""
    records = []
    for _, rows in daily.groupby('property_id', sort=True):
        summary = summarize_property(rows, window_start, window_end)
        if summary is not None:
            records.append(summary.to_dict())
    return pd.DataFrame(records, columns=SUMMARY_COLUMNS)


def summarize_observations(
    daily: pd.DataFrame,
    config: StudyConfig,
) -> pd.DataFrame:
    """
    Summarize the full daily ledger, one row per property.

    Properties are partitioned by property_id across config.n_jobs workers and
    the partial results concatenated; output is sorted by property_id and is
    the same for any partitioning or input row order.

    Returns:
        DataFrame with SUMMARY_COLUMNS
    """
    n_partitions = config.n_partitions or max(config.n_jobs, 1)
    partitions = partition_frame(daily, 'property_id', n_partitions)

    worker = partial(
        summarize_partition,
        window_start=config.window_start,
        window_end=config.window_end,
    )
    frames = parallel_map(worker, partitions, n_jobs=config.n_jobs)
    summaries = merge_frames(frames, sort_by=['property_id'], columns=SUMMARY_COLUMNS)

    if config.verbose:
        n_input = daily['property_id'].nunique()
        logger.info(
            f"Summarized {len(summaries):,} of {n_input:,} properties "
            f"({n_input - len(summaries):,} without in-window observations)"
        )
    return summaries
