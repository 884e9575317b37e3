"""
Property reconciliation across LTR listing snapshots.

Each address is scraped many times: once per advertised transaction and
often again while the ad is live. Snapshots disagree and have gaps. This
module merges every snapshot of an address into one canonical record and
keeps the full transaction history next to it.

Reconciliation rules (all independent of snapshot arrival order):
- Location: first snapshot (canonical order) with its own coordinates and
  every other location field present. Only when no snapshot has its own
  coordinates does the street centroid stand in for them.
- Structural numerics (area, bedrooms, bathrooms, parking): max over
  non-missing values; all missing stays missing.
- Amenity flags (has_*): logical OR, missing counts as False.
- Categorical structure (type, product_type): first non-missing value.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from strltr.data.schema import (
    AMENITY_PREFIX,
    CENTROID_FIELDS,
    LOCATION_FIELDS,
    STRUCTURAL_CATEGORICAL_FIELDS,
    STRUCTURAL_NUMERIC_FIELDS,
    TransactionHistory,
    TransactionRecord,
)
from strltr.parallel import merge_frames, parallel_map, partition_frame

logger = logging.getLogger(__name__)

# Attributes carried from canonical records onto comparable rent rows
COMPARABLE_ATTRIBUTES = ['type', 'product_type', 'bedrooms', 'bathrooms', 'suburb', 'submarket']


@dataclass
class ReconciliationResult:
    """
    Canonical LTR properties plus their preserved transaction history.

    Attributes:
        canonical: One row per address_id
        history: Ordered TransactionRecords per address_id
    """
    canonical: pd.DataFrame
    history: TransactionHistory

    def current_transaction(self, address_id) -> Optional[TransactionRecord]:
        """Most recent transaction with a non-null price for one address."""
        return self.history.current(address_id)

    def current_transactions(self) -> pd.DataFrame:
        """Most recent priced transaction for every address that has one."""
        rows = []
        for address_id in self.history:
            rec = self.history.current(address_id)
            if rec is not None:
                row = rec.to_dict()
                row['address_id'] = address_id
                rows.append(row)
        cols = ['address_id', 'transaction_id', 'date', 'price',
                'last_date', 'last_price', 'days_on_market']
        return pd.DataFrame(rows, columns=cols)


def amenity_columns(df: pd.DataFrame) -> List[str]:
    return sorted(c for c in df.columns if c.startswith(AMENITY_PREFIX))


def _canonical_order(snapshots: pd.DataFrame) -> pd.DataFrame:
    """Sort snapshots by first advertised date, transaction id, then content."""
    df = snapshots.copy()
    df['_date'] = pd.to_datetime(df['first_date']) if 'first_date' in df.columns else pd.NaT
    df['_tid'] = df['transaction_id'].map(str)
    df['_content'] = df.drop(columns=['_date', '_tid']).apply(
        lambda row: '|'.join(map(repr, row.tolist())), axis=1
    )
    df = df.sort_values(['_date', '_tid', '_content'], kind='mergesort', na_position='last')
    return df.drop(columns=['_date', '_tid', '_content']).reset_index(drop=True)


def _first_valid(series: pd.Series):
    valid = series.dropna()
    return valid.iloc[0] if len(valid) > 0 else None


def _scalar(value):
    """Convert numpy scalars and NaN to plain Python values (NaN -> None)."""
    if value is None:
        return None
    if isinstance(value, (float, np.floating)) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


def reconcile_location(df: pd.DataFrame) -> Dict[str, object]:
    """
    Pick location fields for one address.

    Args:
        df: Snapshots for one address, in canonical order

    Returns:
        Dict of location fields, submarket and location_fallback
    """
    missing = pd.Series(np.nan, index=df.index)

    def column(name):
        return df[name] if name in df.columns else missing

    own_coords = column('latitude').notna() & column('longitude').notna()
    effective = pd.DataFrame(
        {field: column(field) for field in LOCATION_FIELDS}, index=df.index
    )
    # Street centroid only stands in when no snapshot has its own coordinates
    if own_coords.any():
        used_centroid = pd.Series(False, index=df.index)
    else:
        for field, centroid in CENTROID_FIELDS.items():
            effective[field] = column(centroid)
        used_centroid = effective[list(CENTROID_FIELDS)].notna().all(axis=1)
    complete = effective.notna().all(axis=1)

    result: Dict[str, object] = {}
    if complete.any():
        idx = complete.idxmax()
        for field in LOCATION_FIELDS:
            result[field] = _scalar(effective.at[idx, field])
        result['location_fallback'] = bool(used_centroid.at[idx])
        chosen_submarket = df.at[idx, 'submarket'] if 'submarket' in df.columns else None
    else:
        # No complete snapshot: each field takes its first non-missing value
        for field in LOCATION_FIELDS:
            result[field] = _scalar(_first_valid(effective[field]))
        lat_idx = effective['latitude'].first_valid_index()
        result['location_fallback'] = bool(lat_idx is not None and used_centroid.at[lat_idx])
        chosen_submarket = None

    if 'submarket' in df.columns:
        if chosen_submarket is None or pd.isna(chosen_submarket):
            chosen_submarket = _first_valid(df['submarket'])
        result['submarket'] = _scalar(chosen_submarket)
    else:
        result['submarket'] = None
    return result


def reconcile_structure(df: pd.DataFrame, amenities: Sequence[str]) -> Dict[str, object]:
    """Max-rule numerics, OR-rule amenity flags and first-valid categoricals."""
    result: Dict[str, object] = {}
    for field in STRUCTURAL_NUMERIC_FIELDS:
        if field in df.columns:
            values = pd.to_numeric(df[field], errors='coerce')
            result[field] = float(values.max()) if values.notna().any() else np.nan
        else:
            result[field] = np.nan

    for field in STRUCTURAL_CATEGORICAL_FIELDS:
        result[field] = _scalar(_first_valid(df[field])) if field in df.columns else None

    for flag in amenities:
        values = df[flag] if flag in df.columns else pd.Series(dtype=object)
        result[flag] = bool(values.map(lambda v: bool(v) if pd.notna(v) else False).any())
    return result


def _as_date(value):
    if value is None or pd.isna(value):
        return None
    return pd.Timestamp(value).date()


def build_transactions(df: pd.DataFrame) -> List[TransactionRecord]:
    """
    Transaction records for one address.

    Snapshots of the same transaction_id are merged field by field, taking
    the first non-missing value in canonical order.
    """
    records = []
    for transaction_id, group in df.groupby('transaction_id', sort=False):
        first_date = _as_date(_first_valid(group['first_date'])) if 'first_date' in group else None
        last_date = _as_date(_first_valid(group['last_date'])) if 'last_date' in group else None
        price = _scalar(_first_valid(group['price'])) if 'price' in group else None
        last_price = _scalar(_first_valid(group['last_price'])) if 'last_price' in group else None

        days_on_market = None
        if first_date is not None and last_date is not None:
            days_on_market = (last_date - first_date).days

        records.append(TransactionRecord(
            transaction_id=_scalar(transaction_id),
            date=first_date,
            price=float(price) if price is not None else None,
            last_date=last_date,
            last_price=float(last_price) if last_price is not None else None,
            days_on_market=days_on_market,
        ))
    return records


def reconcile_address(
    snapshots: pd.DataFrame,
    amenities: Sequence[str]
) -> Tuple[Dict[str, object], List[TransactionRecord]]:
    """
    Reconcile all snapshots of one address.

    Returns:
        (canonical record dict, transaction records)
    """
    df = _canonical_order(snapshots)
    address_id = df['address_id'].iloc[0]

    record: Dict[str, object] = {'address_id': _scalar(address_id)}
    record.update(reconcile_location(df))
    record.update(reconcile_structure(df, amenities))
    record['n_snapshots'] = len(df)

    transactions = build_transactions(df)
    record['n_transactions'] = len(transactions)
    return record, transactions


def _reconcile_partition(
    snapshots: pd.DataFrame,
    amenities: Sequence[str]
) -> Tuple[pd.DataFrame, Dict[object, List[TransactionRecord]]]:
    records = []
    history: Dict[object, List[TransactionRecord]] = {}
    for _, group in snapshots.groupby('address_id', sort=True):
        record, transactions = reconcile_address(group, amenities)
        records.append(record)
        history[record['address_id']] = transactions
    return pd.DataFrame(records), history


def reconcile_snapshots(
    snapshots: pd.DataFrame,
    amenities: Optional[Sequence[str]] = None,
    n_jobs: int = 1,
) -> ReconciliationResult:
    """
    Reconcile LTR snapshots into one canonical property per address.

    Args:
        snapshots: Snapshot rows with address_id and transaction_id
        amenities: Boolean amenity columns to OR (default: every has_* column)
        n_jobs: Worker count; addresses are partitioned by address_id

    Returns:
        ReconciliationResult with canonical frame and transaction history
    """
    amenities = list(amenities) if amenities is not None else amenity_columns(snapshots)
    canonical_cols = (
        ['address_id'] + LOCATION_FIELDS + ['submarket', 'location_fallback']
        + STRUCTURAL_NUMERIC_FIELDS + STRUCTURAL_CATEGORICAL_FIELDS
        + list(amenities) + ['n_snapshots', 'n_transactions']
    )

    partitions = partition_frame(snapshots, 'address_id', max(n_jobs, 1))
    worker = partial(_reconcile_partition, amenities=amenities)
    results = parallel_map(worker, partitions, n_jobs=n_jobs)

    canonical = merge_frames([frame for frame, _ in results], sort_by=['address_id'], columns=canonical_cols)
    history: Dict[object, List[TransactionRecord]] = {}
    for _, part_history in results:
        history.update(part_history)

    logger.info(
        f"Reconciled {len(snapshots):,} snapshots into {len(canonical):,} properties "
        f"({int(canonical['location_fallback'].sum()) if len(canonical) else 0:,} with centroid location)"
    )
    return ReconciliationResult(canonical=canonical, history=TransactionHistory(history))


def build_comparables(result: ReconciliationResult) -> pd.DataFrame:
    """
    Expand history into LTR comparables: one row per priced, dated transaction.

    Each row carries the weekly rent, its advertised month and the
    canonical attributes of the address.

    Returns:
        DataFrame with address_id, transaction_id, date, month, rent and
        COMPARABLE_ATTRIBUTES
    """
    attrs = result.canonical.set_index('address_id')
    rows = []
    for address_id, records in result.history.items():
        if address_id not in attrs.index:
            continue
        canonical = attrs.loc[address_id]
        for rec in records:
            if rec.price is None or rec.date is None or not rec.price > 0:
                continue
            row = {
                'address_id': address_id,
                'transaction_id': rec.transaction_id,
                'date': pd.Timestamp(rec.date),
                'month': rec.date.month,
                'rent': rec.price,
            }
            for col in COMPARABLE_ATTRIBUTES:
                row[col] = canonical.get(col)
            rows.append(row)

    cols = ['address_id', 'transaction_id', 'date', 'month', 'rent'] + COMPARABLE_ATTRIBUTES
    comparables = pd.DataFrame(rows, columns=cols)
    if not comparables.empty:
        comparables = comparables.sort_values(
            ['address_id', 'date', 'transaction_id'], kind='mergesort'
        ).reset_index(drop=True)
    return comparables
