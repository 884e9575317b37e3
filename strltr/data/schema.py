"""
Column contracts and typed records shared by every stage.

Stages exchange pandas DataFrames; the constants below name the columns
each frame must carry. Small per-entity results are dataclasses.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


# =============================================================================
# DAILY LEDGER
# =============================================================================

STATUS_BOOKED = 'booked'
STATUS_BLOCKED = 'blocked'
STATUS_AVAILABLE = 'available'
VALID_STATUSES = (STATUS_BOOKED, STATUS_BLOCKED, STATUS_AVAILABLE)

DAILY_COLUMNS = ['property_id', 'date', 'status', 'price', 'booking_date']

SUMMARY_COLUMNS = [
    'property_id',
    'total_days',
    'bookings',
    'block_rate',
    'avail_rate',
    'occ_rate',
    'med_rate',
    'nbr_block',
    'med_block_len',
]


# =============================================================================
# SHORT-TERM PROPERTIES
# =============================================================================

STR_COLUMNS = [
    'property_id',
    'host_id',
    'type',
    'product_type',
    'bedrooms',
    'bathrooms',
    'max_guests',
    'min_stay',
    'cancellation_policy',
    'suburb',
    'submarket',
]

REVENUE_COLUMNS = ['act_revenue', 'lik_revenue', 'pot_occ', 'pot_revenue']

# revenue column -> preference flag it drives
PREFERENCE_FLAGS = {
    'act_revenue': 'act_pref',
    'lik_revenue': 'lik_pref',
    'pot_revenue': 'pot_pref',
}


# =============================================================================
# LONG-TERM SNAPSHOTS
# =============================================================================

LOCATION_FIELDS = ['latitude', 'longitude', 'street', 'suburb', 'postcode']
CENTROID_FIELDS = {'latitude': 'street_latitude', 'longitude': 'street_longitude'}
STRUCTURAL_NUMERIC_FIELDS = ['area', 'bedrooms', 'bathrooms', 'parking']
STRUCTURAL_CATEGORICAL_FIELDS = ['type', 'product_type']
AMENITY_PREFIX = 'has_'

TRANSACTION_FIELDS = ['transaction_id', 'first_date', 'price', 'last_date', 'last_price']


# =============================================================================
# TYPED RECORDS
# =============================================================================

@dataclass(frozen=True)
class PropertySummary:
    """
    Statistical summary of one property's daily observations.

    Attributes:
        property_id: Listing identifier
        total_days: Distinct observed dates in the window
        bookings: Booked days
        block_rate: Blocked days / total_days
        avail_rate: Available days / total_days
        occ_rate: 1 - block_rate - avail_rate
        med_rate: Median nightly price over priced booked days (NaN if none)
        nbr_block: Number of contiguous blocked runs
        med_block_len: Median blocked run length (NaN if no runs)
    """
    property_id: object
    total_days: int
    bookings: int
    block_rate: float
    avail_rate: float
    occ_rate: float
    med_rate: float
    nbr_block: int
    med_block_len: float

    def to_dict(self) -> dict:
        """Convert to dictionary for DataFrame creation."""
        return {col: getattr(self, col) for col in SUMMARY_COLUMNS}


@dataclass(frozen=True)
class TransactionRecord:
    """
    One advertised LTR transaction for an address.

    Attributes:
        transaction_id: Transaction identifier
        date: First advertised date
        price: First advertised weekly rent (None if missing)
        last_date: Last advertised date
        last_price: Last advertised weekly rent
        days_on_market: last_date - date in days (None if either is missing)
    """
    transaction_id: object
    date: Optional[date]
    price: Optional[float]
    last_date: Optional[date] = None
    last_price: Optional[float] = None
    days_on_market: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'transaction_id': self.transaction_id,
            'date': self.date,
            'price': self.price,
            'last_date': self.last_date,
            'last_price': self.last_price,
            'days_on_market': self.days_on_market,
        }


class TransactionHistory:
    """
    Ordered transaction records grouped by address.

    Records for each address are kept in ascending (date, transaction_id)
    order; nothing is collapsed.
    """

    def __init__(self, records: Optional[Dict[object, List[TransactionRecord]]] = None):
        self._records: Dict[object, Tuple[TransactionRecord, ...]] = {}
        for address_id, recs in (records or {}).items():
            self._records[address_id] = tuple(sorted(recs, key=_transaction_sort_key))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, address_id) -> bool:
        return address_id in self._records

    def __getitem__(self, address_id) -> Tuple[TransactionRecord, ...]:
        return self._records[address_id]

    def __iter__(self):
        return iter(self._records)

    def items(self):
        return self._records.items()

    def get(self, address_id, default=()):
        return self._records.get(address_id, default)

    def current(self, address_id) -> Optional[TransactionRecord]:
        """Most recent transaction with a non-null price, or None."""
        for rec in reversed(self._records.get(address_id, ())):
            if rec.price is not None and not _is_nan(rec.price):
                return rec
        return None

    def to_frame(self) -> pd.DataFrame:
        """Flatten to one row per transaction, for export."""
        rows = []
        for address_id, recs in self._records.items():
            for rec in recs:
                row = rec.to_dict()
                row['address_id'] = address_id
                rows.append(row)
        cols = ['address_id', 'transaction_id', 'date', 'price',
                'last_date', 'last_price', 'days_on_market']
        return pd.DataFrame(rows, columns=cols)


def _is_nan(value) -> bool:
    return isinstance(value, float) and np.isnan(value)


def _transaction_sort_key(rec: TransactionRecord):
    # Missing dates sort first so "most recent" is always a dated record
    return (rec.date is not None, rec.date or date.min, str(rec.transaction_id))


@dataclass(frozen=True)
class StageFailure:
    """
    A failure scoped to one row, property or segment.

    Attributes:
        stage: Pipeline stage that reported it (e.g. 'imputation')
        unit: 'row', 'property' or 'segment'
        key: Identifier of the affected unit
        reason: Error class, e.g. 'InsufficientComparables'
        detail: Human-readable explanation
    """
    stage: str
    unit: str
    key: object
    reason: str
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            'stage': self.stage,
            'unit': self.unit,
            'key': self.key,
            'reason': self.reason,
            'detail': self.detail,
        }
