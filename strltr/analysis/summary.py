"""Summary tables over an enriched STR property frame."""

import pandas as pd

from strltr.data.schema import PREFERENCE_FLAGS
from strltr.models.imputation import TIER_UNRESOLVED


def preference_shares(df: pd.DataFrame) -> pd.DataFrame:
    """
    Share of properties preferring STR, per host type.

    Shares use defined flags only: properties with an unresolved imputation
    are counted in n_properties but not in any share.

    Returns:
        DataFrame indexed by host_type with n_properties, and for each flag
        n_<flag> (defined flags) and share_<flag>
    """
    flags = [f for f in PREFERENCE_FLAGS.values() if f in df.columns]
    rows = []
    for host_type, group in df.groupby('host_type', sort=True):
        row = {'host_type': host_type, 'n_properties': len(group)}
        for flag in flags:
            defined = group[flag].dropna()
            row[f'n_{flag}'] = len(defined)
            row[f'share_{flag}'] = float(defined.astype(int).mean()) if len(defined) else float('nan')
        rows.append(row)
    return pd.DataFrame(rows).set_index('host_type') if rows else pd.DataFrame()


def imputation_coverage(df: pd.DataFrame) -> pd.DataFrame:
    """Property count and share per imputation tier, unresolved last."""
    counts = df['imputation_tier'].value_counts()
    order = [t for t in counts.index if t != TIER_UNRESOLVED] + (
        [TIER_UNRESOLVED] if TIER_UNRESOLVED in counts.index else []
    )
    counts = counts.reindex(order)
    return pd.DataFrame({
        'n_properties': counts,
        'share': counts / counts.sum() if counts.sum() else counts,
    })
