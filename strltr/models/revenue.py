"""
Revenue comparison between short-term and long-term leasing.

Three STR revenue figures are derived from a property's summary:
- Observed (act): what the listing actually earned in the tracked days
- Extrapolated (lik): observed bookings scaled to a full year
- Potential (pot): extrapolated occupancy applied to every non-blocked day

Each is net of guest costs (cpppd per guest per booked day, with
bedrooms x persons_per_bedroom guests). Revenue may be negative when costs
exceed income; that is a valid result. A missing median rate makes every
figure missing.

Preference flags compare each figure with the imputed long-term revenue:
pref = 1 iff STR revenue is strictly greater. Properties without a resolved
imputation, or with missing revenue, get no flag (<NA>), never 0.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from strltr.config import StudyConfig
from strltr.data.schema import PREFERENCE_FLAGS
from strltr.models.imputation import TIER_UNRESOLVED

logger = logging.getLogger(__name__)


@dataclass
class RevenueFigures:
    """Revenue figures for one property."""
    avg_guests: float
    act_revenue: float
    lik_revenue: float
    pot_occ: float
    pot_revenue: float

    def to_dict(self) -> dict:
        return {
            'avg_guests': self.avg_guests,
            'act_revenue': self.act_revenue,
            'lik_revenue': self.lik_revenue,
            'pot_occ': self.pot_occ,
            'pot_revenue': self.pot_revenue,
        }


def revenue_arrays(
    bookings,
    med_rate,
    bedrooms,
    total_days,
    block_rate,
    config: StudyConfig
) -> dict:
    """
    Revenue arithmetic on scalars or aligned arrays.

    Formulas (Y = year_length, g = persons_per_bedroom):
        avg_guests  = bedrooms * g
        act_revenue = bookings*rate - bookings*avg_guests*cpppd
        extr        = Y / total_days
        lik_revenue = bookings*extr*rate - bookings*avg_guests*cpppd*extr
        pot_occ     = bookings*extr / (Y - Y*block_rate)
        pot_revenue = pot_occ*Y*rate - pot_occ*Y*avg_guests*cpppd

    rate is med_rate converted with fx_rate. pot_occ is NaN when every day
    is blocked.
    """
    Y = float(config.year_length)
    cpppd = config.cpppd

    bookings = np.asarray(bookings, dtype=float)
    rate = np.asarray(med_rate, dtype=float) * config.fx_rate
    avg_guests = np.asarray(bedrooms, dtype=float) * config.persons_per_bedroom
    total_days = np.asarray(total_days, dtype=float)
    block_rate = np.asarray(block_rate, dtype=float)

    with np.errstate(divide='ignore', invalid='ignore'):
        act_revenue = bookings * rate - bookings * avg_guests * cpppd

        extr_factor = np.where(total_days > 0, Y / total_days, np.nan)
        lik_revenue = (
            bookings * extr_factor * rate
            - bookings * avg_guests * cpppd * extr_factor
        )

        open_days = Y - Y * block_rate
        pot_occ = np.where(open_days > 0, (bookings * extr_factor) / open_days, np.nan)
        pot_revenue = pot_occ * Y * rate - pot_occ * Y * avg_guests * cpppd

    # A missing rate leaves revenue missing, even when bookings are zero
    missing_rate = np.isnan(rate)
    act_revenue = np.where(missing_rate, np.nan, act_revenue)
    lik_revenue = np.where(missing_rate, np.nan, lik_revenue)
    pot_revenue = np.where(missing_rate, np.nan, pot_revenue)

    return {
        'avg_guests': avg_guests,
        'act_revenue': act_revenue,
        'lik_revenue': lik_revenue,
        'pot_occ': pot_occ,
        'pot_revenue': pot_revenue,
    }


def calculate_revenue(
    bookings: int,
    med_rate: float,
    bedrooms: float,
    total_days: int,
    block_rate: float,
    config: StudyConfig
) -> RevenueFigures:
    """
    Revenue figures for a single property.

    Example (cpppd=4.5, g=1.5):
        bookings=10, med_rate=100, bedrooms=2 -> act_revenue = 1000 - 135 = 865
    """
    figures = revenue_arrays(bookings, med_rate, bedrooms, total_days, block_rate, config)
    return RevenueFigures(**{k: float(v) for k, v in figures.items()})


def compute_revenue(df: pd.DataFrame, config: StudyConfig) -> pd.DataFrame:
    """
    Add avg_guests and REVENUE_COLUMNS to a frame of properties with summaries.

    Args:
        df: Rows with bookings, med_rate, bedrooms, total_days, block_rate
        config: Study configuration (cpppd, persons_per_bedroom, year_length, fx_rate)

    Returns:
        Copy of df with revenue columns
    """
    required = ['bookings', 'med_rate', 'bedrooms', 'total_days', 'block_rate']
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns for revenue: {missing}")

    out = df.copy()
    figures = revenue_arrays(
        out['bookings'].to_numpy(dtype=float),
        out['med_rate'].to_numpy(dtype=float),
        pd.to_numeric(out['bedrooms'], errors='coerce').to_numpy(dtype=float),
        out['total_days'].to_numpy(dtype=float),
        out['block_rate'].to_numpy(dtype=float),
        config,
    )
    for col, values in figures.items():
        out[col] = values

    if config.verbose:
        n_missing = int(out['act_revenue'].isna().sum())
        logger.info(
            f"Revenue computed for {len(out):,} properties "
            f"({n_missing:,} missing for lack of a median rate or bedrooms)"
        )
    return out


def assign_preferences(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add act_pref, lik_pref and pot_pref (nullable Int64).

    pref = 1 when STR revenue > ltr_imp_revenue, 0 when it is not, and <NA>
    when the imputation is unresolved or either revenue is missing.
    """
    out = df.copy()
    ltr = out['ltr_imp_revenue'].astype(float)
    resolved = ltr.notna()
    if 'imputation_tier' in out.columns:
        resolved &= out['imputation_tier'] != TIER_UNRESOLVED

    for revenue_col, flag_col in PREFERENCE_FLAGS.items():
        revenue = out[revenue_col].astype(float)
        defined = resolved & revenue.notna()
        flag = pd.Series(pd.NA, index=out.index, dtype='Int64')
        flag[defined] = (revenue[defined] > ltr[defined]).astype('int64')
        out[flag_col] = flag
    return out
