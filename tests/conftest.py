"""
Shared pytest fixtures for the STR vs LTR study tests.
"""

from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from strltr.config import StudyConfig
from strltr.data.schema import DAILY_COLUMNS


WINDOW_START = date(2016, 1, 1)

# Log-rent effects used to generate exactly-fitting comparables
BASE_LOG_RENT = 6.0
PRODUCT_EFFECT = {'house': 0.3, 'unit': 0.0}
BEDBATH_EFFECT = {(1, 1): 0.0, (2, 1): 0.25, (3, 2): 0.5}
SUBURB_EFFECT = {
    'North': {'Northbridge': 0.0, 'Northwood': 0.1},
    'South': {'Southbank': -0.05, 'Southport': 0.0},
}
MONTH_EFFECT = {m: 0.01 * (m - 6) for m in range(1, 13)}


def _calendar(property_id, statuses, start=WINDOW_START, prices=None, skip=()):
    rows = []
    for i, status in enumerate(statuses):
        if i in skip:
            continue
        if prices is not None:
            price = prices[i]
        else:
            price = 100.0 if status == 'booked' else np.nan
        rows.append({
            'property_id': property_id,
            'date': pd.Timestamp(start + timedelta(days=i)),
            'status': status,
            'price': price,
            'booking_date': pd.NaT,
        })
    return pd.DataFrame(rows, columns=DAILY_COLUMNS)


def _comparables():
    rows = []
    for product_type, product_eff in PRODUCT_EFFECT.items():
        for submarket, suburbs in SUBURB_EFFECT.items():
            for suburb, suburb_eff in suburbs.items():
                for (beds, baths), bb_eff in BEDBATH_EFFECT.items():
                    for month, month_eff in MONTH_EFFECT.items():
                        address_id = f"{product_type}-{suburb}-{beds}-{month:02d}"
                        rows.append({
                            'address_id': address_id,
                            'transaction_id': f"{address_id}-t1",
                            'date': pd.Timestamp(2015, month, 15),
                            'month': month,
                            'rent': float(np.exp(BASE_LOG_RENT + product_eff + bb_eff + suburb_eff + month_eff)),
                            'type': 'Entire home/apt',
                            'product_type': product_type,
                            'bedrooms': float(beds),
                            'bathrooms': float(baths),
                            'suburb': suburb,
                            'submarket': submarket,
                        })
    return pd.DataFrame(rows)


def expected_weekly_rent(product_type, submarket, suburb, beds, baths):
    """Month-averaged weekly rent implied by the generating effects."""
    log_level = (
        BASE_LOG_RENT
        + PRODUCT_EFFECT[product_type]
        + BEDBATH_EFFECT[(beds, baths)]
        + SUBURB_EFFECT[submarket][suburb]
    )
    return float(np.exp(log_level) * np.mean([np.exp(e) for e in MONTH_EFFECT.values()]))


@pytest.fixture
def study_config():
    """Default study configuration with a small comparable threshold."""
    return StudyConfig(window_start=WINDOW_START, min_comparables=20)


@pytest.fixture
def make_calendar():
    """
    Factory for daily ledger rows, one per status on consecutive dates.

    Booked days get price 100 unless prices are given; `skip` lists day
    offsets left unobserved.
    """
    return _calendar


@pytest.fixture
def sample_daily():
    """Daily ledger for a handful of properties, one of them outside the window."""
    p1 = _calendar(
        'p1',
        ['booked', 'booked', 'available', 'blocked', 'blocked',
         'blocked', 'available', 'booked', 'blocked', 'blocked'],
        prices=[100.0, 120.0] + [np.nan] * 8,
    )
    p2 = _calendar('p2', (['blocked'] * 3 + ['booked']) * 30)
    p3 = _calendar('p3', ['available'] * 50 + ['booked'] * 10)
    p4 = _calendar('p4', ['booked'] * 5, start=date(2015, 6, 1))
    return pd.concat([p1, p2, p3, p4], ignore_index=True)


@pytest.fixture
def random_daily():
    """Random ledger for 12 properties with gaps and duplicate dates."""
    rng = np.random.default_rng(42)
    statuses = np.array(['booked', 'blocked', 'available'])
    frames = []
    for i in range(12):
        n_days = int(rng.integers(20, 90))
        status = statuses[rng.integers(0, 3, size=n_days)]
        prices = np.where(status == 'booked', rng.integers(50, 300, size=n_days).astype(float), np.nan)
        skip = set(rng.choice(n_days, size=n_days // 10, replace=False).tolist())
        frames.append(_calendar(f"prop{i:02d}", list(status), prices=list(prices), skip=skip))
    daily = pd.concat(frames, ignore_index=True)
    duplicates = daily.sample(n=15, random_state=1).assign(status='available', price=np.nan)
    return pd.concat([daily, duplicates], ignore_index=True)


@pytest.fixture
def sample_snapshots():
    """LTR listing snapshots covering the reconciliation edge cases."""
    base = {
        'street': 'Main St',
        'suburb': 'Northbridge',
        'postcode': '2063',
        'submarket': 'North',
        'type': 'Entire home/apt',
        'product_type': 'house',
        'street_latitude': -33.80,
        'street_longitude': 151.20,
    }
    rows = [
        # A1: two snapshots of T1 that disagree, then T2 and an unpriced T3
        {**base, 'address_id': 'A1', 'transaction_id': 'T1', 'first_date': '2015-01-10',
         'latitude': np.nan, 'longitude': np.nan, 'area': np.nan, 'bedrooms': np.nan,
         'bathrooms': 1.0, 'parking': 1.0, 'has_balcony': False, 'has_aircon': np.nan,
         'price': 500.0, 'last_date': '2015-02-01', 'last_price': 480.0},
        {**base, 'address_id': 'A1', 'transaction_id': 'T1', 'first_date': '2015-01-10',
         'latitude': -33.81, 'longitude': 151.21, 'area': 120.0, 'bedrooms': 3.0,
         'bathrooms': 1.0, 'parking': np.nan, 'has_balcony': True, 'has_aircon': np.nan,
         'price': np.nan, 'last_date': np.nan, 'last_price': np.nan},
        {**base, 'address_id': 'A1', 'transaction_id': 'T2', 'first_date': '2015-06-01',
         'latitude': -33.81, 'longitude': 151.21, 'area': np.nan, 'bedrooms': 2.0,
         'bathrooms': 2.0, 'parking': np.nan, 'has_balcony': False, 'has_aircon': False,
         'price': 520.0, 'last_date': np.nan, 'last_price': np.nan},
        {**base, 'address_id': 'A1', 'transaction_id': 'T3', 'first_date': '2015-09-01',
         'latitude': -33.81, 'longitude': 151.21, 'area': np.nan, 'bedrooms': np.nan,
         'bathrooms': np.nan, 'parking': np.nan, 'has_balcony': np.nan, 'has_aircon': np.nan,
         'price': np.nan, 'last_date': np.nan, 'last_price': np.nan},
        # A2: no own coordinates anywhere, only the street centroid
        {**base, 'address_id': 'A2', 'transaction_id': 'T4', 'first_date': '2015-03-05',
         'street_latitude': -33.90, 'street_longitude': 151.10,
         'latitude': np.nan, 'longitude': np.nan, 'area': np.nan, 'bedrooms': 1.0,
         'bathrooms': 1.0, 'parking': np.nan, 'has_balcony': np.nan, 'has_aircon': True,
         'price': 350.0, 'last_date': '2015-03-20', 'last_price': 350.0},
        # A3: earliest snapshot lacks a postcode, the later one is complete
        {**base, 'address_id': 'A3', 'transaction_id': 'T5', 'first_date': '2015-02-01',
         'postcode': np.nan, 'latitude': -33.70, 'longitude': 151.30, 'area': np.nan,
         'bedrooms': 2.0, 'bathrooms': 1.0, 'parking': np.nan, 'has_balcony': False,
         'has_aircon': False, 'price': 410.0, 'last_date': np.nan, 'last_price': np.nan},
        {**base, 'address_id': 'A3', 'transaction_id': 'T6', 'first_date': '2015-08-01',
         'street': 'High St', 'postcode': '2064', 'latitude': -33.71, 'longitude': 151.31,
         'area': np.nan, 'bedrooms': 2.0, 'bathrooms': 1.0, 'parking': np.nan,
         'has_balcony': False, 'has_aircon': False, 'price': 430.0,
         'last_date': np.nan, 'last_price': np.nan},
    ]
    return pd.DataFrame(rows)


@pytest.fixture
def comparables():
    """LTR comparables whose log rent is exactly additive in the model covariates."""
    return _comparables()


@pytest.fixture
def ltr_snapshots():
    """One snapshot per generated comparable, in the raw snapshot layout."""
    comps = _comparables()
    return pd.DataFrame({
        'address_id': comps['address_id'],
        'transaction_id': comps['transaction_id'],
        'latitude': -33.8,
        'longitude': 151.2,
        'street_latitude': -33.8,
        'street_longitude': 151.2,
        'street': 'Main St',
        'suburb': comps['suburb'],
        'postcode': '2000',
        'submarket': comps['submarket'],
        'type': comps['type'],
        'product_type': comps['product_type'],
        'area': 90.0,
        'bedrooms': comps['bedrooms'],
        'bathrooms': comps['bathrooms'],
        'parking': 1.0,
        'has_balcony': False,
        'price': comps['rent'],
        'first_date': comps['date'].dt.strftime('%Y-%m-%d'),
        'last_date': (comps['date'] + pd.Timedelta(days=14)).dt.strftime('%Y-%m-%d'),
        'last_price': comps['rent'],
    })


@pytest.fixture
def str_properties():
    """STR listings: two in well-covered segments, one in an uncovered submarket."""
    return pd.DataFrame({
        'property_id': ['S1', 'S2', 'S3', 'S4'],
        'host_id': ['h1', 'h2', 'h3', 'h4'],
        'type': ['Entire home/apt', 'Entire home/apt', 'Private room', 'Entire home/apt'],
        'product_type': ['house', 'unit', 'unit', 'house'],
        'bedrooms': [2.0, 1.0, 1.0, 3.0],
        'bathrooms': [1.0, 1.0, 1.0, 2.0],
        'max_guests': [4.0, 2.0, 2.0, 6.0],
        'min_stay': [2.0, 1.0, 3.0, 2.0],
        'cancellation_policy': ['strict', 'flexible', 'moderate', 'strict'],
        'suburb': ['Northbridge', 'Southport', 'Eastwood', 'Northwood'],
        'submarket': ['North', 'South', 'East', 'North'],
    })


@pytest.fixture
def expected_rent():
    """Function giving the generated month-averaged rent for a segment cell."""
    return expected_weekly_rent
