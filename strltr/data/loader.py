"""
Data loading utilities for the STR vs LTR study.

Reads the three tabular inputs with DuckDB and returns typed DataFrames.
Dates stay as text here; the cleaner repairs and parses them.
"""

import duckdb
import logging
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_FILES = {
    'daily': 'daily.csv',
    'str_properties': 'str_properties.csv',
    'ltr_snapshots': 'ltr_snapshots.csv',
}

# Typed projections applied on top of read_csv_auto(all_varchar=True)
PROJECTIONS = {
    'daily': """
        SELECT
            NULLIF(property_id, 'NULL') AS property_id,
            NULLIF("date", 'NULL') AS "date",
            NULLIF(status, 'NULL') AS status,
            TRY_CAST(NULLIF(price, 'NULL') AS DOUBLE) AS price,
            NULLIF(booking_date, 'NULL') AS booking_date
        FROM raw
    """,
    'str_properties': """
        SELECT * REPLACE (
            TRY_CAST(NULLIF(bedrooms, 'NULL') AS DOUBLE) AS bedrooms,
            TRY_CAST(NULLIF(bathrooms, 'NULL') AS DOUBLE) AS bathrooms,
            TRY_CAST(NULLIF(max_guests, 'NULL') AS DOUBLE) AS max_guests,
            TRY_CAST(NULLIF(min_stay, 'NULL') AS DOUBLE) AS min_stay
        )
        FROM raw
    """,
    'ltr_snapshots': """
        SELECT * REPLACE (
            TRY_CAST(NULLIF(latitude, 'NULL') AS DOUBLE) AS latitude,
            TRY_CAST(NULLIF(longitude, 'NULL') AS DOUBLE) AS longitude,
            TRY_CAST(NULLIF(street_latitude, 'NULL') AS DOUBLE) AS street_latitude,
            TRY_CAST(NULLIF(street_longitude, 'NULL') AS DOUBLE) AS street_longitude,
            TRY_CAST(NULLIF(area, 'NULL') AS DOUBLE) AS area,
            TRY_CAST(NULLIF(bedrooms, 'NULL') AS DOUBLE) AS bedrooms,
            TRY_CAST(NULLIF(bathrooms, 'NULL') AS DOUBLE) AS bathrooms,
            TRY_CAST(NULLIF(parking, 'NULL') AS DOUBLE) AS parking,
            TRY_CAST(NULLIF(price, 'NULL') AS DOUBLE) AS price,
            TRY_CAST(NULLIF(last_price, 'NULL') AS DOUBLE) AS last_price
        )
        FROM raw
    """,
}


def read_table(path: Union[str, Path], table: str) -> pd.DataFrame:
    """
    Read one CSV input into a typed DataFrame.

    Amenity columns (has_*) are cast to BOOLEAN; unparseable values become NULL.

    Args:
        path: CSV file path
        table: One of 'daily', 'str_properties', 'ltr_snapshots'

    Returns:
        DataFrame with the table's typed columns
    """
    if table not in PROJECTIONS:
        raise ValueError(f"Unknown table: {table}. Choose from: {list(PROJECTIONS)}")

    con = duckdb.connect(":memory:")
    try:
        con.execute(f"""
            CREATE TEMP TABLE raw AS
            SELECT * FROM read_csv_auto('{Path(path)}', header=True, all_varchar=True, nullstr='NULL')
        """)
        df = con.execute(PROJECTIONS[table]).fetchdf()
    finally:
        con.close()

    for col in [c for c in df.columns if c.startswith('has_')]:
        df[col] = df[col].map(_parse_flag)

    logger.info(f"Loaded {path} into '{table}' ({len(df):,} rows)")
    return df


def load_inputs(
    data_dir: Union[str, Path],
    files: Optional[Dict[str, str]] = None
) -> Dict[str, pd.DataFrame]:
    """
    Load every input table found in a directory.

    Missing files are skipped with a warning.

    Returns:
        Dict mapping table name to DataFrame
    """
    data_dir = Path(data_dir)
    files = files or DEFAULT_FILES
    tables = {}
    for table, filename in files.items():
        file_path = data_dir / filename
        if file_path.exists():
            tables[table] = read_table(file_path, table)
        else:
            logger.warning(f"Warning: {file_path} not found")
    return tables


def _parse_flag(value) -> Optional[bool]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip().lower()
    if text in ('1', 'true', 't', 'yes', 'y'):
        return True
    if text in ('0', 'false', 'f', 'no', 'n'):
        return False
    return None
