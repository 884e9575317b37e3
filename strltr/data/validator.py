"""
Row-level validation and repair using a unified Rule-based architecture.

Every input table (daily ledger, STR attributes, LTR snapshots) is loaded
into an in-memory DuckDB connection and cleaned by the same Rule format:
a check_query that counts affected rows and an action_query that fixes or
drops them. Failures are scoped to the row: nothing here rejects a batch.
"""

import duckdb
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd
from pandas.api.types import is_datetime64_any_dtype

from .schema import VALID_STATUSES

logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)

ISO_FORMAT = '%Y-%m-%d'

# Calendar status codes used by daily scrape exports
STATUS_CODES = {
    'r': 'booked',
    'reserved': 'booked',
    'b': 'blocked',
    'unavailable': 'blocked',
    'a': 'available',
}

# table -> (id columns, primary date column, secondary date columns, numeric columns)
TABLE_LAYOUT = {
    'daily': (['property_id'], 'date', ['booking_date'], ['price']),
    'str_properties': (['property_id'], None, [], []),
    'ltr_snapshots': (['address_id', 'transaction_id'], 'first_date', ['last_date'], ['price', 'last_price']),
}

# ============================================================================
# 1. RULE DATACLASS (Unified Format)
# ============================================================================

@dataclass
class Rule:
    """
    Single data quality rule - works for deletions, repairs and fixes.

    All operations follow the same pattern:
    1. Check query: How many rows are affected?
    2. Action query: Fix the issue
    """
    name: str
    table: str
    check_query: str
    action_query: str
    enabled: bool = True

# ============================================================================
# 2. CLEANING CONFIG
# ============================================================================

@dataclass
class CleaningConfig:
    """
    Configuration for the row-level cleaning pass.

    Field names describe the rule they enable.
    """
    # MissingIdentifier
    remove_missing_ids: bool = True

    # UnparseableDate
    repair_dates: bool = True
    remove_unparseable_dates: bool = True
    date_formats: Sequence[str] = field(
        default_factory=lambda: [ISO_FORMAT, '%d/%m/%Y', '%m/%d/%Y', '%Y%m%d', '%d-%b-%Y']
    )

    # Ledger status values
    map_status_codes: bool = True
    remove_unknown_status: bool = True

    # Prices
    null_nonpositive_prices: bool = True

    fix_empty_strings: bool = True

    # Logging
    verbose: bool = False

# ============================================================================
# 3. DATA CLEANER CLASS (Applies Rules)
# ============================================================================

class DataCleaner:
    """
    Applies row-level cleaning rules based on configuration.

    Usage:
        cleaner = DataCleaner(CleaningConfig(verbose=True))
        clean = cleaner.clean(daily=daily_df, ltr_snapshots=snapshots_df)
        daily_clean = clean['daily']
        cleaner.stats  # {'daily: Missing property_id': 3, ...}
    """

    def __init__(self, config: Optional[CleaningConfig] = None):
        self.config = config or CleaningConfig()
        self.stats: Dict[str, int] = {}

    def _parse_expr(self, column: str) -> str:
        """SQL expression parsing a text date with every configured format."""
        tries = [
            f"TRY_STRPTIME(TRIM({_quote(column)}), '{fmt}')"
            for fmt in self.config.date_formats
        ]
        return f"COALESCE({', '.join(tries)})"

    def _build_rules(self, table: str, columns: List[str]) -> List[Rule]:
        """Build list of rules for one table based on config."""
        id_cols, date_col, secondary_dates, numeric_cols = TABLE_LAYOUT[table]
        text_cols = [c for c in columns if c not in numeric_cols]
        rules = []

        # ===== MISSING IDENTIFIERS =====
        if self.config.remove_missing_ids:
            for col in id_cols:
                rules.append(Rule(
                    f"Missing {col}",
                    table,
                    f"""SELECT COUNT(*) FROM {table}
                        WHERE {_quote(col)} IS NULL OR TRIM(CAST({_quote(col)} AS VARCHAR)) = ''""",
                    f"""DELETE FROM {table}
                        WHERE {_quote(col)} IS NULL OR TRIM(CAST({_quote(col)} AS VARCHAR)) = ''"""
                ))

        # ===== EMPTY STRINGS =====
        if self.config.fix_empty_strings:
            for col in text_cols:
                if col in id_cols:
                    continue
                rules.append(Rule(
                    f"Fix Empty {col}",
                    table,
                    f"SELECT COUNT(*) FROM {table} WHERE TRIM(CAST({_quote(col)} AS VARCHAR)) = ''",
                    f"UPDATE {table} SET {_quote(col)} = NULL WHERE TRIM(CAST({_quote(col)} AS VARCHAR)) = ''"
                ))

        # ===== DATES =====
        for col in ([date_col] if date_col else []) + secondary_dates:
            if col not in columns:
                continue
            if self.config.repair_dates:
                parsed = self._parse_expr(col)
                rules.append(Rule(
                    f"Repair {col}",
                    table,
                    f"""SELECT COUNT(*) FROM {table}
                        WHERE {_quote(col)} IS NOT NULL
                          AND TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL
                          AND {parsed} IS NOT NULL""",
                    f"""UPDATE {table} SET {_quote(col)} = STRFTIME({parsed}, '{ISO_FORMAT}')
                        WHERE {_quote(col)} IS NOT NULL
                          AND TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL
                          AND {parsed} IS NOT NULL"""
                ))
            if col == date_col and self.config.remove_unparseable_dates:
                rules.append(Rule(
                    f"Unparseable {col}",
                    table,
                    f"SELECT COUNT(*) FROM {table} WHERE TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL",
                    f"DELETE FROM {table} WHERE TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL"
                ))
            elif col != date_col:
                # Secondary dates never drop the row
                rules.append(Rule(
                    f"Null unparseable {col}",
                    table,
                    f"""SELECT COUNT(*) FROM {table}
                        WHERE {_quote(col)} IS NOT NULL AND TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL""",
                    f"""UPDATE {table} SET {_quote(col)} = NULL
                        WHERE {_quote(col)} IS NOT NULL AND TRY_STRPTIME({_quote(col)}, '{ISO_FORMAT}') IS NULL"""
                ))

        # ===== LEDGER STATUS =====
        if table == 'daily' and 'status' in columns:
            if self.config.map_status_codes:
                cases = " ".join(
                    f"WHEN '{code}' THEN '{status}'" for code, status in STATUS_CODES.items()
                )
                normalized = 'LOWER(TRIM("status"))'
                rules.append(Rule(
                    "Map status codes",
                    table,
                    f"""SELECT COUNT(*) FROM {table}
                        WHERE status IS NOT NULL
                          AND status <> COALESCE(CASE {normalized} {cases} END, {normalized})""",
                    f"""UPDATE {table}
                        SET status = COALESCE(CASE {normalized} {cases} END, {normalized})
                        WHERE status IS NOT NULL
                          AND status <> COALESCE(CASE {normalized} {cases} END, {normalized})"""
                ))
            if self.config.remove_unknown_status:
                valid = ", ".join(f"'{s}'" for s in VALID_STATUSES)
                rules.append(Rule(
                    "Unknown status",
                    table,
                    f"SELECT COUNT(*) FROM {table} WHERE status IS NULL OR status NOT IN ({valid})",
                    f"DELETE FROM {table} WHERE status IS NULL OR status NOT IN ({valid})"
                ))

        # ===== PRICES =====
        if self.config.null_nonpositive_prices:
            for col in numeric_cols:
                if col not in columns:
                    continue
                rules.append(Rule(
                    f"Non-positive {col}",
                    table,
                    f"SELECT COUNT(*) FROM {table} WHERE {_quote(col)} <= 0",
                    f"UPDATE {table} SET {_quote(col)} = NULL WHERE {_quote(col)} <= 0"
                ))

        return rules

    def _load(self, con: duckdb.DuckDBPyConnection, table: str, df: pd.DataFrame) -> List[str]:
        """Register a frame as a DuckDB table with text dates and numeric prices."""
        _, date_col, secondary_dates, numeric_cols = TABLE_LAYOUT[table]
        frame = df.copy()
        for col in ([date_col] if date_col else []) + secondary_dates:
            if col in frame.columns:
                frame[col] = _as_text(frame[col])
            elif col != date_col:
                frame[col] = pd.Series([None] * len(frame), index=frame.index, dtype=object)
        for col in numeric_cols:
            if col in frame.columns:
                frame[col] = pd.to_numeric(frame[col], errors='coerce').astype(float)

        replacements = [
            f"CAST({_quote(col)} AS VARCHAR) AS {_quote(col)}"
            for col in ([date_col] if date_col else []) + secondary_dates
            if col in frame.columns
        ]
        replace_clause = f" REPLACE ({', '.join(replacements)})" if replacements else ""

        con.register(f"{table}_in", frame)
        con.execute(f"CREATE TABLE {table} AS SELECT *{replace_clause} FROM {table}_in")
        con.unregister(f"{table}_in")
        return list(frame.columns)

    def _fetch(self, con: duckdb.DuckDBPyConnection, table: str) -> pd.DataFrame:
        """Read a cleaned table back with parsed dates."""
        _, date_col, secondary_dates, _ = TABLE_LAYOUT[table]
        df = con.execute(f"SELECT * FROM {table}").fetchdf()
        for col in ([date_col] if date_col else []) + secondary_dates:
            if col in df.columns:
                df[col] = pd.to_datetime(df[col], format=ISO_FORMAT, errors='coerce')
        return df

    def clean_table(
        self,
        con: duckdb.DuckDBPyConnection,
        table: str,
        df: pd.DataFrame
    ) -> pd.DataFrame:
        """Load one table, apply its enabled rules and return the cleaned frame."""
        if table not in TABLE_LAYOUT:
            raise ValueError(f"Unknown table: {table}. Choose from: {list(TABLE_LAYOUT)}")

        columns = self._load(con, table, df)
        rules = self._build_rules(table, columns)

        if self.config.verbose:
            logger.info(f"Applying {len(rules)} cleaning rules to '{table}' ({len(df):,} rows)...")

        for rule in rules:
            if not rule.enabled:
                continue

            affected = con.execute(rule.check_query).fetchone()[0]

            if affected > 0:
                con.execute(rule.action_query)
                self.stats[f"{table}: {rule.name}"] = affected

                if self.config.verbose:
                    logger.info(f"  ✓ {rule.name}: {affected:,} rows")
            elif self.config.verbose:
                logger.info(f"  - {rule.name}: 0 rows")

        return self._fetch(con, table)

    def clean(
        self,
        daily: Optional[pd.DataFrame] = None,
        str_properties: Optional[pd.DataFrame] = None,
        ltr_snapshots: Optional[pd.DataFrame] = None,
    ) -> Dict[str, pd.DataFrame]:
        """
        Clean whichever input tables are given.

        Returns:
            Dict mapping table name ('daily', 'str_properties', 'ltr_snapshots')
            to its cleaned DataFrame
        """
        con = duckdb.connect(":memory:")
        try:
            inputs = {
                'daily': daily,
                'str_properties': str_properties,
                'ltr_snapshots': ltr_snapshots,
            }
            cleaned = {}
            for table, df in inputs.items():
                if df is not None:
                    cleaned[table] = self.clean_table(con, table, df)
        finally:
            con.close()

        if self.config.verbose:
            for table, df in cleaned.items():
                logger.info(f"Final '{table}': {len(df):,} rows")

        return cleaned


def _as_text(series: pd.Series) -> pd.Series:
    """Render a date-like column as text, keeping missing values as None."""
    if is_datetime64_any_dtype(series):
        out = series.dt.strftime(ISO_FORMAT)
    else:
        out = series.map(lambda v: None if pd.isna(v) else _date_text(v))
    return out.astype(object).where(out.notna(), None)


def _date_text(value) -> str:
    # date/datetime objects render as ISO dates; everything else as given
    if hasattr(value, 'strftime'):
        return value.strftime(ISO_FORMAT)
    return str(value)


def _quote(column: str) -> str:
    # 'date' is a type keyword in DuckDB
    return f'"{column}"'
