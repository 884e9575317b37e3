"""
Configuration for the STR vs LTR revenue study.

One StudyConfig is built at startup and passed explicitly through every
stage. Nothing in the core reads global paths or options.
"""

import json
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from pathlib import Path
from typing import List, Tuple, Union


# =============================================================================
# DEFAULTS (reference study values)
# =============================================================================

# Analysis window length in days (one leap year of AirDNA-style daily data)
DEFAULT_WINDOW_DAYS = 366

# Year length used to annualize revenue
DEFAULT_YEAR_LENGTH = 365

# Cleaning cost per person per day, in LTR currency
DEFAULT_CPPPD = 4.5

# Guests assumed per bedroom
DEFAULT_PERSONS_PER_BEDROOM = 1.5

# Minimum comparables required to fit a segment regression
DEFAULT_MIN_COMPARABLES = 30

# Segment tiers, finest first. Each tier is a tuple of key columns.
DEFAULT_SEGMENT_TIERS = (
    ('exact', ('product_type', 'submarket')),
    ('fallback', ('submarket',)),
)

# Text date formats tried, in order, when repairing unparseable dates
DEFAULT_DATE_FORMATS = ('%Y-%m-%d', '%d/%m/%Y', '%m/%d/%Y', '%Y%m%d', '%d-%b-%Y')


@dataclass
class StudyConfig:
    """
    Configuration for one batch run of the study.

    Attributes:
        window_start: First day of the analysis window
        window_days: Window length N; the window is [window_start, window_start + N)
        year_length: Days per year used to annualize revenue (Y)
        cpppd: Cost per person per day (LTR currency)
        persons_per_bedroom: Guests per bedroom factor (g)
        fx_rate: Multiplier converting STR prices to LTR currency
        min_comparables: Minimum comparables for a segment regression
        segment_tiers: Ordered (tier_name, key_columns) pairs, finest first
        multi_platform_blocks_per_year: Blocked periods per year above which a
            host is a MultiPlatformUser
        profit_seeker_max_block_rate: block_rate at or below which a host is
            a ProfitSeeker
        opportunistic_min_block_rate: block_rate at or above which a host is
            an OpportunisticSharer
        min_logit_rows: Minimum labeled rows to attempt a preference model
        logit_max_iter: Solver iteration cap for preference models
        logit_C: Inverse L2 strength for preference models
        n_jobs: Worker count for parallel stages (1 = in-process)
        n_partitions: Property partitions for the summarizer (None = n_jobs)
        date_formats: Text formats tried when repairing dates
        verbose: Log stage statistics
    """
    window_start: date = date(2016, 1, 1)
    window_days: int = DEFAULT_WINDOW_DAYS
    year_length: int = DEFAULT_YEAR_LENGTH
    cpppd: float = DEFAULT_CPPPD
    persons_per_bedroom: float = DEFAULT_PERSONS_PER_BEDROOM
    fx_rate: float = 1.0
    min_comparables: int = DEFAULT_MIN_COMPARABLES
    segment_tiers: Tuple[Tuple[str, Tuple[str, ...]], ...] = DEFAULT_SEGMENT_TIERS

    # Host segmentation thresholds
    multi_platform_blocks_per_year: float = 12.0
    profit_seeker_max_block_rate: float = 0.25
    opportunistic_min_block_rate: float = 0.75

    # Preference models
    min_logit_rows: int = 10
    logit_max_iter: int = 1000
    logit_C: float = 1e6  # inverse regularization; large = effectively unpenalized

    # Execution
    n_jobs: int = 1
    n_partitions: Union[int, None] = None

    date_formats: Tuple[str, ...] = DEFAULT_DATE_FORMATS
    verbose: bool = False

    @property
    def window_end(self) -> date:
        """Exclusive end of the analysis window."""
        return self.window_start + timedelta(days=self.window_days)

    @property
    def tier_names(self) -> List[str]:
        return [name for name, _ in self.segment_tiers]

    def validate(self) -> 'StudyConfig':
        """
        Check for impossible values before any work starts.

        Raises:
            ValueError: If a parameter is out of range
        """
        if self.window_days <= 0:
            raise ValueError(f"window_days must be positive, got {self.window_days}")
        if self.year_length <= 0:
            raise ValueError(f"year_length must be positive, got {self.year_length}")
        if self.persons_per_bedroom < 0:
            raise ValueError(f"persons_per_bedroom must be >= 0, got {self.persons_per_bedroom}")
        if self.cpppd < 0:
            raise ValueError(f"cpppd must be >= 0, got {self.cpppd}")
        if self.fx_rate <= 0:
            raise ValueError(f"fx_rate must be positive, got {self.fx_rate}")
        if self.min_comparables < 1:
            raise ValueError(f"min_comparables must be >= 1, got {self.min_comparables}")
        if not self.segment_tiers:
            raise ValueError("segment_tiers must name at least one tier")
        names = self.tier_names
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate segment tier names: {names}")
        if 'unresolved' in names:
            raise ValueError("'unresolved' is reserved and cannot name a segment tier")
        if not 0 <= self.profit_seeker_max_block_rate <= 1:
            raise ValueError("profit_seeker_max_block_rate must be within [0, 1]")
        if not 0 <= self.opportunistic_min_block_rate <= 1:
            raise ValueError("opportunistic_min_block_rate must be within [0, 1]")
        if self.logit_C <= 0:
            raise ValueError(f"logit_C must be positive, got {self.logit_C}")
        if self.n_jobs == 0:
            raise ValueError("n_jobs cannot be 0")
        return self

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        d = asdict(self)
        d['window_start'] = self.window_start.isoformat()
        d['segment_tiers'] = [[name, list(keys)] for name, keys in self.segment_tiers]
        d['date_formats'] = list(self.date_formats)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> 'StudyConfig':
        """Build a config from a dictionary, e.g. parsed JSON."""
        d = dict(d)
        unknown = set(d) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        if isinstance(d.get('window_start'), str):
            d['window_start'] = date.fromisoformat(d['window_start'])
        if 'segment_tiers' in d:
            d['segment_tiers'] = tuple(
                (name, tuple(keys)) for name, keys in d['segment_tiers']
            )
        if 'date_formats' in d:
            d['date_formats'] = tuple(d['date_formats'])
        return cls(**d).validate()

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'StudyConfig':
        """Load a config from a JSON file."""
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))
