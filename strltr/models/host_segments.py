"""
Host segmentation and STR-preference modeling.

Host types come from an ordered rule table evaluated top to bottom. Every
rule that matches overwrites the previous assignment, so LATER RULES WIN:

| # | Condition                     | Host type           |
|---|-------------------------------|---------------------|
| 0 | (start)                       | Unknown             |
| 1 | blockpertime > 12 per year    | MultiPlatformUser   |
| 2 | block_rate <= 0.25            | ProfitSeeker        |
| 3 | block_rate >= 0.75            | OpportunisticSharer |

A host blocking more than 12 periods a year with block_rate 0.2 therefore
ends up a ProfitSeeker: rule 2 overrides rule 1.

For every host segment (plus the pooled 'All' segment) and each preference
outcome, an independent logistic model regresses the 0/1 flag on listing
covariates. A segment whose outcome is all 0 or all 1 cannot be fitted; it
is reported and skipped while the other segments continue.
"""

import logging
import operator
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.preprocessing import StandardScaler

from strltr.config import StudyConfig
from strltr.data.schema import StageFailure
from strltr.features.design import (
    PREFERENCE_CATEGORICAL,
    PREFERENCE_NUMERIC,
    DesignMatrixBuilder,
    add_model_covariates,
)
from strltr.parallel import parallel_map

logger = logging.getLogger(__name__)


class HostType(Enum):
    """Behavioral host segment."""
    PROFIT_SEEKER = "ProfitSeeker"
    OPPORTUNISTIC_SHARER = "OpportunisticSharer"
    MULTI_PLATFORM_USER = "MultiPlatformUser"
    UNKNOWN = "Unknown"


POOLED_SEGMENT = 'All'
PREFERENCE_OUTCOMES = ('lik_pref', 'pot_pref')

# Fit status values
STATUS_OK = 'ok'
STATUS_DEGENERATE = 'degenerate_outcome'
STATUS_NOT_CONVERGED = 'not_converged'
STATUS_INSUFFICIENT = 'insufficient_data'

_OPERATORS = {
    '>': operator.gt,
    '>=': operator.ge,
    '<': operator.lt,
    '<=': operator.le,
}


# =============================================================================
# HOST TYPE RULE TABLE
# =============================================================================

@dataclass(frozen=True)
class HostTypeRule:
    """One row of the host-type rule table: `column op threshold -> host_type`."""
    name: str
    column: str
    op: str
    threshold: float
    host_type: HostType

    def matches(self, value) -> bool:
        if value is None or pd.isna(value):
            return False
        return bool(_OPERATORS[self.op](value, self.threshold))

    def mask(self, df: pd.DataFrame) -> pd.Series:
        values = df[self.column].astype(float)
        return _OPERATORS[self.op](values, self.threshold) & values.notna()


def build_host_type_rules(config: StudyConfig) -> List[HostTypeRule]:
    """Ordered rule table; evaluated top-down with later matches overriding."""
    return [
        HostTypeRule(
            "frequent blocking",
            'blockpertime', '>', config.multi_platform_blocks_per_year,
            HostType.MULTI_PLATFORM_USER,
        ),
        HostTypeRule(
            "rarely blocked",
            'block_rate', '<=', config.profit_seeker_max_block_rate,
            HostType.PROFIT_SEEKER,
        ),
        HostTypeRule(
            "mostly blocked",
            'block_rate', '>=', config.opportunistic_min_block_rate,
            HostType.OPPORTUNISTIC_SHARER,
        ),
    ]


# Rule table for the reference thresholds
HOST_TYPE_RULES = build_host_type_rules(StudyConfig())


def blocks_per_year(nbr_block, total_days, year_length: int):
    """Blocked periods normalized to a full year: nbr_block * Y / total_days."""
    nbr_block = np.asarray(nbr_block, dtype=float)
    total_days = np.asarray(total_days, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.where(total_days > 0, nbr_block * year_length / total_days, np.nan)


def classify_host(
    block_rate: float,
    blockpertime: float,
    rules: Sequence[HostTypeRule] = HOST_TYPE_RULES
) -> HostType:
    """
    Classify one host by evaluating every rule in order.

    Each matching rule overwrites the current assignment; the result is the
    last match, or Unknown when nothing matches.
    """
    values = {'block_rate': block_rate, 'blockpertime': blockpertime}
    host_type = HostType.UNKNOWN
    for rule in rules:
        if rule.matches(values[rule.column]):
            host_type = rule.host_type
    return host_type


def assign_host_types(df: pd.DataFrame, config: Optional[StudyConfig] = None) -> pd.DataFrame:
    """
    Add blockpertime and host_type (string value of HostType) to every row.

    Same semantics as classify_host, applied column-wise.
    """
    config = config or StudyConfig()
    out = df.copy()
    out['blockpertime'] = blocks_per_year(out['nbr_block'], out['total_days'], config.year_length)

    host_type = pd.Series(HostType.UNKNOWN.value, index=out.index, dtype=object)
    for rule in build_host_type_rules(config):
        host_type[rule.mask(out)] = rule.host_type.value
    out['host_type'] = host_type

    if config.verbose:
        counts = out['host_type'].value_counts()
        logger.info("Host types: " + ", ".join(f"{k}={v:,}" for k, v in counts.items()))
    return out


# =============================================================================
# PREFERENCE MODELS
# =============================================================================

@dataclass
class PreferenceModel:
    """
    Logistic preference model for one (host segment, outcome).

    model/builder/scaler are None unless status == 'ok'.
    """
    segment: str
    outcome: str
    status: str
    n_obs: int
    positive_share: float
    model: Optional[LogisticRegression] = None
    builder: Optional[DesignMatrixBuilder] = None
    scaler: Optional[StandardScaler] = None
    detail: str = ""

    @property
    def is_usable(self) -> bool:
        return self.status == STATUS_OK

    def predict_proba(self, df: pd.DataFrame) -> np.ndarray:
        """P(outcome = 1) for each row."""
        if not self.is_usable:
            raise ValueError(f"Model for {self.segment}/{self.outcome} is not usable: {self.status}")
        X = self.scaler.transform(self.builder.transform(add_model_covariates(df)))
        return self.model.predict_proba(X)[:, 1]

    def coefficients(self) -> Dict[str, float]:
        """Coefficients on the standardized design, keyed by feature name."""
        if not self.is_usable:
            return {}
        coefs = {'intercept': float(self.model.intercept_[0])}
        coefs.update(zip(self.builder.feature_names, self.model.coef_[0].tolist()))
        return coefs

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'segment': self.segment,
            'outcome': self.outcome,
            'status': self.status,
            'n_obs': self.n_obs,
            'positive_share': self.positive_share,
            'detail': self.detail,
            'coefficients': self.coefficients(),
        }


def fit_preference_model(
    task: Tuple[str, str, pd.DataFrame, int, int, float]
) -> PreferenceModel:
    """
    Fit one logistic preference model.

    Args:
        task: (segment, outcome, labeled rows, min_rows, max_iter, C)

    Returns:
        PreferenceModel with its fit status
    """
    segment, outcome, df, min_rows, max_iter, C = task
    y = df[outcome].astype(int).to_numpy()
    n_obs = len(y)
    positive_share = float(y.mean()) if n_obs else np.nan

    if n_obs < min_rows:
        return PreferenceModel(
            segment, outcome, STATUS_INSUFFICIENT, n_obs, positive_share,
            detail=f"{n_obs} labeled rows (< {min_rows})",
        )
    if len(np.unique(y)) < 2:
        return PreferenceModel(
            segment, outcome, STATUS_DEGENERATE, n_obs, positive_share,
            detail=f"every outcome is {int(y[0])}",
        )

    builder = DesignMatrixBuilder(
        categorical=PREFERENCE_CATEGORICAL,
        numeric=PREFERENCE_NUMERIC,
        intercept=False,
    )
    X = builder.fit_transform(df)
    scaler = StandardScaler()
    X = scaler.fit_transform(X)

    model = LogisticRegression(C=C, max_iter=max_iter)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always', ConvergenceWarning)
        model.fit(X, y)
    convergence = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
    if convergence:
        return PreferenceModel(
            segment, outcome, STATUS_NOT_CONVERGED, n_obs, positive_share,
            detail=str(convergence[0].message).splitlines()[0],
        )

    return PreferenceModel(
        segment, outcome, STATUS_OK, n_obs, positive_share,
        model=model, builder=builder, scaler=scaler,
    )


@dataclass
class PreferenceModelSet:
    """
    All preference models of a run.

    Attributes:
        models: PreferenceModel keyed by (segment, outcome), failed fits included
        failures: One StageFailure per segment model that could not be used
    """
    models: Dict[Tuple[str, str], PreferenceModel]
    failures: List[StageFailure] = field(default_factory=list)

    def usable(self) -> Dict[Tuple[str, str], PreferenceModel]:
        return {k: m for k, m in self.models.items() if m.is_usable}

    def summary(self) -> pd.DataFrame:
        """One row per (segment, outcome): status, n_obs, positive share."""
        rows = [
            {k: v for k, v in m.to_dict().items() if k != 'coefficients'}
            for _, m in sorted(self.models.items())
        ]
        return pd.DataFrame(
            rows, columns=['segment', 'outcome', 'status', 'n_obs', 'positive_share', 'detail']
        )


def fit_preference_models(
    df: pd.DataFrame,
    config: StudyConfig,
    outcomes: Sequence[str] = PREFERENCE_OUTCOMES,
    include_pooled: bool = True,
) -> PreferenceModelSet:
    """
    Fit one logistic model per host segment and outcome.

    Only rows with a defined outcome are used, so properties with an
    unresolved imputation never enter a preference model.

    Args:
        df: Properties with host_type, outcome flags and covariates
        config: Study configuration
        outcomes: Preference flag columns to model
        include_pooled: Also fit every outcome on all hosts together

    Returns:
        PreferenceModelSet
    """
    data = add_model_covariates(df)
    segments = [(seg, data[data['host_type'] == seg]) for seg in sorted(data['host_type'].dropna().unique())]
    if include_pooled:
        segments.append((POOLED_SEGMENT, data))

    tasks = []
    for segment, rows in segments:
        for outcome in outcomes:
            labeled = rows[rows[outcome].notna()]
            if 'property_id' in labeled.columns:
                labeled = labeled.sort_values('property_id', kind='mergesort')
            tasks.append((
                segment, outcome, labeled.reset_index(drop=True),
                config.min_logit_rows, config.logit_max_iter, config.logit_C,
            ))

    fitted = parallel_map(fit_preference_model, tasks, n_jobs=config.n_jobs)
    models = {(m.segment, m.outcome): m for m in fitted}

    failures = [
        StageFailure(
            stage='preference',
            unit='segment',
            key=f"{m.segment}/{m.outcome}",
            reason='ModelNonConvergence' if m.status != STATUS_INSUFFICIENT else 'InsufficientData',
            detail=f"{m.status}: {m.detail}",
        )
        for _, m in sorted(models.items())
        if not m.is_usable
    ]
    for failure in failures:
        logger.warning(f"  ✗ Preference model {failure.key} excluded ({failure.detail})")

    logger.info(f"Fitted {len(models) - len(failures)} of {len(models)} preference models")
    return PreferenceModelSet(models=models, failures=failures)
