"""Feature construction: daily summaries, reconciliation, design matrices."""
from .summarizer import (
    blocked_runs,
    summarize_property,
    summarize_partition,
    summarize_observations,
)
from .reconciliation import (
    ReconciliationResult,
    reconcile_address,
    reconcile_snapshots,
    build_comparables,
)
from .design import (
    RENT_CATEGORICAL,
    PREFERENCE_CATEGORICAL,
    PREFERENCE_NUMERIC,
    DesignMatrixBuilder,
    add_model_covariates,
    bed_bath_config,
)
