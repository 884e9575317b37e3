"""Rent imputation, revenue comparison and host preference models."""
from .imputation import RentImputer, SegmentModel, ImputationResult, TIER_UNRESOLVED
from .revenue import calculate_revenue, compute_revenue, assign_preferences
from .host_segments import (
    HostType,
    HostTypeRule,
    HOST_TYPE_RULES,
    build_host_type_rules,
    classify_host,
    assign_host_types,
    fit_preference_models,
    PreferenceModel,
    PreferenceModelSet,
)
