"""
STR vs LTR Revenue Study - Source Code.

Modules:
- config: StudyConfig, the single configuration object of a run
- data: Column contracts, loading and row-level cleaning
- features: Daily summaries, property reconciliation, design matrices
- models: Rent imputation, revenue arithmetic, host segmentation
- analysis: End-to-end pipeline and summary tables
"""
