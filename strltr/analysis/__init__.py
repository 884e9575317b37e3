"""Study pipeline.

Main pipeline: pipeline.StudyPipeline
"""
from .pipeline import StudyPipeline, StudyResult
from .summary import preference_shares, imputation_coverage

__all__ = ['StudyPipeline', 'StudyResult', 'preference_shares', 'imputation_coverage']
