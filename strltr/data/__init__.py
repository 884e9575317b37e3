"""Data contracts, loading and validation utilities."""
from .loader import load_inputs, read_table
from .validator import CleaningConfig, DataCleaner
