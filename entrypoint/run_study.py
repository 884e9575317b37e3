#!/usr/bin/env python
"""
Run the STR vs LTR revenue study.

Usage:
    python entrypoint/run_study.py --data-dir data
    python entrypoint/run_study.py --data-dir data --config study.json --n-jobs 4
"""

import argparse
import logging
from pathlib import Path

from strltr.analysis import StudyPipeline, imputation_coverage, preference_shares
from strltr.config import StudyConfig
from strltr.data import load_inputs


def main():
    parser = argparse.ArgumentParser(description='Run the STR vs LTR revenue study')
    parser.add_argument('--data-dir', type=str, default='data',
                        help='Directory with daily.csv, str_properties.csv, ltr_snapshots.csv')
    parser.add_argument('--config', type=str, default=None,
                        help='JSON file with StudyConfig fields')
    parser.add_argument('--n-jobs', type=int, default=None, help='Worker count override')
    parser.add_argument('--output', type=str, default='outputs/study_result.pkl',
                        help='Output path for the result bundle')
    parser.add_argument('--verbose', action='store_true', help='Log stage statistics')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(message)s')

    config = StudyConfig.from_json(args.config) if args.config else StudyConfig()
    if args.n_jobs is not None:
        config.n_jobs = args.n_jobs
    if args.verbose:
        config.verbose = True
    config.validate()

    print("=" * 70)
    print("STR VS LTR REVENUE STUDY")
    print("=" * 70)
    print(f"Window: {config.window_start} to {config.window_end} (exclusive)")

    print("\n1. Loading data...")
    tables = load_inputs(args.data_dir)
    missing = {'daily', 'str_properties', 'ltr_snapshots'} - set(tables)
    if missing:
        parser.error(f"Missing input tables in {args.data_dir}: {sorted(missing)}")

    print("\n2. Running pipeline...")
    result = StudyPipeline(config).run(
        tables['daily'], tables['str_properties'], tables['ltr_snapshots']
    )

    print("\n3. Saving results...")
    output_path = Path(args.output)
    result.save(output_path)
    result.properties.to_csv(output_path.with_suffix('.properties.csv'), index=False)
    result.failure_frame().to_csv(output_path.with_suffix('.failures.csv'), index=False)

    print("\n" + "=" * 70)
    print("STUDY COMPLETE")
    print("=" * 70)
    print(f"\nResult saved to: {output_path}")
    print("\nImputation coverage:")
    print(imputation_coverage(result.properties).to_string())
    print("\nSTR preference by host type:")
    print(preference_shares(result.properties).to_string())
    print("\nPreference models:")
    print(result.preference_models.summary().to_string(index=False))
    print(f"\nReported failures: {len(result.failures):,}")


if __name__ == "__main__":
    main()
