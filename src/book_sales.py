"""
Book Sales CLI

Config-driven cleaning and aggregation of textbook purchase reviews.
Answers one question: which book sells the most.

Pipeline: load -> inspect -> drop missing reviews -> normalize states
-> score reviews -> count purchases per book -> report.

Usage:
    python src/book_sales.py --config datasets/textbooks/config.yaml
    python src/book_sales.py --config datasets/textbooks/config.yaml --input override.csv
    python src/book_sales.py --config datasets/textbooks/config.yaml --output-dir /tmp
"""

import sys
import re
import time
import argparse
import yaml
import pandas as pd
import numpy as np
from pathlib import Path
from collections import Counter
from datetime import datetime


POSTAL_CODE_PATTERN = re.compile(r'^[A-Z]{2}$')
REVIEW_SCORE_RANGE = range(1, 6)
DEFAULT_MAX_UNIQUE_VALUES = 20
MISSING_LABEL = '<missing>'
FIXED_SHEETS = [
    'Purchases by Book', 'Book Summary', 'Cleaned Data', 'Summary',
    'Unrecognized States', 'Unmapped Reviews',
]


class ConfigError(Exception):
    pass


def load_config(config_path: str, input_override: str = None, output_dir_override: str = None) -> dict:
    config_path = Path(config_path).resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    base_dir = config_path.parent

    required_sections = ['dataset', 'paths', 'columns', 'scoring']
    for section in required_sections:
        if section not in config:
            raise ConfigError(f"Missing required config section: '{section}'")

    required_paths = ['input', 'state_codes', 'review_scale', 'output_prefix']
    for key in required_paths:
        if key not in config['paths']:
            raise ConfigError(f"Missing required path: 'paths.{key}'")

    required_columns = ['book', 'review', 'state', 'price']
    for key in required_columns:
        if key not in config['columns']:
            raise ConfigError(f"Missing required column mapping: 'columns.{key}'")

    if 'high_review_threshold' not in config['scoring']:
        raise ConfigError("Missing required scoring param: 'scoring.high_review_threshold'")

    sheet_names = set(FIXED_SHEETS)
    for i, agg in enumerate(config.get('aggregations') or []):
        for key in ('name', 'column'):
            if key not in agg:
                raise ConfigError(f"aggregations[{i}] missing required key '{key}'")
        sheet = str(agg['name'])[:31]
        if sheet in sheet_names:
            raise ConfigError(f"aggregations[{i}] sheet name '{sheet}' is reserved or already used")
        sheet_names.add(sheet)

    resolved = {}
    for key in ['input', 'state_codes', 'review_scale']:
        resolved[key] = (base_dir / config['paths'][key]).resolve()
    resolved['output_dir'] = None
    if config['paths'].get('output_dir'):
        resolved['output_dir'] = (base_dir / config['paths']['output_dir']).resolve()
    resolved['output_prefix'] = config['paths']['output_prefix']

    if input_override:
        resolved['input'] = Path(input_override).resolve()
    if output_dir_override:
        resolved['output_dir'] = Path(output_dir_override).resolve()

    config['_resolved_paths'] = resolved

    for key in ['input', 'state_codes', 'review_scale']:
        if not resolved[key].exists():
            raise ConfigError(f"File not found: {resolved[key]} (from paths.{key})")

    return config


def load_state_codes(path: Path) -> dict[str, str]:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    codes = {}
    for name, code in (data.get('states') or {}).items():
        code_str = str(code).strip()
        if not POSTAL_CODE_PATTERN.match(code_str):
            raise ConfigError(f"states['{name}'] is not a two-letter postal code: '{code}'")
        codes[str(name)] = code_str
    return codes


def load_review_scale(path: Path) -> dict[str, int]:
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    scale = {}
    for label, score in (data.get('scores') or {}).items():
        if isinstance(score, bool) or not isinstance(score, int) or score not in REVIEW_SCORE_RANGE:
            raise ConfigError(f"scores['{label}'] must be an integer 1-5, got '{score}'")
        scale[str(label)] = score

    duplicates = [s for s, n in Counter(scale.values()).items() if n > 1]
    if duplicates:
        raise ConfigError(f"Review scale assigns the same score twice: {sorted(duplicates)}")
    return scale


def load_reviews(path: Path) -> pd.DataFrame:
    return pd.read_csv(path)


def check_columns(df: pd.DataFrame, cols: dict, source) -> None:
    if len(df) == 0:
        raise ConfigError(f"Input CSV has 0 data rows: {source}")

    missing = [
        f"'{v}' (from columns.{k})"
        for k, v in cols.items()
        if v not in df.columns
    ]
    if missing:
        raise ConfigError(f"Columns not found in input CSV: {', '.join(missing)}")


def inspect_reviews(df: pd.DataFrame, max_unique: int = DEFAULT_MAX_UNIQUE_VALUES) -> dict:
    """
    Collect diagnostics for a review table without modifying it.

    Returns a dict with the row and column counts, the dtype, missing count
    and unique values of every column, and min/mean/max of numeric columns.
    Columns with more than ``max_unique`` distinct values carry only their
    count.
    """
    columns = {}
    for col in df.columns:
        uniques = df[col].dropna().unique()
        columns[col] = {
            'dtype': str(df[col].dtype),
            'missing': int(df[col].isna().sum()),
            'n_unique': len(uniques),
            'unique': sorted(uniques.tolist(), key=str) if len(uniques) <= max_unique else None,
        }

    numeric = {}
    for col in df.select_dtypes(include=np.number).columns:
        numeric[col] = {
            'min': df[col].min(),
            'mean': df[col].mean(),
            'max': df[col].max(),
        }

    return {
        'rows': len(df),
        'columns': len(df.columns),
        'column_info': columns,
        'numeric': numeric,
    }


def print_inspection(summary: dict) -> None:
    print(f"  Rows: {summary['rows']:,}   Columns: {summary['columns']}")
    print(f"\n  {'Column':20s} {'Type':10s} {'Missing':>8s} {'Unique':>8s}")
    for col, info in summary['column_info'].items():
        print(f"  {col:20s} {info['dtype']:10s} {info['missing']:>8,} {info['n_unique']:>8,}")

    for col, info in summary['column_info'].items():
        if info['unique'] is None:
            continue
        print(f"\n  {col} values:")
        for value in info['unique']:
            print(f"    {value}")

    for col, stats in summary['numeric'].items():
        print(f"\n  {col}: min {stats['min']:,.2f}  mean {stats['mean']:,.2f}  max {stats['max']:,.2f}")


def drop_missing_reviews(df: pd.DataFrame, review_col: str) -> pd.DataFrame:
    return df.dropna(subset=[review_col]).reset_index(drop=True)


def normalize_states(df: pd.DataFrame, state_col: str, state_codes: dict[str, str]) -> pd.DataFrame:
    # Exact match only; anything outside the map is kept as-is.
    df = df.copy()
    df[state_col] = df[state_col].map(state_codes).fillna(df[state_col])
    return df


def find_unrecognized_states(df: pd.DataFrame, state_col: str) -> Counter:
    states = df[state_col].dropna().astype(str)
    bad = Counter(states[~states.str.fullmatch(POSTAL_CODE_PATTERN.pattern)].tolist())
    n_missing = int(df[state_col].isna().sum())
    if n_missing:
        bad[MISSING_LABEL] = n_missing
    return bad


def score_reviews(df: pd.DataFrame, review_col: str, review_scale: dict[str, int], threshold: int) -> pd.DataFrame:
    df = df.copy()
    df['review_num'] = df[review_col].map(review_scale).astype('Int64')
    df['is_high_review'] = df['review_num'].ge(threshold).fillna(False).astype(bool)
    return df


def find_unmapped_reviews(df: pd.DataFrame, review_col: str) -> Counter:
    unmapped = df[df['review_num'].isna() & df[review_col].notna()]
    return Counter(unmapped[review_col].astype(str).tolist())


def clean_reviews(df: pd.DataFrame, cols: dict, state_codes: dict[str, str],
                  review_scale: dict[str, int], threshold: int) -> pd.DataFrame:
    df = drop_missing_reviews(df, cols['review'])
    df = normalize_states(df, cols['state'], state_codes)
    df = score_reviews(df, cols['review'], review_scale, threshold)
    return df


def count_purchases(df: pd.DataFrame, book_col: str) -> pd.DataFrame:
    counts = df.groupby(book_col, dropna=False).size().rename('purchases').reset_index()
    return counts.sort_values('purchases', ascending=False, kind='stable').reset_index(drop=True)


def summarize_books(df: pd.DataFrame, book_col: str, price_col: str) -> pd.DataFrame:
    summary = df.groupby(book_col, dropna=False).agg(
        Purchases=(price_col, 'size'),
        TotalRevenue=(price_col, 'sum'),
        AvgReview=('review_num', 'mean'),
        HighReviewShare=('is_high_review', 'mean'),
    ).sort_values('Purchases', ascending=False, kind='stable')
    summary['TotalRevenue'] = summary['TotalRevenue'].round(2)
    summary['AvgReview'] = summary['AvgReview'].astype(float).round(2)
    summary['HighReviewShare'] = summary['HighReviewShare'].round(3)
    return summary


def aggregate_by(df: pd.DataFrame, column: str, price_col: str, top_n: int = None) -> pd.DataFrame:
    agg_df = df.groupby(column, dropna=False).agg(
        Purchases=(price_col, 'size'),
        TotalRevenue=(price_col, 'sum'),
    ).sort_values('Purchases', ascending=False, kind='stable')
    if top_n:
        agg_df = agg_df.head(top_n)
    return agg_df


def write_workbook(output_xlsx: Path, report: pd.DataFrame, book_summary: pd.DataFrame,
                   cleaned: pd.DataFrame, summary_data: dict, extra_sheets: dict,
                   unrecognized_states: Counter, unmapped_reviews: Counter) -> None:
    with pd.ExcelWriter(output_xlsx, engine='openpyxl') as writer:
        report.to_excel(writer, sheet_name='Purchases by Book', index=False)
        book_summary.to_excel(writer, sheet_name='Book Summary')
        cleaned.to_excel(writer, sheet_name='Cleaned Data', index=False)
        pd.DataFrame(summary_data).to_excel(writer, sheet_name='Summary', index=False)

        for name, agg_df in extra_sheets.items():
            agg_df.to_excel(writer, sheet_name=name)

        if unrecognized_states:
            pd.DataFrame(
                [{'State': s, 'Count': c} for s, c in unrecognized_states.most_common()]
            ).to_excel(writer, sheet_name='Unrecognized States', index=False)

        if unmapped_reviews:
            pd.DataFrame(
                [{'Review': r, 'Count': c} for r, c in unmapped_reviews.most_common()]
            ).to_excel(writer, sheet_name='Unmapped Reviews', index=False)


def main(config: dict):
    paths = config['_resolved_paths']
    cols = config['columns']
    threshold = config['scoring']['high_review_threshold']
    max_unique = (config.get('inspection') or {}).get('max_unique_values', DEFAULT_MAX_UNIQUE_VALUES)
    dataset_name = config['dataset']['name']

    t_start = time.perf_counter()

    print("=" * 70)
    print(f"{dataset_name.upper()}: WHICH BOOK SELLS THE MOST")
    print("=" * 70)

    print("\nLoading resources...")
    state_codes = load_state_codes(paths['state_codes'])
    print(f"  State name mappings: {len(state_codes)}")
    review_scale = load_review_scale(paths['review_scale'])
    print(f"  Review categories: {len(review_scale)}")
    print(f"  High review threshold: {threshold}")

    if threshold not in REVIEW_SCORE_RANGE:
        raise ConfigError(f"scoring.high_review_threshold must be 1-5, got {threshold}")

    print(f"\nLoading {dataset_name} dataset...")
    df = load_reviews(paths['input'])
    total_rows = len(df)
    print(f"  Loaded {total_rows:,} rows, {len(df.columns)} columns")
    check_columns(df, cols, paths['input'])

    print("\nInspecting raw data...")
    print_inspection(inspect_reviews(df, max_unique))

    # ── Cleaning ────────────────────────────────────────────────────────
    print("\nCleaning...")
    t_clean = time.perf_counter()

    cleaned = drop_missing_reviews(df, cols['review'])
    print(f"  Dropped missing reviews: {total_rows - len(cleaned):,} rows")

    before = cleaned[cols['state']].copy()
    cleaned = normalize_states(cleaned, cols['state'], state_codes)
    print(f"  Normalized state names: {(before.notna() & before.ne(cleaned[cols['state']])).sum():,} rows")

    cleaned = score_reviews(cleaned, cols['review'], review_scale, threshold)
    print(f"  Scored reviews: {cleaned['review_num'].notna().sum():,} rows "
          f"({cleaned['is_high_review'].sum():,} high)")

    unrecognized_states = find_unrecognized_states(cleaned, cols['state'])
    if unrecognized_states:
        print(f"\n  WARNING: {len(unrecognized_states)} state values are not two-letter codes:")
        for state, count in unrecognized_states.most_common(10):
            print(f"    {state:30s} {count:>6,}")
        print("  These are kept unchanged.")

    unmapped_reviews = find_unmapped_reviews(cleaned, cols['review'])
    if unmapped_reviews:
        print(f"\n  WARNING: {len(unmapped_reviews)} review values are not on the review scale:")
        for review, count in unmapped_reviews.most_common(10):
            print(f"    {review:30s} {count:>6,}")
        print("  These rows have no review score.")

    t_clean_end = time.perf_counter()

    # ── Aggregation ─────────────────────────────────────────────────────
    report = count_purchases(cleaned, cols['book'])

    print(f"\n{'='*70}")
    print("PURCHASES BY BOOK")
    print(f"{'='*70}")
    print(f"  {cols['book']:50s} {'purchases':>10s}")
    for _, row in report.iterrows():
        print(f"  {str(row[cols['book']]):50s} {row['purchases']:>10,}")
    print(f"\n  Cleaned rows: {len(cleaned):,} of {total_rows:,}")
    if not report.empty:
        top = report.iloc[0]
        print(f"  Best seller: {top[cols['book']]} ({top['purchases']:,} purchases)")

    if paths['output_dir'] is not None:
        paths['output_dir'].mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        output_xlsx = paths['output_dir'] / f"{paths['output_prefix']}_{timestamp}.xlsx"

        extra_sheets = {}
        for agg in config.get('aggregations') or []:
            agg_col = agg['column']
            if agg_col not in cleaned.columns:
                print(f"  WARNING: Aggregation column '{agg_col}' not found, skipping sheet '{agg['name']}'")
                continue
            extra_sheets[str(agg['name'])[:31]] = aggregate_by(cleaned, agg_col, cols['price'], agg.get('top_n'))

        summary_data = {
            'Metric': [
                'Rows Loaded',
                'Rows Dropped (missing review)',
                'Cleaned Rows',
                'Unique Books',
                'High Reviews',
                'Unrecognized State Values',
                'Unmapped Review Values',
                f'Total {cols["price"]}',
            ],
            'Value': [
                f"{total_rows:,}",
                f"{total_rows - len(cleaned):,}",
                f"{len(cleaned):,}",
                f"{cleaned[cols['book']].nunique():,}",
                f"{cleaned['is_high_review'].sum():,}",
                f"{sum(unrecognized_states.values()):,}",
                f"{sum(unmapped_reviews.values()):,}",
                f"${cleaned[cols['price']].sum():,.2f}",
            ],
        }

        write_workbook(
            output_xlsx, report,
            summarize_books(cleaned, cols['book'], cols['price']),
            cleaned, summary_data, extra_sheets,
            unrecognized_states, unmapped_reviews,
        )
        print(f"\nOutput saved to: {output_xlsx}")

    t_end = time.perf_counter()
    print(f"\nTiming: cleaning {t_clean_end - t_clean:.1f}s, total {t_end - t_start:.1f}s")

    return report


def cli():
    sys.stdout.reconfigure(encoding='utf-8')

    parser = argparse.ArgumentParser(
        description='Book Sales CLI — clean purchase reviews and rank books by purchases'
    )
    parser.add_argument('--config', required=True, help='Path to dataset config YAML')
    parser.add_argument('--input', default=None, help='Override input CSV path from config')
    parser.add_argument('--output-dir', default=None, help='Write an Excel report to this directory')
    args = parser.parse_args()

    try:
        config = load_config(args.config, args.input, args.output_dir)
        main(config)
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
