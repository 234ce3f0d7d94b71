"""
Command-line interface for batch model fitting and reporting.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from .constants import ADJUST_METHODS, DEFAULT_ADJUST, DEFAULT_ALPHA, DEFAULT_ANOVA_TYPE
from .data_loader import load_data_from_path
from .datasets import list_datasets, load_dataset
from .exercises import EXERCISES, get_exercise, run_solution
from .workflow import fit_and_report, write_report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agromodels",
        description="Agromodels - fit linear and mixed models and report means, letters and diagnostics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agromodels --dataset striga_trial --response grain_yield --factors genotype \\
    --block block --outdir results/

  agromodels --input trial.csv --response grain_yield --factors genotype \\
    --random row col --adjust holm --outdir results/

  agromodels --exercise row-column --outdir results/
        """
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--input", default=None, help="Path to CSV or XLSX file")
    source.add_argument("--dataset", default=None, help="Built-in dataset name (see --list-datasets)")
    source.add_argument("--exercise", default=None, help="Run the worked solution of an exercise")
    source.add_argument("--list-datasets", action="store_true", help="List built-in datasets and exercises")

    parser.add_argument("--response", default=None, help="Numeric response column name")
    parser.add_argument("--factors", nargs="+", default=[], help="Fixed categorical factors")
    parser.add_argument("--covariates", nargs="+", default=[], help="Fixed continuous covariates")
    parser.add_argument("--block", default=None, help="Fixed blocking factor (e.g. block)")
    parser.add_argument(
        "--random",
        nargs="+",
        default=[],
        help="Columns with a random intercept each (fits a mixed model)"
    )
    parser.add_argument("--focal", default=None, help="Factor for marginal means (default: first factor)")
    parser.add_argument("--by", default=None, help="Compare focal levels within levels of this factor")
    parser.add_argument("--interactions", action="store_true", help="Cross factors (full factorial)")
    parser.add_argument(
        "--anova-type",
        type=int,
        choices=[1, 2, 3],
        default=DEFAULT_ANOVA_TYPE,
        help="ANOVA sum of squares type (default: 2)"
    )
    parser.add_argument(
        "--adjust",
        choices=ADJUST_METHODS,
        default=DEFAULT_ADJUST,
        help="P-value adjustment for pairwise comparisons (default: tukey)"
    )
    parser.add_argument(
        "--alpha",
        type=float,
        default=DEFAULT_ALPHA,
        help="Significance level for the letter display (default: 0.05)"
    )
    parser.add_argument("--sheet-name", default=None, help="Sheet name for XLSX files (default: first sheet)")
    parser.add_argument("--outdir", default="outputs", help="Output directory for reports (default: outputs/)")
    parser.add_argument("--verbose", action="store_true", help="Show informational log messages")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Main CLI entry point.

    Loads data (file, built-in dataset or exercise), runs the
    model-fit-and-report workflow and writes its tables and plots.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.list_datasets:
        print("Datasets:")
        for name in list_datasets():
            print(f"  - {name}")
        print("Exercises:")
        for ex_id, ex in EXERCISES.items():
            print(f"  - {ex_id}: {ex.title}")
        return

    outdir = Path(args.outdir)

    if args.exercise:
        ex = get_exercise(args.exercise)
        print(f"Exercise: {ex.title}")
        print(ex.prompt)
        report = run_solution(args.exercise)
    else:
        if not args.response:
            parser.error("--response is required unless --exercise or --list-datasets is given")
        if args.input:
            print(f"Loading data from: {args.input}")
            df = load_data_from_path(args.input, sheet_name=args.sheet_name)
        elif args.dataset:
            print(f"Loading built-in dataset: {args.dataset}")
            df = load_dataset(args.dataset)
        else:
            parser.error("one of --input, --dataset or --exercise is required")
        print(f"Data loaded: {len(df)} rows, {len(df.columns)} columns")

        report = fit_and_report(
            df,
            response=args.response,
            factors=args.factors,
            covariates=args.covariates,
            block=args.block,
            random=args.random,
            focal=args.focal,
            by=args.by,
            interactions=args.interactions,
            anova_type=args.anova_type,
            adjust=args.adjust,
            alpha=args.alpha,
        )

    print(f"\nFitted {report.kind} model: {report.formula}")
    if report.cld is not None:
        print("\nEstimated marginal means:")
        print(report.cld.to_string(index=False))

    written = write_report(report, outdir)
    print(f"\nAnalysis complete! Reports saved to: {outdir.resolve()}")
    print("\nGenerated files:")
    for path in written:
        print(f"  - {path.name}")


if __name__ == "__main__":
    main()
