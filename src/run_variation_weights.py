"""
Get weights for up/down variations of the fit variables (before any
smearing), scaling events by 1 +/- alpha * log|thetaB_reco - thetaB_true|
so that events with a large flight-angle mismeasurement are weighted up in
one variation and down in the other.

The scaled variation weights throw the normalisation off; the fit takes
care of that later.

Usage:
    python -m src.run_variation_weights -i input.root -o output.root
"""

import argparse

from src.analysis.config import DEFAULT_CONFIG_PATH, TRUE_DELTA, load_run_config
from src.analysis.exceptions import AnalysisError, ConfigurationError
from src.analysis.io import write_trees
from src.analysis.pipeline import process_weights_tree
from src.distributed.executor import run_trees


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Get var weights for scaling up/down large delta_thetaB events."
    )
    parser.add_argument("-i", "--input", help="Input ntuple (simulation, with TRUEP branches).")
    parser.add_argument("-o", "--output", help="Output ntuple.")
    parser.add_argument(
        "-t",
        "--trees",
        help="Comma-separated tree names (default from the configuration).",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to YAML configuration file.",
    )
    parser.add_argument("--n-workers", type=int, default=None)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        if not args.input or not args.output:
            raise ConfigurationError("Both -i/--input and -o/--output are required")

        config = load_run_config(args.config, trees=args.trees, n_workers=args.n_workers)

        schemes = [w.name for w in config.weights if w.source == TRUE_DELTA]
        if not schemes:
            raise ConfigurationError(f"No weight scheme uses {TRUE_DELTA} as its source")
        print(f"[INFO] Weight schemes: {', '.join(schemes)}")

        results = run_trees(
            args.input,
            list(config.trees),
            process_weights_tree,
            config,
            n_workers=config.n_workers,
        )
    except AnalysisError as e:
        print(f"[ERROR] {e}. Exit now...")
        return 1

    print(f"Writing to {args.output}")
    write_trees(args.output, {info["tree"]: columns for columns, info in results})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
