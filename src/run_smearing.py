"""
Apply B flight-direction smearing to semileptonic B ntuples.

For every input tree, picks the decay mode (B0 -> D* mu nu or
B- -> D0 mu nu) from the branches present, rebuilds the rest-frame
variables (m2_miss, q2, E_l*) with the B momentum estimated along the
flight direction, repeats this with the flight polar angle smeared by
randomly drawn deltas, and writes the results together with the
corresponding variation weights to one output ntuple.

Usage:
    python -m src.run_smearing -i input.root -x aux.root -o output.root
"""

import argparse
import time

from src.analysis.config import DEFAULT_CONFIG_PATH, load_run_config
from src.analysis.exceptions import AnalysisError, ConfigurationError
from src.analysis.io import load_delta_theta, write_trees
from src.analysis.pipeline import process_tree
from src.analysis.plots import merge_hists, observable_hists, save_observable_plots
from src.analysis.smearing import load_pool
from src.distributed.executor import run_trees


# Argument parsing and config loading
def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Apply B flight-direction smearing and rebuild rest-frame variables."
    )
    parser.add_argument("-i", "--input", help="Input ntuple.")
    parser.add_argument("-x", "--aux", help="Auxiliary ntuple with the delta theta pool.")
    parser.add_argument("-o", "--output", help="Output ntuple.")
    parser.add_argument(
        "-t",
        "--trees",
        help="Comma-separated tree names (default from the configuration).",
    )
    parser.add_argument("--fit-lin", "--fitLin", type=float, help="Linear smearing coefficient.")
    parser.add_argument("--fit-quad", "--fitQuad", type=float, help="Quadratic smearing coefficient.")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to YAML configuration file.",
    )
    parser.add_argument(
        "--n-workers",
        type=int,
        default=None,
        help="Number of Dask workers; trees are processed in parallel.",
    )
    return parser.parse_args(argv)


def read_config(args):
    return load_run_config(
        args.config,
        fit_lin=args.fit_lin,
        fit_quad=args.fit_quad,
        trees=args.trees,
        n_workers=args.n_workers,
    )


def load_smear_pool(aux_file, config):
    """Empirical delta theta pool, loaded once for the whole run."""
    if not config.smearing.uses("empirical"):
        return None
    if not aux_file:
        raise ConfigurationError("Empirical smearing needs an auxiliary ntuple (-x/--aux)")

    pool_cfg = config.smearing.pool
    pool = load_pool(
        load_delta_theta(aux_file, pool_cfg.tree, pool_cfg.branch),
        pool_cfg.filter_range,
    )
    print(f"[INFO] Loaded {len(pool)} delta theta values from {aux_file}")
    return pool


def main(argv=None):
    args = parse_args(argv)

    try:
        if not args.input or not args.output:
            raise ConfigurationError("Both -i/--input and -o/--output are required")

        config = read_config(args)
        pool = load_smear_pool(args.aux, config)

        print(f"Found {len(config.trees)} input tree(s).")
        start_time = time.perf_counter()
        results = run_trees(
            args.input,
            list(config.trees),
            process_tree,
            pool,
            config,
            n_workers=config.n_workers,
        )
        wall_time = time.perf_counter() - start_time
    except AnalysisError as e:
        print(f"[ERROR] {e}. Exit now...")
        return 1

    print("--------")
    print(f"Writing to {args.output}")
    write_trees(args.output, {info["tree"]: columns for columns, info in results})

    total_events = sum(info["n_events"] for _, info in results)
    total_written = sum(info["n_written"] for _, info in results)

    if config.make_plots:
        suffixes = [""] + [f"_{v.name}" for v in config.smearing.variants]
        hists = merge_hists(observable_hists(columns, suffixes) for columns, _ in results)
        paths = save_observable_plots(hists, config.output_dir)
        print(f"Saved {len(paths)} control plots to {config.output_dir}")

    # Final summary
    print(f"Processed {len(results)} trees.")
    print(f"Total events read: {total_events}, written: {total_written}")
    print(f"Total wall time: {wall_time:.2f} s")
    if wall_time > 0:
        print(f"Average processing rate: {total_events / wall_time:.1f} events/s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
