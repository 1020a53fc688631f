"""
Configuration for the vertex-smearing tools.

Physics constants, the two supported decay modes and the YAML run
configuration. The YAML file is merged on top of DEFAULT_CONFIG and turned
into frozen dataclasses, so every value is validated once, before any event
is read.
"""

import copy
import math
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import yaml

from src.analysis.exceptions import ConfigurationError, DecayModeError


# PDG masses [MeV]
B_M = 5279.34
B0_M = 5279.65

DST_TEST_BR = "dst_PX"
D0_TEST_BR = "d0_PX"

B0_BR_PREFIX = "b0"
B_BR_PREFIX = "b"
MU_BR_PREFIX = "mu"

VERTEX_SUFFIXES = (
    "ENDVERTEX_X",
    "OWNPV_X",
    "ENDVERTEX_Y",
    "OWNPV_Y",
    "ENDVERTEX_Z",
    "OWNPV_Z",
)
TRUE_MOMENTUM_SUFFIXES = ("TRUEP_X", "TRUEP_Y", "TRUEP_Z")

EVENT_ID_BRANCHES = ("runNumber", "eventNumber")

TRUE_DELTA = "delta_theta_true"

STRATEGIES = ("empirical", "parametric")
DEGENERATE_POLICIES = ("flag", "drop")


@dataclass(frozen=True)
class DecayMode:
    """Particle prefixes and B mass hypothesis of one ntuple flavour."""
    name: str
    test_branch: str
    b_prefix: str
    d_prefix: str
    ref_mass: float
    mu_prefix: str = MU_BR_PREFIX


DECAY_MODES = (
    DecayMode("B0 -> D* mu nu", DST_TEST_BR, B0_BR_PREFIX, "dst", B0_M),
    DecayMode("B- -> D0 mu nu", D0_TEST_BR, B_BR_PREFIX, "d0", B_M),
)


def select_decay_mode(branches, tree_name=""):
    """
    Pick the decay mode from the branches present in a tree.
    The D* probe wins if both are present.
    """
    available = set(branches)
    for mode in DECAY_MODES:
        if mode.test_branch in available:
            return mode
    raise DecayModeError(tree_name, [m.test_branch for m in DECAY_MODES])


@dataclass(frozen=True)
class FitVar:
    branch: str
    scale: float


@dataclass(frozen=True)
class SmearVariant:
    name: str
    strategy: str

    @property
    def delta_column(self):
        return f"delta_theta_{self.name}"


@dataclass(frozen=True)
class WeightScheme:
    """
    One up/down weight convention: w_p = 1 + sign*t, w_m = 1 - sign*t with
    t = coeff * log|delta|, where delta is read from the `source` column.
    """
    name: str
    coeff: float
    sign: int
    source: str

    @property
    def columns(self):
        return f"{self.name}_p", f"{self.name}_m"


@dataclass(frozen=True)
class PoolConfig:
    tree: Optional[str]  # None: the only TTree in the auxiliary file
    branch: str
    filter_range: Optional[Tuple[float, float]]


@dataclass(frozen=True)
class SmearConfig:
    seed: int
    synth_seed: int
    fit_lin: float
    fit_quad: float
    pool: PoolConfig
    variants: Tuple[SmearVariant, ...]

    def uses(self, strategy):
        return any(v.strategy == strategy for v in self.variants)


@dataclass(frozen=True)
class DegenerateConfig:
    policy: str
    sentinel: float
    min_abs_cos_z: float
    min_abs_mass: float


@dataclass(frozen=True)
class RunConfig:
    trees: Tuple[str, ...]
    n_workers: int
    fit_vars: Dict[str, FitVar]
    smearing: SmearConfig
    weights: Tuple[WeightScheme, ...]
    degenerate: DegenerateConfig
    make_plots: bool = False
    output_dir: str = "plots"
    needs_truth: bool = field(init=False)

    def __post_init__(self):
        truth = self.smearing.uses("parametric") or any(
            w.source == TRUE_DELTA for w in self.weights
        )
        object.__setattr__(self, "needs_truth", truth)


DEFAULT_CONFIG = {
    "trees": ["TupleB0/DecayTree", "TupleBminus/DecayTree"],
    "n_workers": 1,
    "fit_vars": {
        "q2_input": {"branch": "FitVar_q2", "scale": 1e-6},
        "mm2_input": {"branch": "FitVar_Mmiss2", "scale": 1e-6},
        "el_input": {"branch": "FitVar_El", "scale": 1e-3},
    },
    "smearing": {
        "seed": 42,
        "synth_seed": 43,
        "fit_lin": 0.105,
        "fit_quad": 6.29,
        "pool": {
            "tree": "Smear",
            "branch": "Delta",
            "filter_range": [-0.25, 0.25],
        },
        "variants": {"smr": "empirical"},
    },
    "weights": {
        "wvtx_scale": {"coeff": 0.074, "sign": 1, "source": TRUE_DELTA},
        "wvtx_debug": {"coeff": 0.01, "sign": -1, "source": "delta_theta_smr"},
    },
    "degenerate": {
        "policy": "flag",
        "sentinel": -9999.0,
        "min_abs_cos_z": 1e-6,
        "min_abs_mass": 1e-6,
    },
    "analysis": {
        "make_plots": False,
        "output_dir": "plots",
    },
}


DEFAULT_CONFIG_PATH = "config/config.yaml"


def load_config(path):
    with open(path) as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {path}: {e}")


def load_run_config(path, **overrides):
    """
    Read the YAML file at `path` and build the RunConfig.

    The default path may be missing, in which case the built-in defaults
    are used; any other missing path is a ConfigurationError.
    """
    raw = {}
    if os.path.exists(path):
        raw = load_config(path)
    elif path != DEFAULT_CONFIG_PATH:
        raise ConfigurationError(f"Configuration file not found: {path}")
    else:
        print(f"[INFO] {path} not found, using built-in defaults")
    return build_config(raw, **overrides)


# sections replaced as a whole instead of merged key by key
REPLACED_SECTIONS = ("fit_vars", "variants", "weights")


def _merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if key in REPLACED_SECTIONS:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _finite(value, what):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ConfigurationError(f"{what} must be finite, got {value!r}")
    return number


def _seed(value, what):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{what} must be a non-negative integer, got {value!r}")
    return value


def _mapping(value, what):
    if not isinstance(value, dict):
        raise ConfigurationError(f"{what} must be a mapping, got {value!r}")
    return value


def _filter_range(value):
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigurationError(f"pool.filter_range must be [min, max] or null, got {value!r}")
    lo = _finite(value[0], "pool.filter_range min")
    hi = _finite(value[1], "pool.filter_range max")
    if lo > hi:
        raise ConfigurationError(f"pool.filter_range min {lo} is above max {hi}")
    return lo, hi


def build_config(raw=None, **overrides):
    """
    Validate a raw configuration mapping and return a RunConfig.

    Keyword overrides (fit_lin, fit_quad, trees, n_workers) come from the
    command line and win over the file. None values are ignored.
    """
    cfg = _merge(DEFAULT_CONFIG, _mapping(raw or {}, "configuration"))

    for key in ("fit_lin", "fit_quad"):
        if overrides.get(key) is not None:
            _mapping(cfg["smearing"], "smearing")[key] = overrides[key]
    for key in ("trees", "n_workers"):
        if overrides.get(key) is not None:
            cfg[key] = overrides[key]

    trees = cfg["trees"]
    if isinstance(trees, str):
        trees = [t for t in trees.split(",") if t]
    if not isinstance(trees, (list, tuple)):
        raise ConfigurationError(f"trees must be a list of tree names, got {trees!r}")
    if not trees:
        raise ConfigurationError("No input trees configured")

    n_workers = cfg["n_workers"]
    if isinstance(n_workers, bool) or not isinstance(n_workers, int) or n_workers < 1:
        raise ConfigurationError(f"n_workers must be a positive integer, got {n_workers!r}")

    fit_vars = {}
    for out_name, spec in _mapping(cfg["fit_vars"] or {}, "fit_vars").items():
        if not isinstance(spec, dict) or "branch" not in spec:
            raise ConfigurationError(f"fit_vars.{out_name} needs a 'branch' entry")
        fit_vars[out_name] = FitVar(
            spec["branch"], _finite(spec.get("scale", 1.0), f"fit_vars.{out_name}.scale")
        )

    smr = _mapping(cfg["smearing"], "smearing")
    variants = []
    for name, strategy in _mapping(smr.get("variants") or {}, "smearing.variants").items():
        if strategy not in STRATEGIES:
            raise ConfigurationError(
                f"Unknown smearing strategy {strategy!r} for variant {name!r}; "
                f"expected one of {STRATEGIES}"
            )
        variants.append(SmearVariant(str(name), strategy))

    pool = _mapping(smr["pool"], "smearing.pool")
    if not pool.get("branch"):
        raise ConfigurationError("smearing.pool needs a 'branch' entry")
    smearing = SmearConfig(
        seed=_seed(smr["seed"], "smearing.seed"),
        synth_seed=_seed(smr["synth_seed"], "smearing.synth_seed"),
        fit_lin=_finite(smr["fit_lin"], "smearing.fit_lin"),
        fit_quad=_finite(smr["fit_quad"], "smearing.fit_quad"),
        pool=PoolConfig(
            tree=str(pool["tree"]) if pool.get("tree") else None,
            branch=str(pool["branch"]),
            filter_range=_filter_range(pool.get("filter_range")),
        ),
        variants=tuple(variants),
    )

    known_sources = {TRUE_DELTA} | {v.delta_column for v in variants}
    weights = []
    for name, spec in _mapping(cfg["weights"] or {}, "weights").items():
        if not isinstance(spec, dict) or "coeff" not in spec:
            raise ConfigurationError(f"weights.{name} needs a 'coeff' entry, got {spec!r}")
        sign = spec.get("sign", 1)
        if sign not in (1, -1):
            raise ConfigurationError(f"weights.{name}.sign must be +1 or -1, got {sign!r}")
        source = spec.get("source", TRUE_DELTA)
        if source not in known_sources:
            raise ConfigurationError(
                f"weights.{name}.source {source!r} is not produced by this "
                f"configuration; known: {sorted(known_sources)}"
            )
        weights.append(
            WeightScheme(name, _finite(spec["coeff"], f"weights.{name}.coeff"), sign, source)
        )

    deg = _mapping(cfg["degenerate"], "degenerate")
    if deg.get("policy") not in DEGENERATE_POLICIES:
        raise ConfigurationError(
            f"degenerate.policy must be one of {DEGENERATE_POLICIES}, got {deg.get('policy')!r}"
        )
    degenerate = DegenerateConfig(
        policy=deg["policy"],
        sentinel=_finite(deg["sentinel"], "degenerate.sentinel"),
        min_abs_cos_z=abs(_finite(deg["min_abs_cos_z"], "degenerate.min_abs_cos_z")),
        min_abs_mass=abs(_finite(deg["min_abs_mass"], "degenerate.min_abs_mass")),
    )

    analysis = _mapping(cfg.get("analysis") or {}, "analysis")
    return RunConfig(
        trees=tuple(trees),
        n_workers=n_workers,
        fit_vars=fit_vars,
        smearing=smearing,
        weights=tuple(weights),
        degenerate=degenerate,
        make_plots=bool(analysis.get("make_plots", False)),
        output_dir=str(analysis.get("output_dir", "plots")),
    )
