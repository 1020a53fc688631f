"""
Per-tree processing for the vertex-smearing and variation-weight tools.

`smear_events` and `variation_weight_events` work on an already loaded
Awkward Array and return flat NumPy columns ready to be written out;
`process_tree` and `process_weights_tree` add the ntuple I/O around them.

Events where the kinematics are undefined (see kinematics.degenerate_mask
and weights.zero_delta_mask) never reach the engine. Depending on
`degenerate.policy` they are either kept with a sentinel value and a
False `*_ok` flag, or dropped from the output.
"""

import numpy as np
import awkward as ak

from src.analysis.config import (
    EVENT_ID_BRANCHES,
    TRUE_DELTA,
    TRUE_MOMENTUM_SUFFIXES,
    VERTEX_SUFFIXES,
    select_decay_mode,
)
from src.analysis.io import list_branches, load_events
from src.analysis.kinematics import (
    degenerate_mask,
    flight_direction,
    rest_frame_momentum,
    true_theta,
)
from src.analysis.physics import (
    MOMENTUM_SUFFIXES,
    b_mass,
    branch_names,
    el,
    four_vector_from_branches,
    m2_miss,
    q2,
)
from src.analysis.smearing import AngleSmearSampler
from src.analysis.weights import scheme_weights, zero_delta_mask


OBSERVABLES = ("mm2", "q2", "el")


def _numpy(values):
    return np.asarray(ak.to_numpy(values), dtype=np.float64)


def required_branches(mode, config, smear=True):
    """Branches to read from an input tree for the given decay mode."""
    branches = list(EVENT_ID_BRANCHES)
    branches += branch_names(mode.b_prefix, VERTEX_SUFFIXES)
    if smear:
        branches += [fv.branch for fv in config.fit_vars.values()]
        for prefix in (mode.b_prefix, mode.d_prefix, mode.mu_prefix):
            branches += branch_names(prefix, MOMENTUM_SUFFIXES)
    if config.needs_truth:
        branches += branch_names(mode.b_prefix, TRUE_MOMENTUM_SUFFIXES)
    return branches


def fit_var_columns(arrays, fit_vars):
    """Copies of the upstream fit variables converted to GeV(^2)."""
    return {name: _numpy(arrays[fv.branch]) * fv.scale for name, fv in fit_vars.items()}


def vertex_columns(arrays, mode):
    return [_numpy(arrays[br]) for br in branch_names(mode.b_prefix, VERTEX_SUFFIXES)]


def theta_columns(arrays, mode, vertices=None):
    """thetaB_reco, thetaB_true and their difference delta_theta_true."""
    if vertices is None:
        vertices = vertex_columns(arrays, mode)
    theta_reco = np.asarray(flight_direction(*vertices).theta)
    theta_true = np.asarray(
        true_theta(*(_numpy(arrays[br]) for br in branch_names(mode.b_prefix, TRUE_MOMENTUM_SUFFIXES)))
    )
    return {
        "thetaB_reco": theta_reco,
        "thetaB_true": theta_true,
        TRUE_DELTA: theta_reco - theta_true,
    }


def finite_p4(v4):
    """True for events whose four-momentum components are all finite."""
    return np.atleast_1d(
        np.isfinite(np.asarray(v4.px))
        & np.isfinite(np.asarray(v4.py))
        & np.isfinite(np.asarray(v4.pz))
        & np.isfinite(np.asarray(v4.E))
    )


def rest_frame_columns(v4_b_reco, v4_d, v4_mu, v3_b_flight, m_ref, degenerate, suffix=""):
    """
    m2_miss, q2 and E_l* for every event, with the B momentum estimated
    along v3_b_flight.

    Returns (columns, ok) where ok marks the events that were evaluated;
    the others hold degenerate.sentinel. Events with a non-finite companion
    or lepton momentum are not evaluated either.
    """
    ok = ~np.atleast_1d(
        degenerate_mask(
            v4_b_reco, v3_b_flight, degenerate.min_abs_cos_z, degenerate.min_abs_mass
        )
    )
    ok &= finite_p4(v4_d) & finite_p4(v4_mu)
    columns = {f"{name}{suffix}": np.full(len(ok), degenerate.sentinel) for name in OBSERVABLES}

    if np.any(ok):
        v4_b_reco_ok = v4_b_reco[ok]
        v4_b_est = rest_frame_momentum(
            v4_b_reco_ok,
            v3_b_flight[ok],
            m_ref,
            degenerate.min_abs_cos_z,
            degenerate.min_abs_mass,
        )
        columns[f"mm2{suffix}"][ok] = m2_miss(v4_b_est, v4_b_reco_ok)
        columns[f"q2{suffix}"][ok] = q2(v4_b_est, v4_d[ok])
        columns[f"el{suffix}"][ok] = el(v4_b_est, v4_mu[ok])

    return columns, ok


def weight_columns(columns, schemes, degenerate):
    """
    Up/down weights for every scheme whose source delta is in `columns`.

    Returns (weights, flags, skipped): flags maps "<scheme>_ok" to the mask
    of events with a usable delta, skipped lists schemes without a source.
    """
    weights, flags, skipped = {}, {}, []
    for scheme in schemes:
        if scheme.source not in columns:
            skipped.append(scheme.name)
            continue

        delta = np.asarray(columns[scheme.source], dtype=np.float64)
        ok = ~np.atleast_1d(zero_delta_mask(delta))
        w_p = np.full(len(ok), degenerate.sentinel)
        w_m = np.full(len(ok), degenerate.sentinel)
        if np.any(ok):
            w_p[ok], w_m[ok] = scheme_weights(delta[ok], scheme)

        name_p, name_m = scheme.columns
        weights[name_p] = w_p
        weights[name_m] = w_m
        flags[f"{scheme.name}_ok"] = ok
    return weights, flags, skipped


def apply_degenerate_policy(columns, flags, policy):
    """
    "flag": keep every event, add the `*_ok` columns.
    "drop": keep only events that pass every flag.

    Returns (columns, n_failed) with n_failed per flag.
    """
    n_failed = {name: int(np.count_nonzero(~ok)) for name, ok in flags.items()}

    if policy == "drop":
        keep = np.ones(len(next(iter(columns.values()))), dtype=bool)
        for ok in flags.values():
            keep &= ok
        columns = {name: np.asarray(values)[keep] for name, values in columns.items()}
    else:
        columns = {**columns, **flags}

    return columns, n_failed


def smear_events(arrays, mode, config, sampler):
    """
    Rest-frame variables for one tree, unsmeared and for every smearing
    variant, plus the variation weights whose source is available.

    Returns (columns, n_failed).
    """
    smearing = config.smearing
    degenerate = config.degenerate
    n_events = len(arrays)

    v4_b_reco = four_vector_from_branches(arrays, mode.b_prefix)
    v4_d = four_vector_from_branches(arrays, mode.d_prefix)
    v4_mu = four_vector_from_branches(arrays, mode.mu_prefix)
    vertices = vertex_columns(arrays, mode)

    columns = {name: ak.to_numpy(arrays[name]) for name in EVENT_ID_BRANCHES}
    columns.update(fit_var_columns(arrays, config.fit_vars))

    flags = {}
    kin, flags["kin_ok"] = rest_frame_columns(
        v4_b_reco, v4_d, v4_mu, flight_direction(*vertices), mode.ref_mass, degenerate
    )
    columns.update(kin)
    with np.errstate(invalid="ignore"):
        m_b = np.atleast_1d(np.asarray(b_mass(v4_b_reco), dtype=np.float64))
    columns["b_m"] = np.where(np.isfinite(m_b), m_b, degenerate.sentinel)

    if config.needs_truth:
        columns.update(theta_columns(arrays, mode, vertices))

    for variant in smearing.variants:
        if variant.strategy == "empirical":
            delta = sampler.draw_uniform(n_events)
        else:
            delta = sampler.synthesize(columns[TRUE_DELTA], smearing.fit_lin, smearing.fit_quad)
        delta = np.asarray(delta, dtype=np.float64)

        v3_b_flight = flight_direction(*vertices, smear_angle=delta)
        columns[variant.delta_column] = delta
        columns[f"theta_b_{variant.name}"] = np.asarray(v3_b_flight.theta)

        suffix = f"_{variant.name}"
        kin, flags[f"kin_ok{suffix}"] = rest_frame_columns(
            v4_b_reco, v4_d, v4_mu, v3_b_flight, mode.ref_mass, degenerate, suffix
        )
        columns.update(kin)

    weights, weight_flags, _ = weight_columns(columns, config.weights, degenerate)
    columns.update(weights)
    flags.update(weight_flags)

    return apply_degenerate_policy(columns, flags, degenerate.policy)


def variation_weight_events(arrays, mode, config):
    """
    Up/down weights from |thetaB_reco - thetaB_true| for one tree.

    Returns (columns, n_failed).
    """
    columns = {name: ak.to_numpy(arrays[name]) for name in EVENT_ID_BRANCHES}
    thetas = theta_columns(arrays, mode)
    columns["thetaB_reco"] = thetas["thetaB_reco"]
    columns["thetaB_true"] = thetas["thetaB_true"]

    truth_schemes = [w for w in config.weights if w.source == TRUE_DELTA]
    weights, flags, _ = weight_columns(thetas, truth_schemes, config.degenerate)
    columns.update(weights)

    return apply_degenerate_policy(columns, flags, config.degenerate.policy)


def _report(tree_name, n_events, n_failed):
    for flag, n in n_failed.items():
        if n:
            print(f"[WARN] {tree_name}: {n}/{n_events} event(s) failed {flag}")


def _prepare(filename, tree_name, config, smear):
    print(f"Working on tree: {tree_name}")
    mode = select_decay_mode(list_branches(filename, tree_name), tree_name)
    print(f"[INFO] {tree_name}: {mode.name}, reference B mass {mode.ref_mass} MeV")

    branches = required_branches(mode, config, smear=smear)
    if smear:
        for name, fv in config.fit_vars.items():
            print(f"Define {name} as {fv.branch} * {fv.scale:g}")
    return mode, load_events(filename, tree_name, branches)


def process_tree(filename, tree_name, pool, config):
    """
    Vertex-smearing pass over one tree.

    The sampler is created here, so every tree starts from the configured
    seeds regardless of which worker runs it.

    Returns (columns, info).
    """
    mode, arrays = _prepare(filename, tree_name, config, smear=True)
    sampler = AngleSmearSampler(pool, config.smearing.seed, config.smearing.synth_seed)

    columns, n_failed = smear_events(arrays, mode, config, sampler)
    _report(tree_name, len(arrays), n_failed)

    info = {
        "tree": tree_name,
        "mode": mode.name,
        "n_events": len(arrays),
        "n_written": len(columns["eventNumber"]),
        "n_failed": n_failed,
    }
    return columns, info


def process_weights_tree(filename, tree_name, config):
    """Variation-weight pass over one tree. Returns (columns, info)."""
    mode, arrays = _prepare(filename, tree_name, config, smear=False)

    columns, n_failed = variation_weight_events(arrays, mode, config)
    _report(tree_name, len(arrays), n_failed)

    info = {
        "tree": tree_name,
        "mode": mode.name,
        "n_events": len(arrays),
        "n_written": len(columns["eventNumber"]),
        "n_failed": n_failed,
    }
    return columns, info
