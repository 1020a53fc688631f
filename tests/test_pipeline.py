import numpy as np
import pytest
ak = pytest.importorskip("awkward")
pytest.importorskip("vector")
from src.analysis import pipeline
from src.analysis.config import B0_M, B_M, build_config, select_decay_mode
from src.analysis.exceptions import DecayModeError
from src.analysis.kinematics import flight_direction, rest_frame_momentum
from src.analysis.physics import four_vector_from_branches, m2_miss, q2
from src.analysis.smearing import AngleSmearSampler, load_pool
from src.analysis.weights import variation_weights

POOL = load_pool([0.01, 0.02, 0.05, 0.1])
SENTINEL = -9999.0


def _config(**raw):
    raw.setdefault("smearing", {"variants": {"smr": "empirical", "smr_fit": "parametric"}})
    return build_config(raw)


def _mode(arrays):
    return select_decay_mode(arrays.fields)


def _smear(arrays, config):
    sampler = AngleSmearSampler(POOL, config.smearing.seed, config.smearing.synth_seed)
    return pipeline.smear_events(arrays, _mode(arrays), config, sampler)


def test_required_branches_for_neutral_mode(b0_events):
    config = _config()
    branches = pipeline.required_branches(_mode(b0_events), config)

    assert set(branches) <= set(b0_events.fields)
    assert {"b0_ENDVERTEX_X", "dst_PE", "mu_PX", "b0_TRUEP_Z", "FitVar_El"} <= set(branches)

    weights_only = pipeline.required_branches(_mode(b0_events), config, smear=False)
    assert "mu_PX" not in weights_only
    assert "b0_TRUEP_X" in weights_only


def test_fit_var_columns_are_rescaled(b0_events):
    cols = pipeline.fit_var_columns(b0_events, _config().fit_vars)
    assert np.allclose(cols["q2_input"], [4.0, 6.0, 8.0])
    assert np.allclose(cols["mm2_input"], [1.0, -0.5, 2.0])
    assert np.allclose(cols["el_input"], [1.5, 1.2, 0.9])


def test_smear_events_flags_transverse_flight(b0_events):
    columns, n_failed = _smear(b0_events, _config())

    assert columns["kin_ok"].tolist() == [True, True, False]
    assert n_failed["kin_ok"] == 1
    for name in ("mm2", "q2", "el"):
        assert columns[name][2] == SENTINEL
        assert np.all(np.isfinite(columns[name]))
    assert columns["eventNumber"].tolist() == [10, 11, 12]


def test_smear_events_unsmeared_values_match_engine(b0_events):
    columns, _ = _smear(b0_events, _config())

    v4_b_reco = four_vector_from_branches(b0_events, "b0")[:2]
    vertices = pipeline.vertex_columns(b0_events[:2], _mode(b0_events))
    v4_b_est = rest_frame_momentum(v4_b_reco, flight_direction(*vertices), B0_M)

    assert np.allclose(columns["mm2"][:2], m2_miss(v4_b_est, v4_b_reco))
    assert np.allclose(columns["b_m"], 3500.0)


def test_smear_events_variants_and_weights(b0_events):
    config = _config()
    columns, _ = _smear(b0_events, config)

    # empirical deltas come from the pool, drawn in row order
    expected = AngleSmearSampler(POOL, seed=42).draw_uniform(3)
    assert np.array_equal(columns["delta_theta_smr"], expected)
    assert np.allclose(columns["theta_b_smr"], columns["thetaB_reco"] + expected)

    # parametric deltas follow the fit of the true delta
    x = np.abs(columns["delta_theta_true"])
    assert np.allclose(np.abs(columns["delta_theta_smr_fit"]), 0.105 * x + 6.29 * x**2)

    for name in ("mm2_smr", "q2_smr", "el_smr", "mm2_smr_fit", "kin_ok_smr_fit"):
        assert len(columns[name]) == 3

    w_p, w_m = variation_weights(columns["delta_theta_true"], 0.074)
    assert np.allclose(columns["wvtx_scale_p"], w_p)
    assert np.allclose(columns["wvtx_scale_m"], w_m)
    assert columns["wvtx_debug_ok"].all()


def test_smear_events_is_reproducible(b0_events):
    first, _ = _smear(b0_events, _config())
    second, _ = _smear(b0_events, _config())
    for name in first:
        assert np.array_equal(first[name], second[name])


def test_smear_events_drop_policy(b0_events):
    columns, n_failed = _smear(b0_events, _config(degenerate={"policy": "drop"}))

    assert columns["eventNumber"].tolist() == [10, 11]
    assert "kin_ok" not in columns
    assert n_failed["kin_ok"] == 1
    assert all(len(values) == 2 for values in columns.values())


def test_smear_events_flags_non_finite_companion_and_lepton(b0_columns):
    b0_columns["dst_PE"][0] = np.nan
    b0_columns["mu_PX"][1] = np.inf
    arrays = ak.Array(b0_columns)

    columns, n_failed = _smear(arrays, _config())

    assert columns["kin_ok"].tolist() == [False, False, False]
    assert columns["kin_ok_smr"].tolist() == [False, False, True]
    assert n_failed["kin_ok"] == 3
    for name in ("q2", "el", "q2_smr", "el_smr", "q2_smr_fit", "el_smr_fit"):
        assert columns[name][0] == SENTINEL and columns[name][1] == SENTINEL
    # nothing non-finite is ever written out
    for name, values in columns.items():
        if np.issubdtype(values.dtype, np.floating):
            assert np.all(np.isfinite(values)), name


def test_smear_events_drop_policy_removes_non_finite_rows(b0_columns):
    b0_columns["mu_PX"][1] = np.inf
    arrays = ak.Array(b0_columns)

    columns, _ = _smear(arrays, _config(degenerate={"policy": "drop"}))

    assert columns["eventNumber"].tolist() == [10]


def test_smear_events_b_mass_sentinel_for_non_finite_candidate(b0_columns):
    b0_columns["b0_PE"][2] = np.nan
    columns, _ = _smear(ak.Array(b0_columns), _config())

    assert columns["b_m"][2] == SENTINEL
    assert np.allclose(columns["b_m"][:2], 3500.0)


def test_smear_events_charged_mode_uses_charged_b_mass(bminus_events):
    mode = _mode(bminus_events)
    assert mode.b_prefix == "b"
    assert mode.ref_mass == B_M

    columns, _ = _smear(bminus_events, _config())

    v4_b_reco = four_vector_from_branches(bminus_events, "b")[:2]
    v4_d = four_vector_from_branches(bminus_events, "d0")[:2]
    vertices = pipeline.vertex_columns(bminus_events[:2], mode)
    v4_b_est = rest_frame_momentum(v4_b_reco, flight_direction(*vertices), B_M)

    assert columns["kin_ok"].tolist() == [True, True, False]
    assert np.allclose(columns["mm2"][:2], m2_miss(v4_b_est, v4_b_reco))
    assert np.allclose(columns["q2"][:2], q2(v4_b_est, v4_d))


def test_weight_columns_flag_zero_delta():
    config = _config()
    scheme = [w for w in config.weights if w.name == "wvtx_scale"]

    weights, flags, skipped = pipeline.weight_columns(
        {"delta_theta_true": np.array([0.1, 0.0])}, scheme, config.degenerate
    )

    assert flags["wvtx_scale_ok"].tolist() == [True, False]
    assert weights["wvtx_scale_p"][1] == SENTINEL
    assert weights["wvtx_scale_p"][0] == pytest.approx(1 + 0.074 * np.log(0.1))
    assert skipped == []


def test_weight_columns_skip_missing_source():
    config = _config()
    weights, flags, skipped = pipeline.weight_columns({}, config.weights, config.degenerate)
    assert weights == {} and flags == {}
    assert skipped == ["wvtx_scale", "wvtx_debug"]


def test_variation_weight_events(b0_events):
    config = _config()
    columns, n_failed = pipeline.variation_weight_events(b0_events, _mode(b0_events), config)

    assert set(columns) == {
        "runNumber",
        "eventNumber",
        "thetaB_reco",
        "thetaB_true",
        "wvtx_scale_p",
        "wvtx_scale_m",
        "wvtx_scale_ok",
    }
    thetas = pipeline.theta_columns(b0_events, _mode(b0_events))
    w_p, _ = variation_weights(thetas["thetaB_reco"] - thetas["thetaB_true"], 0.074)
    assert np.allclose(columns["wvtx_scale_p"], w_p)
    assert n_failed == {"wvtx_scale_ok": 0}


def test_process_tree_reads_and_reports(monkeypatch, b0_events):
    monkeypatch.setattr(pipeline, "list_branches", lambda fname, tree: b0_events.fields)
    monkeypatch.setattr(
        pipeline, "load_events", lambda fname, tree, branches: b0_events[branches]
    )

    columns, info = pipeline.process_tree("dummy.root", "TupleB0/DecayTree", POOL, _config())

    assert info["tree"] == "TupleB0/DecayTree"
    assert info["n_events"] == 3
    assert info["n_written"] == 3
    assert info["n_failed"]["kin_ok"] == 1
    assert "mm2_smr" in columns


def test_process_tree_unknown_decay_mode(monkeypatch):
    monkeypatch.setattr(pipeline, "list_branches", lambda fname, tree: ["k_PX"])

    with pytest.raises(DecayModeError):
        pipeline.process_weights_tree("dummy.root", "TupleB0/DecayTree", _config())
