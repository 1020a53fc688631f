import sys
import os

import numpy as np
import pytest

# Absolute path to project root
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_PATH = os.path.join(PROJECT_ROOT, "src")

# Prepend src to sys.path so it overrides site-packages
sys.path.insert(0, SRC_PATH)
sys.path.insert(0, PROJECT_ROOT)


def _energy(px, py, pz, mass):
    return np.sqrt(px**2 + py**2 + pz**2 + mass**2)


def _semileptonic_columns(b_prefix, d_prefix, d_mass):
    """
    Branches of three B -> D mu nu candidates (MeV, mm).

    Events 0 and 1 fly forward; event 2 has a purely transverse flight
    direction, where the rest-frame approximation is undefined.
    """
    flight = np.array([[0.1, 0.2, 10.0], [0.0, -0.3, 8.0], [1.0, 1.0, 0.0]])
    pv = np.array([[0.01, -0.02, 1.0], [0.0, 0.0, -5.0], [0.5, 0.5, 2.0]])
    end_vtx = pv + flight

    unit = flight / np.linalg.norm(flight, axis=1, keepdims=True)
    p_b = unit * np.array([[60000.0], [45000.0], [30000.0]])
    e_b = _energy(*p_b.T, 3500.0)

    p_d = 0.6 * p_b
    e_d = _energy(*p_d.T, d_mass)

    p_mu = p_b - p_d
    e_mu = e_b - e_d

    true_p = p_b + np.array([[50.0, -80.0, 0.0], [120.0, 30.0, 0.0], [0.0, 0.0, 400.0]])

    columns = {
        "runNumber": np.array([1, 1, 2], dtype=np.int32),
        "eventNumber": np.array([10, 11, 12], dtype=np.int64),
        "FitVar_q2": np.array([4.0e6, 6.0e6, 8.0e6]),
        "FitVar_Mmiss2": np.array([1.0e6, -0.5e6, 2.0e6]),
        "FitVar_El": np.array([1500.0, 1200.0, 900.0]),
    }
    for prefix, p, e in ((d_prefix, p_d, e_d), ("mu", p_mu, e_mu), (b_prefix, p_b, e_b)):
        columns[f"{prefix}_PX"] = p[:, 0]
        columns[f"{prefix}_PY"] = p[:, 1]
        columns[f"{prefix}_PZ"] = p[:, 2]
        columns[f"{prefix}_PE"] = e
    for axis, i in zip("XYZ", range(3)):
        columns[f"{b_prefix}_TRUEP_{axis}"] = true_p[:, i]
        columns[f"{b_prefix}_ENDVERTEX_{axis}"] = end_vtx[:, i]
        columns[f"{b_prefix}_OWNPV_{axis}"] = pv[:, i]
    return columns


@pytest.fixture
def b0_columns():
    """B0 -> D* mu nu branches as plain NumPy columns, free to modify."""
    return _semileptonic_columns("b0", "dst", 2010.26)


@pytest.fixture
def b0_events(b0_columns):
    ak = pytest.importorskip("awkward")
    return ak.Array(b0_columns)


@pytest.fixture
def bminus_events():
    """Same candidates as b0_events, as B- -> D0 mu nu."""
    ak = pytest.importorskip("awkward")
    return ak.Array(_semileptonic_columns("b", "d0", 1864.84))
