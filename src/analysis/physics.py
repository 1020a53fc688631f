"""
Four-vector helpers and rest-frame observables for semileptonic B decays.

Vectors are handled with the `vector` package. Every function accepts a
single event (vector objects, plain floats) or a whole column of events
(vector NumPy arrays), so the same code serves tests and full ntuples.
"""

import numpy as np
import awkward as ak
import vector


# MeV^2 -> GeV^2 and MeV -> GeV
MEV2_TO_GEV2 = 1e-6
MEV_TO_GEV = 1e-3

MOMENTUM_SUFFIXES = ("PX", "PY", "PZ", "PE")


def _column(values):
    return np.asarray(ak.to_numpy(values), dtype=np.float64)


def build_four_vector(px, py, pz, energy):
    """
    Construct four-momenta from Cartesian components.

    Parameters
    ----------
    px, py, pz : float or array-like
        Momentum components [MeV].
    energy : float or array-like
        Energy [MeV].

    Returns
    -------
    vector.MomentumObject4D or vector.MomentumNumpy4D
        A single four-vector for scalar input, an array of them otherwise.
    """
    if np.ndim(px) == 0:
        return vector.obj(px=float(px), py=float(py), pz=float(pz), E=float(energy))

    return vector.array(
        {
            "px": _column(px),
            "py": _column(py),
            "pz": _column(pz),
            "E": _column(energy),
        }
    )


def build_three_vector(x, y, z):
    """
    Construct spatial three-vectors (directions, displacements).
    Scalars give a vector object, arrays give a vector NumPy array.
    """
    if np.ndim(x) == 0:
        return vector.obj(x=float(x), y=float(y), z=float(z))

    return vector.array({"x": _column(x), "y": _column(y), "z": _column(z)})


def branch_names(prefix, suffixes):
    """["b0", ...] style prefixing: branch_names("b0", ["PX"]) -> ["b0_PX"]."""
    return [f"{prefix}_{s}" for s in suffixes]


def four_vector_from_branches(arrays, prefix):
    """
    Build four-momenta from the <prefix>_PX/PY/PZ/PE branches of an event
    record (an Awkward Array or a mapping of NumPy columns).
    """
    px, py, pz, energy = (arrays[name] for name in branch_names(prefix, MOMENTUM_SUFFIXES))
    return build_four_vector(px, py, pz, energy)


def m2_miss(v4_b_est, v4_b_reco):
    """
    Missing mass squared [GeV^2]: (p_B,est - p_B,reco)^2.

    Negative values are physical outcomes of the resolution and are
    returned unchanged.
    """
    return (v4_b_est - v4_b_reco).mass2 * MEV2_TO_GEV2


def q2(v4_b_est, v4_d):
    """Momentum transfer squared [GeV^2]: (p_B,est - p_D)^2."""
    return (v4_b_est - v4_d).mass2 * MEV2_TO_GEV2


def el(v4_b_est, v4_mu):
    """
    Lepton energy in the estimated B rest frame [GeV].

    The lepton is boosted into the centre-of-mass frame of v4_b_est and its
    energy component is returned.
    """
    v4_mu_rest = v4_mu.boostCM_of_p4(v4_b_est)
    return v4_mu_rest.E * MEV_TO_GEV


def b_mass(v4_b_reco):
    """Invariant mass of the reconstructed B candidate [MeV]."""
    return v4_b_reco.mass
