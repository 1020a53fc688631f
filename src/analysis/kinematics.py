"""
B flight direction and rest-frame approximation.

The B momentum is not fully measured in a semileptonic decay. Assuming it
points along the flight direction (PV -> decay vertex) and rescaling the
visible longitudinal momentum to the known B mass gives an estimate of the
full B four-momentum.
"""

import numpy as np

from src.analysis.config import B_M
from src.analysis.exceptions import ConfigurationError, DegenerateKinematicsError
from src.analysis.physics import build_four_vector, build_three_vector


MIN_ABS_COS_Z = 1e-6
MIN_ABS_MASS = 1e-6  # MeV


def flight_direction(end_vtx_x, own_pv_x, end_vtx_y, own_pv_y, end_vtx_z, own_pv_z,
                     smear_angle=0.0):
    """
    Displacement from the own primary vertex to the decay vertex, with its
    polar angle shifted by smear_angle [rad].

    Magnitude and azimuth of the displacement are kept; only the
    orientation is meaningful downstream. A zero displacement gives an
    undefined direction and is left for the caller to reject.
    """
    dx = np.subtract(end_vtx_x, own_pv_x)
    dy = np.subtract(end_vtx_y, own_pv_y)
    dz = np.subtract(end_vtx_z, own_pv_z)

    smear_angle = np.asarray(smear_angle, dtype=np.float64)
    if not np.any(smear_angle):
        return build_three_vector(dx, dy, dz)

    flight = build_three_vector(dx, dy, dz)
    mag, phi = flight.mag, flight.phi
    theta = flight.theta + smear_angle

    unchanged = smear_angle == 0
    x = np.where(unchanged, dx, mag * np.sin(theta) * np.cos(phi))
    y = np.where(unchanged, dy, mag * np.sin(theta) * np.sin(phi))
    z = np.where(unchanged, dz, mag * np.cos(theta))
    return build_three_vector(x, y, z)


def flight_theta(end_vtx_x, own_pv_x, end_vtx_y, own_pv_y, end_vtx_z, own_pv_z):
    """Polar angle of the reconstructed B flight direction [rad]."""
    return flight_direction(
        end_vtx_x, own_pv_x, end_vtx_y, own_pv_y, end_vtx_z, own_pv_z
    ).theta


def true_theta(true_px, true_py, true_pz):
    """Polar angle of the generator-level B momentum [rad]."""
    return build_three_vector(true_px, true_py, true_pz).theta


def degenerate_mask(v4_b_reco, v3_b_flight, min_abs_cos_z=MIN_ABS_COS_Z,
                    min_abs_mass=MIN_ABS_MASS):
    """
    True for events where the rest-frame approximation is undefined:
    flight direction (nearly) transverse, reconstructed mass (nearly) zero,
    or any non-finite input.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        cos_z = np.asarray(v3_b_flight.z) / np.asarray(v3_b_flight.mag)
        m_b = np.asarray(v4_b_reco.mass)
        pz_b = np.asarray(v4_b_reco.pz)

    return (
        ~np.isfinite(cos_z)
        | (np.abs(cos_z) < min_abs_cos_z)
        | ~np.isfinite(m_b)
        | (np.abs(m_b) < min_abs_mass)
        | ~np.isfinite(pz_b)
    )


def rest_frame_momentum(v4_b_reco, v3_b_flight, m_ref=B_M,
                        min_abs_cos_z=MIN_ABS_COS_Z, min_abs_mass=MIN_ABS_MASS):
    """
    Estimate the B four-momentum under a rest-mass constraint.

    Parameters
    ----------
    v4_b_reco : vector four-momentum (object or array)
        Visible (partially reconstructed) B four-momentum [MeV].
    v3_b_flight : vector three-vector (object or array)
        B flight direction; only its orientation is used.
    m_ref : float
        Reference B mass [MeV].

    Returns
    -------
    vector four-momentum
        |p| = (m_ref / m_reco) * pz_reco / cos_z along the flight direction,
        with E = sqrt(|p|^2 + m_ref^2).

    Raises
    ------
    ConfigurationError
        If m_ref is not strictly positive.
    DegenerateKinematicsError
        If any event fails `degenerate_mask`. Mask those events out first.
    """
    if not m_ref > 0:
        raise ConfigurationError(f"Reference B mass must be positive, got {m_ref}")

    bad = degenerate_mask(v4_b_reco, v3_b_flight, min_abs_cos_z, min_abs_mass)
    n_bad = int(np.count_nonzero(bad))
    if n_bad:
        raise DegenerateKinematicsError(
            f"{n_bad} event(s) with transverse flight direction or vanishing "
            f"reconstructed mass",
            n_bad=n_bad,
        )

    m_b = v4_b_reco.mass
    pz_b = v4_b_reco.pz

    unit = v3_b_flight.unit()
    cos_x, cos_y, cos_z = unit.x, unit.y, unit.z

    p_mag = (m_ref / m_b) * pz_b / cos_z
    return build_four_vector(
        p_mag * cos_x,
        p_mag * cos_y,
        p_mag * cos_z,
        np.sqrt(p_mag * p_mag + m_ref * m_ref),
    )
