"""
Up/down variation weights from the B flight-angle resolution.

Events are scaled by 1 +/- coeff * log|delta theta|, so events with a large
|theta_reco - theta_true| get weighted up in one variation and down in the
other. The overall normalisation is not preserved; the fit takes care of it.
"""

import numpy as np

from src.analysis.exceptions import DegenerateKinematicsError


def zero_delta_mask(delta_theta):
    """True where the log transform is undefined (zero or non-finite delta)."""
    delta_theta = np.asarray(delta_theta, dtype=np.float64)
    return ~np.isfinite(delta_theta) | (delta_theta == 0)


def variation_weights(delta_theta, coeff, sign=1):
    """
    Return (w_p, w_m) = (1 + sign*t, 1 - sign*t), t = coeff * log|delta_theta|.

    sign=+1 is the "scale" convention (w_p = 1 + t), sign=-1 the opposite one.

    Raises
    ------
    DegenerateKinematicsError
        If any delta is zero or non-finite; log|0| would put infinities into
        the weights.
    """
    bad = zero_delta_mask(delta_theta)
    n_bad = int(np.count_nonzero(bad))
    if n_bad:
        raise DegenerateKinematicsError(
            f"{n_bad} event(s) with zero or non-finite delta theta", n_bad=n_bad
        )

    term = sign * coeff * np.log(np.abs(delta_theta))
    w_p, w_m = 1 + term, 1 - term
    if np.ndim(w_p) == 0:
        return float(w_p), float(w_m)
    return w_p, w_m


def scheme_weights(delta_theta, scheme):
    """variation_weights() with the coefficient and sign of a WeightScheme."""
    return variation_weights(delta_theta, scheme.coeff, scheme.sign)
