"""
Random angular smearing of the B flight direction.

Two ways to get a delta theta per event:
  * empirical: draw uniformly from a pool of (reco - true) angle differences
    measured on simulation and stored in an auxiliary ntuple;
  * parametric: sign * (lin * |x| + quad * x^2) of the event's own true
    delta theta, with a random sign.

Each strategy has its own seeded NumPy generator. A sampler is built per
tree, so every tree sees the same sequence for the same input.
"""

from dataclasses import dataclass

import numpy as np

from src.analysis.exceptions import ConfigurationError


RAND_SEED = 42
SYNTH_SEED = 43


@dataclass(frozen=True)
class EmpiricalAnglePool:
    """Read-only pool of angular deltas [rad]."""
    values: np.ndarray

    def __len__(self):
        return len(self.values)


def load_pool(values, filter_range=None):
    """
    Build an EmpiricalAnglePool from raw delta theta values.

    With filter_range=(lo, hi), values outside [lo, hi] are discarded and the
    survivors are stored as absolute values. Without it, the raw signed
    values are kept as they are.
    """
    values = np.asarray(values, dtype=np.float64).ravel()

    if filter_range is not None:
        lo, hi = filter_range
        values = np.abs(values[(values >= lo) & (values <= hi)])
    else:
        values = values.copy()

    if values.size == 0:
        raise ConfigurationError(
            f"Empirical angle pool is empty (filter_range={filter_range})"
        )

    values.setflags(write=False)
    return EmpiricalAnglePool(values)


class AngleSmearSampler:
    """
    Seeded source of per-event angle deltas.

    Draws are taken in row order and advance each stream once per event.
    """

    def __init__(self, pool=None, seed=RAND_SEED, synth_seed=SYNTH_SEED):
        self.pool = pool
        self.seed = seed
        self.synth_seed = synth_seed
        self.reset()

    def reset(self):
        self._rng = np.random.default_rng(self.seed)
        self._sign_rng = np.random.default_rng(self.synth_seed)

    def draw_uniform(self, size=None):
        """Pool value(s) at uniformly drawn indices in [0, len(pool))."""
        if self.pool is None:
            raise ConfigurationError("No empirical angle pool loaded")
        idx = self._rng.integers(0, len(self.pool), size=size)
        return self.pool.values[idx]

    def synthesize(self, true_delta, fit_lin, fit_quad):
        """
        sign * (fit_lin * |x| + fit_quad * |x|^2) with x the true delta theta
        and sign = -1 or +1 with equal probability.
        """
        x = np.abs(np.asarray(true_delta, dtype=np.float64))
        sign = 2 * self._sign_rng.integers(0, 2, size=x.shape or None) - 1
        result = sign * (fit_lin * x + fit_quad * x * x)
        return float(result) if np.ndim(result) == 0 else result
