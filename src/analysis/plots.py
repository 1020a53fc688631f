"""
Control histograms of the rest-frame variables.

One histogram per observable and per smearing suffix ("" for the unsmeared
variables), filled with the events that passed the kinematic checks.
"""

import os

import numpy as np
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import hist
from hist import Hist


# name -> (nbins, min, max, label)
OBSERVABLE_AXES = {
    "mm2": (60, -2.0, 10.0, r"$m^2_{\mathrm{miss}}\,\mathrm{[GeV^2]}$"),
    "q2": (60, -2.0, 12.0, r"$q^2\,\mathrm{[GeV^2]}$"),
    "el": (60, 0.0, 3.0, r"$E^{*}_{\ell}\,\mathrm{[GeV]}$"),
}


def observable_hists(columns, suffixes=("",)):
    """
    Fill {"mm2_smr": Hist, ...} from the output columns of one tree.

    Events flagged False in the matching kin_ok column are skipped; when
    the flag columns were dropped every event is filled.
    """
    hists = {}
    for suffix in suffixes:
        ok = columns.get(f"kin_ok{suffix}")
        for obs, (nbins, lo, hi, label) in OBSERVABLE_AXES.items():
            name = f"{obs}{suffix}"
            if name not in columns:
                continue
            axis = hist.axis.Regular(nbins, lo, hi, name=obs, label=label)
            h = Hist(axis)
            values = np.asarray(columns[name])
            if ok is not None:
                values = values[np.asarray(ok, dtype=bool)]
            if values.size > 0:
                h.fill(values)
            hists[name] = h
    return hists


def merge_hists(hist_dicts):
    """Add histograms with the same name bin-by-bin."""
    total = {}
    for hists in hist_dicts:
        for name, h in hists.items():
            if name in total:
                total[name] += h
            else:
                total[name] = h.copy()
    return total


def save_observable_plots(hists, outdir):
    """Step plots with Poisson errors, one PNG per histogram."""
    os.makedirs(outdir, exist_ok=True)
    paths = []
    for name, h in hists.items():
        counts = h.values()
        edges = h.axes[0].edges
        centers = 0.5 * (edges[:-1] + edges[1:])
        errors = np.sqrt(counts)

        fig, ax = plt.subplots()
        ax.step(edges[:-1], counts, where="post", label="Events")
        ax.errorbar(
            centers,
            counts,
            yerr=errors,
            fmt=".",
            markersize=2,
            linewidth=0.5,
            label="Statistical errors",
        )
        ax.set_xlabel(h.axes[0].label)
        ax.set_ylabel("Events")
        ax.set_title(name)
        ax.legend(loc="best", frameon=False)
        fig.tight_layout()
        path = os.path.join(outdir, f"{name}.png")
        fig.savefig(path)
        plt.close(fig)
        paths.append(path)
    return paths
