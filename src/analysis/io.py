"""
I/O utilities for reading and writing LHCb ntuples with uproot
"""

import numpy as np
import uproot
import awkward as ak

from src.analysis.exceptions import BranchMissingError, DataLoadError


def _find_tree(file, name=None):
    """
    Detect the TTree to read inside the ROOT file.

    Logic:
    1. If `name` is given, use it (with or without ';1' versioning).
    2. Otherwise, use the only TTree in the file, if there is exactly one.
    3. Otherwise, search for a TTree inside subdirectories.
    """
    keys = file.keys()

    if name is not None:
        # Direct match
        if name in keys:
            return file[name]

        # Match with ';1' versioning
        if f"{name};1" in keys:
            return file[f"{name};1"]

        raise DataLoadError(f"Tree {name} doesn't exist in {file.file_path}")

    # If there is exactly one TTree in the root file:
    tt_keys = [k for k, v in file.classnames().items() if v == "TTree"]
    if len(tt_keys) == 1:
        return file[tt_keys[0]]

    # Search inside directories
    for key in keys:
        object = file[key]
        if getattr(object, "classname", "") == "TTree" or not hasattr(object, "keys"):
            continue
        for subkey in object.keys():
            full = f"{key}/{subkey}"
            if file[full].classname == "TTree":
                return file[full]

    raise DataLoadError(f"No TTree found in file {file.file_path}")


def _open(filename):
    try:
        return uproot.open(filename)
    except FileNotFoundError:
        raise DataLoadError(f"Input ntuple not found: {filename}")


def list_branches(filename, tree_name):
    """Names of all branches of a tree."""
    with _open(filename) as f:
        return list(_find_tree(f, tree_name).keys())


def branch_exists(filename, tree_name, branch):
    return branch in list_branches(filename, tree_name)


def load_events(filename, tree_name, branches):
    """
    Load selected branches of a tree into an Awkward Array.
    """
    with _open(filename) as f:
        tree = _find_tree(f, tree_name)
        available = set(tree.keys())
        for br in branches:
            if br not in available:
                raise BranchMissingError(br, tree_name)
        arrays = tree.arrays(list(branches), library="ak")

    return arrays


def load_delta_theta(filename, tree_name="Smear", branch="Delta"):
    """
    Read the column of (reco - true) B flight angle differences used to
    build the empirical smearing pool. tree_name=None picks the only TTree
    of the file.
    """
    with _open(filename) as f:
        tree = _find_tree(f, tree_name)
        if branch not in tree.keys():
            raise BranchMissingError(branch, tree_name)
        values = tree[branch].array(library="np")

    return np.asarray(values, dtype=np.float64)


def write_trees(filename, trees):
    """
    Write {tree_name: {column: array}} into a new ROOT file.
    Tree names may contain directories, e.g. "TupleB0/DecayTree".
    """
    with uproot.recreate(filename) as f:
        for tree_name, columns in trees.items():
            f[tree_name] = {name: ak.to_numpy(values) for name, values in columns.items()}
