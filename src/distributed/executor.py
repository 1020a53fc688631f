"""
Dask-based execution helpers

This module hides the details of starting a local Dask cluster
and submitting per-tree processing tasks.
"""

from dask.distributed import Client, LocalCluster
from dask import delayed


def create_local_client(n_workers=4, threads_per_worker=1):
    """
    Create a local Dask client with a LocalCluster.

    Parameters
    ----------
    n_workers : int
        Number of workers to start.
    threads_per_worker : int
        Number of threads per worker.

    Returns
    -------
    dask.distributed.Client
        Connected Dask client.
    """
    cluster = LocalCluster(
        n_workers=n_workers,
        threads_per_worker=threads_per_worker,
        processes=False,  # threads-only, safe in WSL
    )
    client = Client(cluster)
    return client


def map_trees(client, filename, tree_names, process_function, *args):
    """
    Submit a per-tree processing function as Dask delayed tasks.

    Each tree owns its random generators, so the results do not depend on
    how the trees are spread over workers.

    Parameters
    ----------
    client : dask.distributed.Client
        Active Dask client.
    filename : str
        Input ntuple.
    tree_names : list of str
        Trees to process, e.g. "TupleB0/DecayTree".
    process_function : callable
        Function of the form process_function(filename, tree_name, *args)
        that returns (columns, info).
    *args
        Extra arguments passed to the processing function (pool, config).

    Returns
    -------
    list of delayed objects representing per-tree results, in tree order.
    """
    tasks = [
        delayed(process_function)(filename, tree_name, *args)
        for tree_name in tree_names
    ]
    return tasks


def compute_tasks(client, tasks):
    """Run delayed tasks on the client and return their results in order."""
    return client.gather(client.compute(tasks))


def run_trees(filename, tree_names, process_function, *args, n_workers=1):
    """
    Process every tree, serially for n_workers == 1, on a local Dask
    cluster otherwise. Results come back in tree order.
    """
    n_trees = len(tree_names)

    # Serial path for N=1: avoids cluster start-up for the common case
    if n_workers == 1:
        results = []
        for i, tree_name in enumerate(tree_names, start=1):
            results.append(process_function(filename, tree_name, *args))
            print(f"[{i}/{n_trees}] Completed {tree_name}")
        return results

    client = create_local_client(n_workers=min(n_workers, n_trees))
    # client.close() leaves a cluster passed in as an object running
    cluster = client.cluster
    try:
        tasks = map_trees(client, filename, tree_names, process_function, *args)
        results = compute_tasks(client, tasks)
    finally:
        client.close()
        cluster.close()
    print(f"[{n_trees}/{n_trees}] Completed {', '.join(tree_names)}")
    return results
