r"""
Directed flow network topology.

A stream network has `n_node` nodes and `n_edge` directed edges :math:`e = (f_e \to t_e)` pointing downstream, each with a distance :math:`d_e \geq 0`.  Every node carries a positive flow :math:`F_n`, and a set of source nodes has no upstream conditioning.

The edge set must be a directed acyclic graph, and every non-source node must receive at least one edge of positive distance, otherwise its conditional variance

.. math:: v_n = \sum_{e: t_e = n} \frac{F_{f_e}}{F_{t_e}} (1 - e^{-2\theta d_e})

is zero for every :math:`\theta`.  These conditions depend only on the integer topology and distances, so they are checked once here rather than inside the traced likelihood.

This module also precomputes the static sparsity patterns of the path matrix :math:`\Gamma` and the precision matrix :math:`Q`, so that the numeric values can be scattered into them on every evaluation without any data-dependent shapes.

"""
import warnings
from typing import NamedTuple

import numpy as np
import networkx as nx


class NetworkError(ValueError):
    """
    Invalid network configuration.

    """


class Network(NamedTuple):
    r"""
    Validated network topology with precomputed sparsity patterns.

    Attributes:
        from_e (ndarray(n_edge)): Upstream node of each edge; :math:`f_e`.
        to_e (ndarray(n_edge)): Downstream node of each edge; :math:`t_e`.
        dist_e (ndarray(n_edge)): Distance along each edge; :math:`d_e`.
        flow_n (ndarray(n_node)): Flow at each node; :math:`F_n`.
        source_s (ndarray(n_source)): Indices of the source nodes.
        gamma_indices (ndarray(nse_gamma, 2)): Unique `(row, col)` entries of :math:`\Gamma`.
        gamma_seg (ndarray(n_edge)): Position of each edge's triple in `gamma_indices`.
        q_indices (ndarray(nse_q, 2)): Unique `(row, col)` entries of :math:`Q`.
        q_seg (ndarray(n_triple)): Position of each triple of :math:`Q` in `q_indices`.
        pair_e (ndarray(n_pair)): First edge of each ordered pair of edges sharing a target.
        pair_f (ndarray(n_pair)): Second edge of each ordered pair of edges sharing a target.

    """
    from_e: np.ndarray
    to_e: np.ndarray
    dist_e: np.ndarray
    flow_n: np.ndarray
    source_s: np.ndarray
    gamma_indices: np.ndarray
    gamma_seg: np.ndarray
    q_indices: np.ndarray
    q_seg: np.ndarray
    pair_e: np.ndarray
    pair_f: np.ndarray

    @property
    def n_node(self):
        return self.flow_n.shape[0]

    @property
    def n_edge(self):
        return self.from_e.shape[0]


# --- helper functions ---------------------------------------------------------


def _triplet_pattern(rows, cols):
    r"""
    Group `(row, col)` triples by position.

    Args:
        rows (ndarray(n_triple)): Row index of each triple.
        cols (ndarray(n_triple)): Column index of each triple.

    Returns:
        (tuple):
        - **indices** (ndarray(nse, 2)): Unique `(row, col)` pairs in lexicographic order.
        - **seg** (ndarray(n_triple)): Index into `indices` of each triple, for use with `jax.ops.segment_sum`.

    """
    pairs = np.stack([rows, cols], axis=1).reshape(-1, 2)
    if pairs.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int32), np.zeros((0,), dtype=np.int32)
    indices, seg = np.unique(pairs, axis=0, return_inverse=True)
    return indices.astype(np.int32), seg.reshape(-1).astype(np.int32)


def _target_pairs(to_e):
    r"""
    All ordered pairs of edges :math:`(e, f)` with :math:`t_e = t_f`, including :math:`e = f`.

    """
    pair_e = [np.zeros((0,), dtype=np.int32)]
    pair_f = [np.zeros((0,), dtype=np.int32)]
    for target in np.unique(to_e):
        ind = np.flatnonzero(to_e == target)
        pe, pf = np.meshgrid(ind, ind, indexing="ij")
        pair_e.append(pe.ravel())
        pair_f.append(pf.ravel())
    return (np.concatenate(pair_e).astype(np.int32),
            np.concatenate(pair_f).astype(np.int32))


def network_graph(from_e, to_e, n_node):
    r"""
    Directed graph of the stream network, with every node present even if it has no edges.

    Args:
        from_e (ndarray(n_edge)): Upstream node of each edge.
        to_e (ndarray(n_edge)): Downstream node of each edge.
        n_node (int): Number of nodes.

    Returns:
        (networkx.DiGraph): Graph with nodes `0, ..., n_node-1` and an edge for each distinct `(from, to)` pair.

    """
    graph = nx.DiGraph()
    graph.add_nodes_from(range(n_node))
    graph.add_edges_from(zip(np.asarray(from_e).tolist(), np.asarray(to_e).tolist()))
    return graph


def topological_order(from_e, to_e, n_node):
    r"""
    Order the nodes so that every edge points from an earlier node to a later one.

    Args:
        from_e (ndarray(n_edge)): Upstream node of each edge.
        to_e (ndarray(n_edge)): Downstream node of each edge.
        n_node (int): Number of nodes.

    Returns:
        (ndarray(n_node)): Node indices in topological order.

    Raises:
        NetworkError: If the edges contain a directed cycle.

    """
    graph = network_graph(from_e, to_e, n_node)
    if not nx.is_directed_acyclic_graph(graph):
        cycle = nx.find_cycle(graph)
        raise NetworkError(
            "Network edges contain a directed cycle {}.".format(
                [(int(f), int(t)) for f, t in cycle])
        )
    return np.array(list(nx.topological_sort(graph)), dtype=np.int32)


# --- network constructor ------------------------------------------------------


def make_network(from_e, to_e, dist_e, flow_n, source_s):
    r"""
    Validate a stream network and precompute its sparsity patterns.

    Args:
        from_e (ndarray(n_edge)): Upstream node of each edge (0-based).
        to_e (ndarray(n_edge)): Downstream node of each edge (0-based).
        dist_e (ndarray(n_edge)): Non-negative distance along each edge.
        flow_n (ndarray(n_node)): Positive flow at each node.
        source_s (ndarray(n_source)): Indices of the source nodes, whose conditional variance is fixed at 1.

    Returns:
        (Network): The validated network.

    Raises:
        NetworkError: If the arrays are inconsistent, the graph has a self loop or a cycle, or a non-source node has no incoming edge of positive distance.

    """
    from_e = np.asarray(from_e, dtype=np.int32).reshape(-1)
    to_e = np.asarray(to_e, dtype=np.int32).reshape(-1)
    dist_e = np.asarray(dist_e, dtype=float).reshape(-1)
    flow_n = np.asarray(flow_n, dtype=float).reshape(-1)
    source_s = np.unique(np.asarray(source_s, dtype=np.int32).reshape(-1))
    n_node = flow_n.shape[0]
    n_edge = from_e.shape[0]

    # array consistency
    if to_e.shape[0] != n_edge or dist_e.shape[0] != n_edge:
        raise NetworkError(
            "from_e, to_e and dist_e must have the same length; got {}, {} and {}.".format(
                n_edge, to_e.shape[0], dist_e.shape[0])
        )
    for name, ind in (("from_e", from_e), ("to_e", to_e), ("source_s", source_s)):
        if np.any((ind < 0) | (ind >= n_node)):
            raise NetworkError(
                "{} contains node indices outside [0, {}).".format(name, n_node))
    if np.any(~np.isfinite(dist_e)) or np.any(dist_e < 0):
        raise NetworkError("dist_e must be finite and non-negative.")
    if np.any(~np.isfinite(flow_n)) or np.any(flow_n <= 0):
        raise NetworkError("flow_n must be finite and positive.")

    # topology
    loops = np.flatnonzero(from_e == to_e)
    if loops.size > 0:
        raise NetworkError(
            "Edges {} are self loops.".format(loops.tolist()))
    topological_order(from_e, to_e, n_node)
    is_source = np.zeros(n_node, dtype=bool)
    is_source[source_s] = True
    has_inflow = np.zeros(n_node, dtype=bool)
    has_inflow[to_e[dist_e > 0]] = True
    orphan = np.flatnonzero(~has_inflow & ~is_source)
    if orphan.size > 0:
        raise NetworkError(
            "Nodes {} are not sources and have no incoming edge of positive "
            "distance, so their conditional variance is zero.".format(
                orphan.tolist())
        )
    fed_source = np.intersect1d(source_s, to_e)
    if fed_source.size > 0:
        warnings.warn(
            "Source nodes {} have incoming edges; their conditional variance "
            "is fixed at 1.".format(fed_source.tolist())
        )

    # sparsity patterns
    gamma_indices, gamma_seg = _triplet_pattern(to_e, from_e)
    pair_e, pair_f = _target_pairs(to_e)
    diag = np.arange(n_node, dtype=np.int32)
    # triples of Q = (I - Gamma)' V (I - Gamma), in the order used by
    # `precision.prec_matrix`: diagonal, lower, upper, shared-target pairs
    q_rows = np.concatenate([diag, to_e, from_e, from_e[pair_e]])
    q_cols = np.concatenate([diag, from_e, to_e, from_e[pair_f]])
    q_indices, q_seg = _triplet_pattern(q_rows, q_cols)

    return Network(
        from_e=from_e,
        to_e=to_e,
        dist_e=dist_e,
        flow_n=flow_n,
        source_s=source_s,
        gamma_indices=gamma_indices,
        gamma_seg=gamma_seg,
        q_indices=q_indices,
        q_seg=q_seg,
        pair_e=pair_e,
        pair_f=pair_f
    )
