r"""
Precision matrix of the spatial Gaussian Markov random field on a stream network.

Each node value is a flow-weighted sum of its upstream neighbours plus an independent innovation:

.. math::

    x_n = \sum_{e: t_e = n} w_e \rho_e x_{f_e} + v_n^{1/2} \epsilon_n,

where for edge :math:`e`

.. math::

    w_e = F_{f_e} / F_{t_e}, \qquad \rho_e = e^{-\theta d_e}, \qquad \sigma^2_e = 1 - e^{-2\theta d_e},

and :math:`v_n = \sum_{e: t_e = n} w_e \sigma^2_e`, except that :math:`v_n = 1` for source nodes.  Writing :math:`\Gamma_{t_e, f_e} = w_e \rho_e` for the path matrix and :math:`V = \operatorname{diag}(1/v_n)`, the precision matrix of :math:`x` is

.. math:: Q = (I - \Gamma)' V (I - \Gamma).

All sparse matrices are `jax.experimental.sparse.BCOO` arrays whose indices come from the static patterns in :class:`~streamnet.network.Network`, so the whole construction can be traced and differentiated with respect to :math:`\theta`.

"""
import numpy as np
import jax
import jax.numpy as jnp
from jax.experimental import sparse


def edge_coefs(theta, dist_e, flow_n, from_e, to_e):
    r"""
    Per-edge weight, autocorrelation and variance contribution.

    Args:
        theta (float): Spatial decorrelation rate; :math:`\theta > 0`.
        dist_e (ndarray(n_edge)): Distance along each edge.
        flow_n (ndarray(n_node)): Flow at each node.
        from_e (ndarray(n_edge)): Upstream node of each edge.
        to_e (ndarray(n_edge)): Downstream node of each edge.

    Returns:
        (tuple):
        - **weight** (ndarray(n_edge)): Upstream contribution weight; :math:`w_e`.
        - **rho** (ndarray(n_edge)): Autocorrelation with the upstream node; :math:`\rho_e`.
        - **var** (ndarray(n_edge)): Innovation variance contribution; :math:`\sigma^2_e`.

    """
    flow_n = jnp.asarray(flow_n)
    weight = flow_n[from_e] / flow_n[to_e]
    rho = jnp.exp(-theta * dist_e)
    var = 1.0 - jnp.exp(-2.0 * theta * dist_e)
    return weight, rho, var


def cond_var(weight, var, to_e, source_s, n_node):
    r"""
    Conditional variance of each node given its upstream neighbours.

    Args:
        weight (ndarray(n_edge)): Upstream contribution weights.
        var (ndarray(n_edge)): Innovation variance contributions.
        to_e (ndarray(n_edge)): Downstream node of each edge.
        source_s (ndarray(n_source)): Indices of the source nodes.
        n_node (int): Number of nodes.

    Returns:
        (ndarray(n_node)): Conditional variances :math:`v_n`, equal to 1 at the source nodes.

    """
    v_n = jax.ops.segment_sum(weight * var, to_e, num_segments=n_node)
    # sources are overridden after accumulation
    return v_n.at[source_s].set(1.0)


def path_matrix(network, weight, rho):
    r"""
    Sparse path matrix :math:`\Gamma`.

    Edges sharing the same `(to, from)` pair are summed.

    Args:
        network (Network): Stream network.
        weight (ndarray(n_edge)): Upstream contribution weights.
        rho (ndarray(n_edge)): Autocorrelations along each edge.

    Returns:
        (BCOO(n_node, n_node)): Path matrix with :math:`\Gamma_{t_e, f_e} = w_e \rho_e`.

    """
    n_node = network.n_node
    data = jax.ops.segment_sum(weight * rho, network.gamma_seg,
                               num_segments=network.gamma_indices.shape[0])
    return sparse.BCOO((data, network.gamma_indices), shape=(n_node, n_node))


def cond_prec_matrix(v_n):
    r"""
    Sparse diagonal matrix of conditional precisions :math:`V = \operatorname{diag}(1/v_n)`.

    """
    n_node = v_n.shape[0]
    diag = np.arange(n_node, dtype=np.int32)
    indices = np.stack([diag, diag], axis=1)
    return sparse.BCOO((1.0 / v_n, indices), shape=(n_node, n_node))


def prec_matrix(network, weight, rho, v_n):
    r"""
    Sparse precision matrix :math:`Q = (I - \Gamma)' V (I - \Gamma)`.

    With :math:`c_e = w_e \rho_e`, the nonzero entries of :math:`Q` are sums of the triples

    .. math::

        (n, n, 1/v_n), \qquad (t_e, f_e, -c_e/v_{t_e}), \qquad (f_e, t_e, -c_e/v_{t_e}), \qquad (f_e, f_g, c_e c_g / v_{t_e}) \text{ for } t_e = t_g,

    which are grouped on the static pattern of `network`.

    Args:
        network (Network): Stream network.
        weight (ndarray(n_edge)): Upstream contribution weights.
        rho (ndarray(n_edge)): Autocorrelations along each edge.
        v_n (ndarray(n_node)): Conditional variances.

    Returns:
        (BCOO(n_node, n_node)): Symmetric precision matrix :math:`Q`.

    """
    n_node = network.n_node
    coef = weight * rho
    prec_n = 1.0 / v_n
    cross = -coef * prec_n[network.to_e]
    pair = coef[network.pair_e] * coef[network.pair_f] * \
        prec_n[network.to_e[network.pair_e]]
    data = jnp.concatenate([prec_n, cross, cross, pair])
    data = jax.ops.segment_sum(data, network.q_seg,
                               num_segments=network.q_indices.shape[0])
    return sparse.BCOO((data, network.q_indices), shape=(n_node, n_node))


def network_prec(theta, network):
    r"""
    Build all precision-related quantities of the stream network.

    Args:
        theta (float): Spatial decorrelation rate.
        network (Network): Stream network.

    Returns:
        (dict): Dictionary with elements

        - **weight**, **rho**, **var** (ndarray(n_edge)): Per-edge coefficients.
        - **v_n** (ndarray(n_node)): Conditional variances.
        - **Gamma** (BCOO(n_node, n_node)): Path matrix.
        - **V** (BCOO(n_node, n_node)): Diagonal conditional precision matrix.
        - **I** (BCOO(n_node, n_node)): Identity matrix.
        - **Q** (BCOO(n_node, n_node)): Precision matrix.

    """
    n_node = network.n_node
    weight, rho, var = edge_coefs(
        theta=theta,
        dist_e=network.dist_e,
        flow_n=network.flow_n,
        from_e=network.from_e,
        to_e=network.to_e
    )
    v_n = cond_var(weight, var, network.to_e, network.source_s, n_node)
    return {
        "weight": weight,
        "rho": rho,
        "var": var,
        "v_n": v_n,
        "Gamma": path_matrix(network, weight, rho),
        "V": cond_prec_matrix(v_n),
        "I": sparse.eye(n_node, dtype=v_n.dtype),
        "Q": prec_matrix(network, weight, rho, v_n)
    }
