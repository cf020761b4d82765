r"""
Negative log-density of a zero-mean Gaussian Markov random field.

Let :math:`u \sim \operatorname{Normal}(0, Q^{-1})` with :math:`Q` an `n_node x n_node` sparse precision matrix, and let :math:`x = s u` for a scale factor :math:`s > 0`.  Then

.. math::

    -\log p(x) = \tfrac 1 2 \left(n \log(2\pi) - \log |Q| + u' Q u\right) + n \log s, \qquad u = x / s.

Two evaluators are provided:

- :func:`gmrf_factor_nll` uses the factored form :math:`Q = (I - \Gamma)' V (I - \Gamma)` of a directed network.  Since :math:`\Gamma` is nilpotent on a directed acyclic graph, :math:`|I - \Gamma| = 1` and

  .. math::

      \log |Q| = -\sum_n \log v_n, \qquad u' Q u = \sum_n (u_n - [\Gamma u]_n)^2 / v_n,

  which only requires one sparse matrix-vector product with a fixed sparsity pattern.

- :func:`gmrf_chol_nll` takes a dense lower Cholesky factor :math:`Q = L L'` from :func:`prec_chol`, which densifies :math:`Q` and costs :math:`O(n^3)` time and :math:`O(n^2)` memory.  It is a reference for checking the factored evaluator on small networks, not for large ones.

Neither raises when the parameters are infeasible: a nonpositive conditional variance or a failed Cholesky factorization propagates to a `nan` or `inf` result, which an optimizer can reject.

"""
import jax.numpy as jnp
from jax.experimental import sparse


def gmrf_factor_nll(x, path, cond_var, scale=1.0):
    r"""
    GMRF negative log-density from the factored precision of a directed network.

    Args:
        x (ndarray(n_node)): Field value; :math:`x`.
        path (BCOO(n_node, n_node)): Path matrix; :math:`\Gamma`.
        cond_var (ndarray(n_node)): Conditional variances; :math:`v_n`.
        scale (float): Scale factor; :math:`s`.

    Returns:
        (float): Negative log-density of :math:`x`.

    """
    n_node = x.shape[0]
    u = x / scale
    resid = u - path @ u
    quad = jnp.sum(resid * resid / cond_var)
    logdet = -jnp.sum(jnp.log(cond_var))
    return .5 * (n_node * jnp.log(2.0 * jnp.pi) - logdet + quad) + \
        n_node * jnp.log(scale)


def prec_chol(Q):
    r"""
    Dense lower Cholesky factor of a precision matrix.

    A sparse `Q` is converted to a dense array first, so this takes :math:`O(n^3)` time and :math:`O(n^2)` memory and is only meant for small networks.

    Args:
        Q (BCOO(n_node, n_node) or ndarray(n_node, n_node)): Precision matrix.

    Returns:
        (ndarray(n_node, n_node)): Lower triangular :math:`L` with :math:`Q = L L'`; contains `nan` if :math:`Q` is not positive definite.

    """
    if isinstance(Q, sparse.BCOO):
        Q = Q.todense()
    return jnp.linalg.cholesky(Q)


def gmrf_chol_nll(x, chol_Q, scale=1.0):
    r"""
    GMRF negative log-density from the Cholesky factor of the precision matrix.

    Args:
        x (ndarray(n_node)): Field value; :math:`x`.
        chol_Q (ndarray(n_node, n_node)): Lower Cholesky factor of the precision matrix, e.g., from :func:`prec_chol`.
        scale (float): Scale factor; :math:`s`.

    Returns:
        (float): Negative log-density of :math:`x`.

    """
    n_node = x.shape[0]
    u = x / scale
    # u' Q u = || L' u ||^2
    z = chol_Q.T.dot(u)
    quad = jnp.sum(z * z)
    logdet = 2.0 * jnp.sum(jnp.log(jnp.diag(chol_Q)))
    return .5 * (n_node * jnp.log(2.0 * jnp.pi) - logdet + quad) + \
        n_node * jnp.log(scale)


def gmrf_fun(prec, gmrf_type="factor"):
    r"""
    Bind a GMRF evaluator to the precision quantities of a network.

    The precision is factored at most once here, and the returned function can be evaluated (or `jax.vmap`-ed) over many fields and scales.

    Args:
        prec (dict): Output of :func:`~streamnet.precision.network_prec`.
        gmrf_type (str): Either "factor" (the default) to use the sparse path matrix and conditional variances, or "cholesky" to densify :math:`Q` and take its dense Cholesky factor, an :math:`O(n^3)` reference evaluator for small networks.

    Returns:
        (Callable): Function with arguments `x` and `scale` returning the negative log-density.

    """
    if gmrf_type == "factor":
        path = prec["Gamma"]
        v_n = prec["v_n"]

        def nll(x, scale):
            return gmrf_factor_nll(x, path, v_n, scale)
    elif gmrf_type == "cholesky":
        chol_Q = prec_chol(prec["Q"])

        def nll(x, scale):
            return gmrf_chol_nll(x, chol_Q, scale)
    else:
        raise NotImplementedError(
            "Unknown gmrf_type '{}'.".format(gmrf_type))
    return nll
