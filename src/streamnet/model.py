r"""
Joint negative loglikelihood of the stream network space-time model.

The objective is a pure function of the parameters, the network, and the observations.  Parameters are a dictionary with elements

- `logtheta`: Log of the spatial decorrelation rate :math:`\theta`.
- `logsigma_y`: Log of the observation noise standard deviation :math:`\sigma_y`.
- `alpha`: Offset :math:`\alpha`.
- `logbeta1`: Log of the spatial precision scale :math:`\beta_1`.
- `logbeta2`: Log of the temporal innovation precision scale :math:`\beta_2`.
- `psi_n` (ndarray(n_node)): Spatial random effect :math:`\psi`.
- `omega_nt` (ndarray(n_node, n_t)): Space-time random effect :math:`\omega`.

The temporal autocorrelation is fixed at :math:`\rho_W = 1`, i.e., the space-time field is a random walk in time with spatially correlated innovations.

Since the network enters through integer index arrays, it should be closed over rather than passed as a traced argument when jitting; :func:`make_nll` does this.

"""
import jax
import jax.numpy as jnp
from streamnet.precision import network_prec
from streamnet.gmrf import gmrf_fun
from streamnet.spacetime import spacetime_nll, mean_field


def transform_pars(params):
    r"""
    Map the unconstrained parameters to their natural scale.

    Args:
        params (dict): Model parameters.

    Returns:
        (dict): Dictionary with elements `theta`, `sigma_y`, `alpha`, `beta1`, `beta2`, and `rhoW`.

    """
    return {
        "theta": jnp.exp(params["logtheta"]),
        "sigma_y": jnp.exp(params["logsigma_y"]),
        "alpha": params["alpha"],
        "beta1": jnp.exp(params["logbeta1"]),
        "beta2": jnp.exp(params["logbeta2"]),
        "rhoW": 1.0
    }


def init_params(network, n_t):
    r"""
    Parameters with every element set to zero.

    Args:
        network (Network): Stream network.
        n_t (int): Number of time points.

    Returns:
        (dict): Model parameters.

    """
    n_node = network.n_node
    return {
        "logtheta": jnp.array(0.),
        "logsigma_y": jnp.array(0.),
        "alpha": jnp.array(0.),
        "logbeta1": jnp.array(0.),
        "logbeta2": jnp.array(0.),
        "psi_n": jnp.zeros((n_node,)),
        "omega_nt": jnp.zeros((n_node, n_t))
    }


def network_nll(params, network, y_nt, gmrf_type="factor"):
    r"""
    Joint negative loglikelihood of the random effects and the observations.

    Args:
        params (dict): Model parameters.
        network (Network): Stream network.
        y_nt (ndarray(n_node, n_t)): Observations, with `nan` in the missing cells.
        gmrf_type (str): GMRF evaluator; see :func:`~streamnet.gmrf.gmrf_fun`.

    Returns:
        (tuple):
        - **j** (float): Joint negative loglikelihood.  Infeasible parameters give a non-finite value.
        - **report** (dict): Diagnostic quantities `jnll`, `z_nt`, `weight`, `rho`, `var`, `v_n`, `Gamma`, `V`, `I`, and `Q`.

    """
    y_nt = jnp.asarray(y_nt)
    psi_n = params["psi_n"]
    omega_nt = params["omega_nt"]
    if psi_n.shape != (network.n_node,):
        raise ValueError(
            "psi_n has shape {}; expected ({},).".format(
                psi_n.shape, network.n_node))
    if omega_nt.shape != y_nt.shape or y_nt.shape[0] != network.n_node:
        raise ValueError(
            "omega_nt and y_nt must both have shape (n_node, n_t); got {} and {}.".format(
                omega_nt.shape, y_nt.shape))
    pars = transform_pars(params)
    prec = network_prec(pars["theta"], network)
    gmrf = gmrf_fun(prec, gmrf_type)
    jnll, z_nt = spacetime_nll(
        psi_n=psi_n,
        omega_nt=omega_nt,
        alpha=pars["alpha"],
        beta1=pars["beta1"],
        beta2=pars["beta2"],
        rhoW=pars["rhoW"],
        y_nt=y_nt,
        sigma_y=pars["sigma_y"],
        gmrf=gmrf
    )
    report = dict(prec)
    report["jnll"] = jnll
    report["z_nt"] = z_nt
    return jnp.sum(jnll), report


def make_nll(network, y_nt, gmrf_type="factor"):
    r"""
    Jitted objective for an external optimizer.

    Args:
        network (Network): Stream network.
        y_nt (ndarray(n_node, n_t)): Observations, with `nan` in the missing cells.
        gmrf_type (str): GMRF evaluator; see :func:`~streamnet.gmrf.gmrf_fun`.

    Returns:
        (Callable): Function of `params` returning the joint negative loglikelihood.  Use `jax.grad` or `jax.value_and_grad` on it for gradients.

    """
    y_nt = jnp.asarray(y_nt)

    def nll(params):
        return network_nll(params, network, y_nt, gmrf_type)[0]

    return jax.jit(nll)


def mean_field_report(params):
    r"""
    Fitted mean and its derivative with respect to the parameters.

    The derivative is returned as a linear map rather than a dense Jacobian, which for `omega_nt` alone would have shape `(n_node, n_t, n_node, n_t)`.  Use `jax.linear_transpose` on it for vector-Jacobian products.

    Args:
        params (dict): Model parameters.

    Returns:
        (tuple):
        - **z_nt** (ndarray(n_node, n_t)): Fitted mean.
        - **z_lin** (Callable): Function taking a tangent dictionary with the same structure as `params` and returning the directional derivative of `z_nt`, an `ndarray(n_node, n_t)`.

    """
    def z_fun(params):
        pars = transform_pars(params)
        return mean_field(pars["alpha"], params["psi_n"], params["omega_nt"])

    return jax.linearize(z_fun, params)
