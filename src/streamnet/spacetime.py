r"""
Space-time likelihood of the stream network model.

Given a GMRF negative log-density :math:`\ell(x; s)` with precision :math:`Q` and scale :math:`s` (see :mod:`streamnet.gmrf`), the model is

.. math::

    \psi \sim \ell(\cdot\,; 1/\beta_1)

    \omega_0 \sim \ell(\cdot\,; 1/\beta_2)

    \omega_t - \rho_W \omega_{t-1} \sim \ell(\cdot\,; 1/\beta_2), \qquad t = 1, \ldots, T-1

    y_{nt} \sim \operatorname{Normal}(z_{nt}, \sigma_y^2), \qquad z_{nt} = \alpha + \psi_n + \omega_{nt},

where :math:`\psi` is a static spatial field, :math:`\omega_t` is the space-time field at time :math:`t`, and only the non-missing :math:`y_{nt}` enter the likelihood.  The three negative log-likelihood terms are kept separate.

"""
import jax
import jax.numpy as jnp
from jax.scipy.stats import norm
from streamnet.utils import obs_mask


def mean_field(alpha, psi_n, omega_nt):
    r"""
    Fitted mean :math:`z_{nt} = \alpha + \psi_n + \omega_{nt}`.

    """
    return alpha + psi_n[:, None] + omega_nt


def spatial_nll(psi_n, beta1, gmrf):
    r"""
    Negative log-density of the spatial field.

    Args:
        psi_n (ndarray(n_node)): Spatial random effect; :math:`\psi`.
        beta1 (float): Spatial precision scale; :math:`\beta_1`.
        gmrf (Callable): GMRF negative log-density with arguments `x` and `scale`, e.g., from :func:`~streamnet.gmrf.gmrf_fun`.

    Returns:
        (float): Negative log-density of :math:`\psi`.

    """
    return gmrf(psi_n, 1.0 / beta1)


def temporal_nll(omega_nt, beta2, rhoW, gmrf):
    r"""
    Negative log-density of the space-time field.

    The first time point is unconditioned; each later one is conditioned on the previous time point through its innovation :math:`\omega_t - \rho_W \omega_{t-1}`.

    Args:
        omega_nt (ndarray(n_node, n_t)): Space-time random effect; :math:`\omega`.
        beta2 (float): Temporal innovation precision scale; :math:`\beta_2`.
        rhoW (float): Temporal autocorrelation; :math:`\rho_W`.
        gmrf (Callable): GMRF negative log-density with arguments `x` and `scale`.

    Returns:
        (float): Negative log-density of :math:`\omega`, summed over time.

    """
    n_t = omega_nt.shape[1]
    if n_t == 0:
        return jnp.zeros((), dtype=omega_nt.dtype)
    innov_nt = jnp.concatenate(
        [omega_nt[:, :1],
         omega_nt[:, 1:] - rhoW * omega_nt[:, :-1]],
        axis=1
    )
    nll_t = jax.vmap(gmrf, in_axes=(1, None))(innov_nt, 1.0 / beta2)
    return jnp.sum(nll_t)


def obs_nll(y_nt, z_nt, sigma_y):
    r"""
    Negative loglikelihood of the observations given the fitted mean.

    Args:
        y_nt (ndarray(n_node, n_t)): Observations, with `nan` in the missing cells.
        z_nt (ndarray(n_node, n_t)): Fitted mean.
        sigma_y (float): Observation noise standard deviation; :math:`\sigma_y`.

    Returns:
        (float): Negative loglikelihood summed over the non-missing cells.

    """
    mask = obs_mask(y_nt)
    # fill missing cells so that no nan reaches the gradient
    y_fill = jnp.where(mask, y_nt, z_nt)
    lpdf = norm.logpdf(y_fill, loc=z_nt, scale=sigma_y)
    return -jnp.sum(jnp.where(mask, lpdf, 0.0))


def spacetime_nll(psi_n, omega_nt, alpha, beta1, beta2, rhoW,
                  y_nt, sigma_y, gmrf):
    r"""
    The three negative log-likelihood terms of the space-time model.

    Args:
        psi_n (ndarray(n_node)): Spatial random effect; :math:`\psi`.
        omega_nt (ndarray(n_node, n_t)): Space-time random effect; :math:`\omega`.
        alpha (float): Offset; :math:`\alpha`.
        beta1 (float): Spatial precision scale; :math:`\beta_1`.
        beta2 (float): Temporal innovation precision scale; :math:`\beta_2`.
        rhoW (float): Temporal autocorrelation; :math:`\rho_W`.
        y_nt (ndarray(n_node, n_t)): Observations, with `nan` in the missing cells.
        sigma_y (float): Observation noise standard deviation; :math:`\sigma_y`.
        gmrf (Callable): GMRF negative log-density with arguments `x` and `scale`.

    Returns:
        (tuple):
        - **jnll** (ndarray(3)): Spatial, space-time and observation negative log-likelihoods.
        - **z_nt** (ndarray(n_node, n_t)): Fitted mean.

    """
    z_nt = mean_field(alpha, psi_n, omega_nt)
    jnll = jnp.stack([
        spatial_nll(psi_n, beta1, gmrf),
        temporal_nll(omega_nt, beta2, rhoW, gmrf),
        obs_nll(y_nt, z_nt, sigma_y)
    ])
    return jnll, z_nt
