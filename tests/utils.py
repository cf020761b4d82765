import numpy as np
import scipy as sp
import scipy.stats
import jax
import jax.numpy as jnp
from streamnet.network import make_network

jax.config.update("jax_enable_x64", True)


def rel_err(X1, X2):
    """
    Relative error between two arrays.

    """
    X1 = jnp.ravel(jnp.asarray(X1))
    X2 = jnp.ravel(jnp.asarray(X2))
    return jnp.max(jnp.abs((X1 - X2)/(0.1 + jnp.abs(X1))))


def dense_prec(from_e, to_e, dist_e, flow_n, source_s, theta):
    """
    Precision matrix built with dense numpy arrays and explicit loops.

    Returns:
        (tuple): `Q`, `Gamma`, and `v_n`.

    """
    n_node = len(flow_n)
    Gamma = np.zeros((n_node, n_node))
    v_n = np.zeros(n_node)
    for f, t, d in zip(from_e, to_e, dist_e):
        w = flow_n[f] / flow_n[t]
        Gamma[t, f] += w * np.exp(-theta * d)
        v_n[t] += w * (1 - np.exp(-2 * theta * d))
    v_n[np.asarray(source_s, dtype=int)] = 1.
    A = np.eye(n_node) - Gamma
    Q = A.T.dot(np.diag(1/v_n)).dot(A)
    return Q, Gamma, v_n


def dense_gmrf_nll(x, Q, scale):
    """
    Negative log-density of `x ~ Normal(0, scale^2 Q^{-1})` using scipy.

    """
    cov = scale**2 * np.linalg.inv(np.asarray(Q))
    return -sp.stats.multivariate_normal.logpdf(
        np.asarray(x), mean=np.zeros(len(x)), cov=cov)


def chain_setup(self):
    """
    Three nodes in a chain 0 -> 1 -> 2.

    """
    self.from_e = np.array([0, 1])
    self.to_e = np.array([1, 2])
    self.dist_e = np.array([1., 1.])
    self.flow_n = np.array([1., 1., 1.])
    self.source_s = np.array([0])
    self.network = make_network(
        self.from_e, self.to_e, self.dist_e, self.flow_n, self.source_s)
    self.n_node = 3


def tree_setup(self):
    """
    Small river with three sources and two confluences, observed over a few time points.

    """
    self.key = jax.random.PRNGKey(0)
    self.from_e = np.array([0, 1, 2, 3, 4, 5])
    self.to_e = np.array([2, 2, 4, 4, 5, 6])
    self.dist_e = np.array([1.5, .7, 2., .5, 1.2, .3])
    self.flow_n = np.array([1., 2., 3., 1.5, 4.5, 5., 5.2])
    self.source_s = np.array([0, 1, 3])
    self.network = make_network(
        self.from_e, self.to_e, self.dist_e, self.flow_n, self.source_s)
    self.n_node = len(self.flow_n)
    self.n_t = 4
    self.theta = .8
    self.beta1 = 1.3
    self.beta2 = .6
    self.sigma_y = .4
    self.alpha = .25

    key, *subkeys = jax.random.split(self.key, 4)
    self.psi_n = jax.random.normal(subkeys[0], (self.n_node,))
    self.omega_nt = jax.random.normal(subkeys[1], (self.n_node, self.n_t))
    y_nt = self.alpha + self.psi_n[:, None] + self.omega_nt + \
        self.sigma_y * jax.random.normal(subkeys[2], (self.n_node, self.n_t))
    y_nt = np.array(y_nt)
    y_nt[1, 0] = np.nan
    y_nt[4, 2] = np.nan
    self.y_nt = y_nt
    self.params = {
        "logtheta": jnp.log(self.theta),
        "logsigma_y": jnp.log(self.sigma_y),
        "alpha": jnp.array(self.alpha),
        "logbeta1": jnp.log(self.beta1),
        "logbeta2": jnp.log(self.beta2),
        "psi_n": self.psi_n,
        "omega_nt": self.omega_nt
    }
