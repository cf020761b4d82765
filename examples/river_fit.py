import numpy as np
import jax
import jax.numpy as jnp
from jaxopt import ScipyMinimize

from streamnet import make_network, network_prec, make_nll, network_nll, init_params
jax.config.update("jax_enable_x64", True)


def river_network():
    "Binary river network with four headwater sources draining to a single outlet."
    from_e = np.array([0, 1, 2, 3, 4, 5, 6, 7, 8])
    to_e = np.array([4, 4, 5, 5, 6, 6, 7, 8, 9])
    dist_e = np.array([1.2, .8, 1.5, 1., .6, .9, .4, .7, .5])
    flow_n = np.array([1., 1.5, 2., .5, 2.5, 2.5, 5., 5.2, 5.6, 6.])
    source_s = np.array([0, 1, 2, 3])
    return make_network(from_e, to_e, dist_e, flow_n, source_s)


def gmrf_sim(key, Q, scale, n_sim):
    "Simulate `n_sim` fields with precision `Q / scale^2`."
    chol_Q = np.linalg.cholesky(np.asarray(Q))
    z = np.asarray(jax.random.normal(key, (Q.shape[0], n_sim)))
    return scale * np.linalg.solve(chol_Q.T, z)


def river_example():
    "Simulate from the space-time model and find the joint mode of the objective."
    network = river_network()
    n_node = network.n_node
    n_t = 12
    theta = .7
    alpha = 1.
    beta1 = 1.5
    beta2 = 3.
    sigma_y = .2

    # simulate random effects and data
    key = jax.random.PRNGKey(0)
    key, *subkeys = jax.random.split(key, 4)
    Q = network_prec(theta, network)["Q"].todense()
    psi_n = gmrf_sim(subkeys[0], Q, 1/beta1, 1)[:, 0]
    omega_nt = np.cumsum(gmrf_sim(subkeys[1], Q, 1/beta2, n_t), axis=1)
    z_nt = alpha + psi_n[:, None] + omega_nt
    y_nt = z_nt + sigma_y * np.asarray(jax.random.normal(subkeys[2], (n_node, n_t)))
    # roughly a quarter of the cells are unobserved
    y_nt[np.asarray(jax.random.bernoulli(key, .25, (n_node, n_t)))] = np.nan

    # the optimizer only sees a scalar function of the parameters
    nll_fun = make_nll(network, y_nt)
    params_init = init_params(network, n_t)
    print("objective at initial values: {}".format(nll_fun(params_init)))
    solver = ScipyMinimize(fun=nll_fun, method="L-BFGS-B", maxiter=2000)
    params_hat = solver.run(params_init).params
    nll_hat, report = network_nll(params_hat, network, y_nt)
    print("objective at mode: {}".format(nll_hat))
    print("jnll components: {}".format(report["jnll"]))
    print("theta: {} (true {})".format(jnp.exp(params_hat["logtheta"]), theta))
    print("sigma_y: {} (true {})".format(jnp.exp(params_hat["logsigma_y"]), sigma_y))
    print("max |z_hat - z|: {}".format(jnp.max(jnp.abs(report["z_nt"] - z_nt))))
    return params_hat


if __name__ == '__main__':
    river_example()
