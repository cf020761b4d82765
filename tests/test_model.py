import unittest
import numpy as np
import scipy as sp
import scipy.stats
import jax
import jax.numpy as jnp
from streamnet.model import network_nll, make_nll, init_params, \
    transform_pars, mean_field_report
from streamnet.network import make_network
import utils


class TestChainModel(unittest.TestCase):
    """
    End-to-end evaluation on a three node chain with one time point.

    """
    setUp = utils.chain_setup

    def test_report(self):
        params = init_params(self.network, 1)
        y_nt = np.array([[.5], [np.nan], [-.2]])
        j, report = network_nll(params, self.network, y_nt)
        e1 = np.exp(-1.)
        e2 = 1. - np.exp(-2.)
        self.assertAlmostEqual(utils.rel_err(report["weight"], [1., 1.]), 0.0)
        self.assertAlmostEqual(utils.rel_err(report["rho"], [e1, e1]), 0.0)
        self.assertAlmostEqual(utils.rel_err(report["var"], [e2, e2]), 0.0)
        self.assertAlmostEqual(utils.rel_err(report["v_n"], [1., e2, e2]), 0.0)
        Gamma = np.asarray(report["Gamma"].todense())
        self.assertEqual(set(zip(*np.nonzero(Gamma))), {(1, 0), (2, 1)})
        self.assertAlmostEqual(utils.rel_err(j, jnp.sum(report["jnll"])), 0.0)
        # zero random effects, unit scales and zero offset
        gmrf0 = .5 * (3 * np.log(2*np.pi) + 2 * np.log(e2))
        obs = -np.sum(sp.stats.norm.logpdf([.5, -.2]))
        self.assertAlmostEqual(
            utils.rel_err(report["jnll"], [gmrf0, gmrf0, obs]), 0.0)


class TestModel(unittest.TestCase):
    """
    Check the joint negative loglikelihood and its derivatives.

    """
    setUp = utils.tree_setup

    def test_dense(self):
        Q, _, _ = utils.dense_prec(
            self.from_e, self.to_e, self.dist_e, self.flow_n,
            self.source_s, self.theta)
        nll1 = utils.dense_gmrf_nll(self.psi_n, Q, 1./self.beta1)
        omega_nt = np.asarray(self.omega_nt)
        nll1 = nll1 + utils.dense_gmrf_nll(omega_nt[:, 0], Q, 1./self.beta2)
        for t in range(1, self.n_t):
            nll1 = nll1 + utils.dense_gmrf_nll(
                omega_nt[:, t] - omega_nt[:, t-1], Q, 1./self.beta2)
        z_nt = self.alpha + np.asarray(self.psi_n)[:, None] + omega_nt
        mask = ~np.isnan(self.y_nt)
        nll1 = nll1 - np.sum(sp.stats.norm.logpdf(
            self.y_nt[mask], loc=z_nt[mask], scale=self.sigma_y))
        for gmrf_type in ["factor", "cholesky"]:
            nll2, report = network_nll(
                self.params, self.network, self.y_nt, gmrf_type)
            self.assertAlmostEqual(utils.rel_err(nll1, nll2), 0.0)
            self.assertAlmostEqual(utils.rel_err(z_nt, report["z_nt"]), 0.0)

    def test_report_keys(self):
        _, report = network_nll(self.params, self.network, self.y_nt)
        self.assertEqual(
            set(report.keys()),
            {"jnll", "z_nt", "weight", "rho", "var", "v_n",
             "Gamma", "V", "I", "Q"})

    def test_transform(self):
        pars = transform_pars(self.params)
        self.assertAlmostEqual(float(pars["theta"]), self.theta)
        self.assertAlmostEqual(float(pars["sigma_y"]), self.sigma_y)
        self.assertAlmostEqual(float(pars["beta1"]), self.beta1)
        self.assertAlmostEqual(float(pars["beta2"]), self.beta2)
        self.assertEqual(pars["rhoW"], 1.0)

    def test_make_nll(self):
        nll_fun = make_nll(self.network, self.y_nt)
        nll1 = network_nll(self.params, self.network, self.y_nt)[0]
        nll2 = nll_fun(self.params)
        self.assertAlmostEqual(utils.rel_err(nll1, nll2), 0.0)
        # repeated evaluations are identical
        self.assertEqual(float(nll2), float(nll_fun(self.params)))
        self.assertEqual(
            float(nll1),
            float(network_nll(self.params, self.network, self.y_nt)[0]))

    def test_grad(self):
        grad1 = jax.grad(make_nll(self.network, self.y_nt, "factor"))(self.params)
        grad2 = jax.grad(make_nll(self.network, self.y_nt, "cholesky"))(self.params)
        for key in self.params.keys():
            self.assertTrue(jnp.all(jnp.isfinite(grad1[key])))
            self.assertAlmostEqual(utils.rel_err(grad1[key], grad2[key]), 0.0)

    def test_grad_missing(self):
        # without observations only the random effect terms remain
        y_nt = np.full_like(self.y_nt, np.nan)
        grad = jax.grad(make_nll(self.network, y_nt))(self.params)
        self.assertEqual(float(grad["alpha"]), 0.0)
        self.assertEqual(float(grad["logsigma_y"]), 0.0)

    def test_missing(self):
        nll_fun = make_nll(self.network, self.y_nt)
        y1 = self.y_nt.copy()
        y1[3, 3] = 10.
        self.assertNotAlmostEqual(
            float(nll_fun(self.params)),
            float(network_nll(self.params, self.network, y1)[0]))
        # the value an omitted cell would have had is irrelevant
        params = dict(self.params)
        params["omega_nt"] = self.omega_nt.at[1, 0].add(1e-3)
        nll1 = network_nll(self.params, self.network, self.y_nt)[1]["jnll"][2]
        nll2 = network_nll(params, self.network, self.y_nt)[1]["jnll"][2]
        self.assertEqual(float(nll1), float(nll2))

    def test_shape(self):
        params = dict(self.params)
        params["omega_nt"] = self.omega_nt[:, 1:]
        with self.assertRaises(ValueError):
            network_nll(params, self.network, self.y_nt)
        params = dict(self.params)
        params["psi_n"] = self.psi_n[1:]
        with self.assertRaises(ValueError):
            network_nll(params, self.network, self.y_nt)

    def test_gmrf_type(self):
        with self.assertRaises(NotImplementedError):
            network_nll(self.params, self.network, self.y_nt, "dense")

    def tangent(self, params, **kwargs):
        dparams = jax.tree_util.tree_map(jnp.zeros_like, params)
        dparams.update(kwargs)
        return dparams

    def test_mean_field_report(self):
        z_nt, z_lin = mean_field_report(self.params)
        _, report = network_nll(self.params, self.network, self.y_nt)
        self.assertAlmostEqual(utils.rel_err(z_nt, report["z_nt"]), 0.0)
        dz = z_lin(self.tangent(self.params, alpha=jnp.array(1.)))
        self.assertAlmostEqual(
            utils.rel_err(dz, jnp.ones((self.n_node, self.n_t))), 0.0)
        # unit tangent on one node moves every time point of that node
        m = 2
        dz = z_lin(self.tangent(
            self.params, psi_n=jnp.zeros(self.n_node).at[m].set(1.)))
        self.assertAlmostEqual(
            utils.rel_err(dz, jnp.zeros((self.n_node, self.n_t)).at[m].set(1.)), 0.0)
        dz = z_lin(self.tangent(self.params, logtheta=jnp.array(1.)))
        self.assertAlmostEqual(
            utils.rel_err(dz, jnp.zeros((self.n_node, self.n_t))), 0.0)
        # transpose gives the vector-Jacobian product
        z_vjp = jax.linear_transpose(z_lin, self.params)
        dparams, = z_vjp(jnp.ones((self.n_node, self.n_t)))
        self.assertAlmostEqual(
            float(dparams["alpha"]), float(self.n_node * self.n_t))
        self.assertAlmostEqual(
            utils.rel_err(dparams["psi_n"], self.n_t * jnp.ones(self.n_node)), 0.0)

    def test_mean_field_report_large(self):
        # a dense Jacobian here would hold (n_node * n_t)^2 doubles, ~180GB
        n_node = 3000
        n_t = 50
        network = make_network(
            from_e=np.arange(n_node - 1),
            to_e=np.arange(1, n_node),
            dist_e=np.ones(n_node - 1),
            flow_n=np.ones(n_node),
            source_s=[0]
        )
        params = init_params(network, n_t)
        z_nt, z_lin = mean_field_report(params)
        self.assertEqual(z_nt.shape, (n_node, n_t))
        dz = z_lin(self.tangent(params, omega_nt=jnp.ones((n_node, n_t))))
        self.assertEqual(dz.shape, (n_node, n_t))
        self.assertAlmostEqual(
            utils.rel_err(dz, jnp.ones((n_node, n_t))), 0.0)


if __name__ == '__main__':
    unittest.main()
