from streamnet.network import Network, NetworkError, make_network, \
    topological_order, network_graph
from streamnet.precision import network_prec
from streamnet.gmrf import gmrf_factor_nll, gmrf_chol_nll, gmrf_fun, prec_chol
from streamnet.spacetime import spacetime_nll, mean_field
from streamnet.model import network_nll, make_nll, init_params, transform_pars, mean_field_report
from streamnet.utils import as_missing, obs_mask
