r"""
Util functions for streamnet.

Missing observations are represented by `nan`, the same marker used for `NA` by most data frame libraries.

"""
import numpy as np
import jax.numpy as jnp


def as_missing(y_nt, missing=None):
    r"""
    Convert an observation matrix with a user-defined missing marker to one that uses `nan`.

    Args:
        y_nt (ndarray(n_node, n_t)): Observations; rows are nodes and columns are time points.
        missing (Optional[float]): Value marking missing cells.  Cells that are already `nan` or `None` are always treated as missing.

    Returns:
        (ndarray(n_node, n_t)): Floating point observations with `nan` in the missing cells.

    """
    y_nt = np.array(y_nt, dtype=float)
    if missing is not None:
        y_nt[y_nt == missing] = np.nan
    return y_nt


def obs_mask(y_nt):
    r"""
    Boolean mask of the non-missing cells of `y_nt`.

    """
    return ~jnp.isnan(y_nt)
