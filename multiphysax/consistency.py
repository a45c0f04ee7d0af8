"""Consistency check between a weak form and its Jacobian-vector product.

At a single random point the weak form is differentiated numerically along a
random direction and compared with ``JacVecProduct.apply`` component by
component. Everything happens in the reference frame, exactly as the assembly
engine sees it: the solution and direction are mapped to the physical frame,
and the coefficients are mapped back with the adjoint transform.

Available derivative approximations:

* ``"cs"``: complex step, ``Im(f(s + i h p)) / h``. No subtractive
  cancellation, so very small steps are allowed.
* ``"fd"``: forward difference, ``(f(s + h p) - f(s)) / h``.
* ``"jvp"``: forward-mode automatic differentiation of ``weak``.

Example:
    >>> report = check_pde_implementation(pde, jax.random.PRNGKey(0), {"method": "cs"})
    >>> report.max_rel_error < 1e-8
    True
"""

import dataclasses
from typing import Optional

import numpy as onp
import jax
import jax.numpy as np

from multiphysax import logger
from multiphysax.element import jacobian_transform
from multiphysax.spaces import FESpace


@dataclasses.dataclass
class ConsistencyReport:
    """Outcome of ``check_pde_implementation``.

    Attributes:
        method (str): Derivative approximation used.
        dh (float): Step size.
        approx (onp.ndarray): Approximate directional derivative per component.
        jvp (onp.ndarray): ``JacVecProduct`` result per component.
        rel_err (onp.ndarray): Relative error per component.
    """

    method: str
    dh: float
    approx: onp.ndarray
    jvp: onp.ndarray
    rel_err: onp.ndarray

    @property
    def max_rel_error(self) -> float:
        return float(onp.max(self.rel_err)) if self.rel_err.size else 0.0

    def passed(self, tol: float) -> bool:
        return self.max_rel_error < tol


def _random_space(key, template: FESpace, scale: float = 1.0) -> FESpace:
    flat = scale * jax.random.uniform(key, (template.ncomp,), minval=-1.0, maxval=1.0)
    return template.unflatten(flat)


def _random_geometry(key, template: FESpace, perturbation: float) -> FESpace:
    # Keep J close to the identity so detJ stays positive
    key_geo, key_jac = jax.random.split(key)
    geo = _random_space(key_geo, template)
    x = geo.get(0)
    dim = x.grad.shape[-1]
    J = np.eye(dim) + perturbation * jax.random.uniform(key_jac, (dim, dim), minval=-1.0, maxval=1.0)
    return FESpace(dataclasses.replace(x, grad=J), *geo.components[1:])


def relative_error(approx, exact, atol: float = 1e-30):
    """Componentwise ``|approx - exact| / max(|approx|, |exact|)``.

    Where both magnitudes are below ``atol`` the absolute difference is used.
    """
    diff = onp.abs(approx - exact)
    denom = onp.maximum(onp.abs(approx), onp.abs(exact))
    return onp.where(denom > atol, diff / onp.where(denom > atol, denom, 1.0), diff)


def check_pde_implementation(pde, key, options: Optional[dict] = None) -> ConsistencyReport:
    """Compare the weak-form derivative with the PDE's Jacobian-vector product.

    Args:
        pde (PDE): Weak form to check.
        key (jax.random.PRNGKey): Seed for the random state, data, geometry and
            direction.
        options (dict, optional): Check options.
            - method (str): ``"cs"``, ``"fd"`` or ``"jvp"``. Defaults to "cs".
            - dh (float): Step size. Defaults to 1e-7.
            - state_scale (float): Amplitude of the random solution state.
              Defaults to 1.0.
            - geo_perturbation (float): Amplitude of the random deviation of the
              geometry Jacobian from the identity. Defaults to 0.25.
            - atol (float): Magnitude below which the absolute error is
              reported. Defaults to 1e-30.

    Returns:
        ConsistencyReport: Per-component values and relative errors. A mismatch
        is reported, never raised.

    Raises:
        ValueError: If ``method`` is unknown.
    """
    options = options or {}
    method = options.get("method", "cs")
    dh = options.get("dh", 1e-7)
    state_scale = options.get("state_scale", 1.0)
    geo_perturbation = options.get("geo_perturbation", 0.25)
    atol = options.get("atol", 1e-30)
    if method not in ("cs", "fd", "jvp"):
        raise ValueError(f"Unknown method '{method}', expected 'cs', 'fd' or 'jvp'")

    key_data, key_geo, key_sol, key_dir = jax.random.split(key, 4)
    data = _random_space(key_data, pde.data_space)
    geo = _random_geometry(key_geo, pde.geo_space, geo_perturbation)
    sref = _random_space(key_sol, pde.sol_space, state_scale)
    pref = _random_space(key_dir, pde.sol_space)

    detJ, J, Jinv = jacobian_transform(geo)
    wdetJ = detJ

    def residual(state_ref):
        s = state_ref.transform(detJ, J, Jinv)
        return pde.weak(wdetJ, data, geo, s).rtransform(detJ, J, Jinv).flatten()

    if method == "cs":
        perturbed = jax.tree_util.tree_map(lambda s, p: s + 1j * dh * p, sref, pref)
        approx = np.imag(residual(perturbed)) / dh
    elif method == "fd":
        perturbed = jax.tree_util.tree_map(lambda s, p: s + dh * p, sref, pref)
        approx = (residual(perturbed) - residual(sref)) / dh
    else:
        _, approx = jax.jvp(residual, (sref,), (pref,))

    s = sref.transform(detJ, J, Jinv)
    jvp = pde.JacVecProduct(pde, wdetJ, data, geo, s)
    exact = jvp(pref.transform(detJ, J, Jinv)).rtransform(detJ, J, Jinv).flatten()

    approx = onp.asarray(approx)
    exact = onp.asarray(exact)
    rel_err = relative_error(approx, exact, atol)

    logger.info(f"{type(pde).__name__}: method={method}, dh={dh:.1e}")
    logger.info(f"{'component':>10} {method:>24} {'JacVecProduct':>24} {'rel. error':>12}")
    for i in range(approx.shape[0]):
        logger.info(f"{i:10d} {approx[i]:24.15e} {exact[i]:24.15e} {rel_err[i]:12.4e}")

    return ConsistencyReport(method, dh, approx, exact, rel_err)
