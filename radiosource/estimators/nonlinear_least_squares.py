"""
Damped Gauss-Newton (Levenberg-Marquardt) for the attenuation model.

The same routine serves two callers with very different sizes:

* the minimal-sample solver, which fits the u free unknowns to u + 1
  readings inside every consensus round and only needs the solution;
* the refinement stage, which fits the unknowns to the whole inlier set and
  also needs the covariance of the solution.

Problem:
    Find x minimising F(x) = ½ Σ w_i (y_i - h_i(x))², with residuals
    r = y - h(x) (observed minus predicted).

Step:
    (J'WJ + μI) δ = J'Wr

    The damping μ shrinks after a successful step and grows after a failed
    one (Nielsen's rule). A step is accepted when it lowers F.

Covariance:
    P = s² (J'WJ)⁻¹,   s² = r'Wr / (m - n)  or  s² = 1

    The second form is used when W already holds inverse measurement
    variances.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)

# Damping above this value means no descent direction is left
MAX_DAMPING = 1e10

Model = Callable[[np.ndarray], np.ndarray]


@dataclass
class NonlinearLSResult:
    """Outcome of a Levenberg-Marquardt solve.

    Attributes:
        x: Final parameter vector.
        covariance: Parameter covariance (n × n), None when not requested,
            not converged or singular.
        iterations: Outer iterations used.
        residuals: Residuals y - h(x) at the final parameters.
        cost: ½ r'Wr at the final parameters.
        converged: False when the budget ran out or the model went
            non-finite.
        weights: Per-observation weights used.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    weights: Optional[np.ndarray] = None


def _half_weighted_sqr_norm(w: np.ndarray, r: np.ndarray) -> float:
    return 0.5 * float(np.sum(w * r * r))


def _damped_step(normal: np.ndarray, gradient: np.ndarray, mu: float) -> np.ndarray:
    damped = normal + mu * np.eye(len(gradient))
    try:
        return np.linalg.solve(damped, gradient)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(damped, gradient, rcond=None)[0]


def _covariance(
    jacobian: Model,
    x: np.ndarray,
    w: np.ndarray,
    r: np.ndarray,
    scale: bool,
) -> Optional[np.ndarray]:
    J = jacobian(x)
    normal = (J.T * w) @ J
    m, n = J.shape
    s2 = float(np.sum(w * r * r)) / (m - n) if scale and m > n else 1.0
    try:
        P = s2 * np.linalg.inv(normal)
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(P)):
        return None
    return P


def levenberg_marquardt(
    h: Model,
    jacobian: Model,
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Weighted nonlinear least squares with adaptive damping.

    Args:
        h: Model, maps n parameters to m predicted observations.
        jacobian: Returns ∂h/∂x at the given parameters, shape (m, n).
        y: Observations, shape (m,).
        x0: Starting parameters, shape (n,).
        weights: Non-negative observation weights, shape (m,). All ones
            when omitted.
        max_iter: Outer iteration budget.
        tol: Stop when ‖δ‖ < tol · (‖x‖ + tol).
        mu0: Starting damping.
        return_covariance: Compute the covariance of a converged solution.
        scale_covariance: Scale (J'WJ)⁻¹ by the residual variance. Turn off
            when the weights are inverse measurement variances.

    Returns:
        NonlinearLSResult. A start where the model is not finite returns
        immediately with ``converged=False``.

    Example:
        >>> anchors = np.array([[0.0, 0.0], [20.0, 0.0], [0.0, 20.0], [20.0, 20.0]])
        >>> def h(x):
        ...     return -10.0 * np.log10(np.sum((x - anchors) ** 2, axis=1))
        >>> def jac(x):
        ...     sqr = np.sum((x - anchors) ** 2, axis=1)
        ...     return -20.0 * (x - anchors) / (np.log(10.0) * sqr[:, np.newaxis])
        >>> result = levenberg_marquardt(h, jac, h(np.array([5.0, 8.0])), np.array([10.0, 10.0]))
        >>> np.round(result.x, 6)
        array([5., 8.])
    """
    y = np.asarray(y, dtype=float)
    x = np.array(x0, dtype=float)
    if y.ndim != 1:
        raise ValueError(f"Observations must be a vector, got shape {y.shape}")
    if x.ndim != 1:
        raise ValueError(f"Starting parameters must be a vector, got shape {x.shape}")
    m, n = y.shape[0], x.shape[0]

    w = np.ones(m) if weights is None else np.asarray(weights, dtype=float)
    if w.shape != (m,):
        raise ValueError(f"Expected {m} weights, got shape {w.shape}")
    if np.any(w < 0):
        raise ValueError("Weights must be non-negative")

    r = y - h(x)
    if r.shape != (m,):
        raise ValueError(f"Model returned shape {r.shape}, expected ({m},)")
    cost = _half_weighted_sqr_norm(w, r)
    if not np.isfinite(cost):
        logger.debug("Model is not finite at the starting point")
        return NonlinearLSResult(x, None, 0, r, cost, False, w)

    mu, nu = mu0, 2.0
    converged = False
    iterations = 0
    while iterations < max_iter:
        iterations += 1
        J = jacobian(x)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian has shape {J.shape}, expected ({m}, {n})")
        JtW = J.T * w
        normal = JtW @ J
        gradient = JtW @ r

        # Raise the damping until a step lowers the cost
        step = np.zeros(n)
        accepted = False
        while mu <= MAX_DAMPING:
            step = _damped_step(normal, gradient, mu)
            x_trial = x + step
            r_trial = y - h(x_trial)
            cost_trial = _half_weighted_sqr_norm(w, r_trial)

            model_decrease = 0.5 * step @ (mu * step + gradient)
            if np.isfinite(cost_trial) and model_decrease > 0.0 and cost_trial < cost:
                rho = (cost - cost_trial) / model_decrease
                x, r, cost = x_trial, r_trial, cost_trial
                mu *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                accepted = True
                break
            mu *= nu
            nu *= 2.0

        if not accepted:
            # Stationary point: no step can lower the cost any further
            converged = True
            break
        if np.linalg.norm(step) < tol * (np.linalg.norm(x) + tol):
            converged = True
            break

    if not (np.all(np.isfinite(x)) and np.isfinite(cost)):
        converged = False

    covariance = None
    if return_covariance and converged:
        covariance = _covariance(jacobian, x, w, r, scale_covariance)

    return NonlinearLSResult(
        x=x,
        covariance=covariance,
        iterations=iterations,
        residuals=r,
        cost=cost,
        converged=converged,
        weights=w,
    )
