"""Nonlinear least-squares fitting of y = exp(a*x^2 + b*x + c)."""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass
from typing import Sequence

import numpy as np

_MAX_LM_RETRIES = 10
_STEP_TOLERANCE = 1e-12
_GRADIENT_TOLERANCE = 1e-12


@dataclass(frozen=True)
class FitResult:
    """Estimated parameters (a, b, c), the final cost 0.5*sum(r^2), iterations run."""

    params: np.ndarray
    cost: float
    iterations: int


def generate_data(
    a: float = 1.0,
    b: float = 2.0,
    c: float = 1.0,
    n: int = 100,
    sigma: float = 1.0,
    seed: int | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Samples x = i/100 for i < n with Gaussian noise of std ``sigma`` on y."""
    if n < 0:
        raise ValueError("n must not be negative")
    if sigma < 0:
        raise ValueError("sigma must not be negative")
    x = np.arange(n) / 100.0
    rng = np.random.default_rng(seed)
    noise = rng.normal(0.0, sigma, n) if sigma > 0 else np.zeros(n)
    y = np.exp(a * x * x + b * x + c) + noise
    return x, y


def _model(abc: np.ndarray, x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return np.exp(abc[0] * x * x + abc[1] * x + abc[2])


def _params(abc) -> np.ndarray:
    array = np.asarray(abc, dtype=float).reshape(-1)
    if array.shape != (3,):
        raise ValueError("parameters must be (a, b, c)")
    return array


def residuals(abc, x, y) -> np.ndarray:
    """Residuals y - exp(a*x^2 + b*x + c)."""
    return np.asarray(y, dtype=float) - _model(_params(abc), np.asarray(x, dtype=float))


def jacobian(abc, x) -> np.ndarray:
    """Jacobian of the residuals with respect to (a, b, c), shape (n, 3)."""
    xs = np.asarray(x, dtype=float)
    f = _model(_params(abc), xs)
    return -np.column_stack([f * xs * xs, f * xs, f])


def _prepare(x, y, initial) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float).reshape(-1)
    ys = np.asarray(y, dtype=float).reshape(-1)
    if xs.shape != ys.shape:
        raise ValueError("x and y must have the same length")
    if xs.size == 0:
        raise ValueError("no data to fit")
    return xs, ys, _params(initial).copy()


def _cost(r: np.ndarray) -> float:
    return 0.5 * float(r @ r)


def _solve(matrix: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    try:
        step = np.linalg.solve(matrix, rhs)
    except np.linalg.LinAlgError as exc:
        raise ValueError("normal equations are singular") from exc
    if not np.all(np.isfinite(step)):
        raise ValueError("normal equations are singular")
    return step


def fit_gauss_newton(
    x, y, initial: Sequence[float] = (0.0, 0.0, 0.0), iterations: int = 100
) -> FitResult:
    """Fit by Gauss-Newton; stops when a step no longer lowers the cost."""
    xs, ys, abc = _prepare(x, y, initial)
    r = residuals(abc, xs, ys)
    cost = _cost(r)
    done = 0
    for done in range(1, iterations + 1):
        j = jacobian(abc, xs)
        step = _solve(j.T @ j, -(j.T @ r))
        candidate = abc + step
        r_new = residuals(candidate, xs, ys)
        cost_new = _cost(r_new)
        if not np.isfinite(cost_new) or cost_new > cost:
            break
        abc, r, cost = candidate, r_new, cost_new
        if np.linalg.norm(step) <= _STEP_TOLERANCE * (np.linalg.norm(abc) + _STEP_TOLERANCE):
            break
    return FitResult(abc, cost, done)


def fit_levenberg_marquardt(
    x, y, initial: Sequence[float] = (0.0, 0.0, 0.0), iterations: int = 100
) -> FitResult:
    """Fit by Levenberg-Marquardt with adaptive damping."""
    xs, ys, abc = _prepare(x, y, initial)
    r = residuals(abc, xs, ys)
    cost = _cost(r)
    j = jacobian(abc, xs)
    damping = 1e-5 * float(np.max(np.diag(j.T @ j)))
    nu = 2.0
    done = 0
    for done in range(1, iterations + 1):
        j = jacobian(abc, xs)
        h = j.T @ j
        g = j.T @ r
        if np.max(np.abs(g)) < _GRADIENT_TOLERANCE:
            break
        accepted = False
        step = np.zeros(3)
        for _ in range(_MAX_LM_RETRIES):
            try:
                step = _solve(h + damping * np.eye(3), -g)
            except ValueError:
                damping *= nu
                nu *= 2.0
                continue
            candidate = abc + step
            r_new = residuals(candidate, xs, ys)
            cost_new = _cost(r_new)
            predicted = 0.5 * float(step @ (damping * step - g))
            rho = (cost - cost_new) / predicted if predicted > 0 else -1.0
            if np.isfinite(cost_new) and rho > 0:
                abc, r, cost = candidate, r_new, cost_new
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                accepted = True
                break
            damping *= nu
            nu *= 2.0
        if not accepted:
            break
        if np.linalg.norm(step) <= _STEP_TOLERANCE * (np.linalg.norm(abc) + _STEP_TOLERANCE):
            break
    return FitResult(abc, cost, done)


def main(argv: list[str] | None = None) -> int:
    """Generate noisy samples of the curve and estimate its parameters."""
    parser = argparse.ArgumentParser(prog="curve-fitting", description=main.__doc__)
    parser.add_argument("--method", choices=("lm", "gn"), default="lm")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("-n", type=int, default=100)
    parser.add_argument("--sigma", type=float, default=1.0)
    parser.add_argument("--iterations", type=int, default=100)
    args = parser.parse_args(argv)

    x, y = generate_data(1.0, 2.0, 1.0, args.n, args.sigma, args.seed)
    print("generating data: ")
    for xi, yi in zip(x, y):
        print(f"{xi:g} {yi:g}")

    fit = fit_levenberg_marquardt if args.method == "lm" else fit_gauss_newton
    start = time.perf_counter()
    result = fit(x, y, (0.0, 0.0, 0.0), args.iterations)
    elapsed = time.perf_counter() - start
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(f"iterations: {result.iterations}, final cost: {result.cost:g}")
    print("estimated model: " + " ".join(f"{v:g}" for v in result.params))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())