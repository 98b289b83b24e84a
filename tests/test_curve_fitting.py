import math

import numpy as np
import pytest

from slamkit.curve_fitting import (
    FitResult,
    fit_gauss_newton,
    fit_levenberg_marquardt,
    generate_data,
    jacobian,
    main,
    residuals,
)

TRUE_ABC = np.array([1.0, 2.0, 1.0])


def test_generate_data_grid_and_noise_free_start():
    x, y = generate_data(1.0, 2.0, 1.0, 100, 0.0, seed=3)
    assert len(x) == 100 and len(y) == 100
    assert x[0] == 0.0
    assert math.isclose(x[5], 5 / 100.0)
    assert math.isclose(y[0], math.exp(1.0))


def test_generate_data_is_reproducible_with_seed():
    a = generate_data(seed=7)
    b = generate_data(seed=7)
    assert np.array_equal(a[1], b[1])


def test_generate_data_rejects_negative_sigma():
    with pytest.raises(ValueError):
        generate_data(sigma=-1.0)


def test_residuals_vanish_at_true_parameters():
    x, y = generate_data(1.0, 2.0, 1.0, 50, 0.0)
    assert np.allclose(residuals(TRUE_ABC, x, y), 0.0)


def test_jacobian_matches_finite_differences():
    x, y = generate_data(n=20, sigma=0.5, seed=1)
    abc = np.array([0.7, 1.5, 0.9])
    analytic = jacobian(abc, x)
    h = 1e-6
    for k in range(3):
        step = np.zeros(3)
        step[k] = h
        numeric = (residuals(abc + step, x, y) - residuals(abc - step, x, y)) / (2 * h)
        assert np.allclose(analytic[:, k], numeric, rtol=1e-5, atol=1e-6)


def test_levenberg_marquardt_recovers_noise_free_parameters():
    x, y = generate_data(1.0, 2.0, 1.0, 100, 0.0)
    result = fit_levenberg_marquardt(x, y, (0.0, 0.0, 0.0), 100)
    assert isinstance(result, FitResult)
    assert np.allclose(result.params, TRUE_ABC, atol=1e-4)
    assert result.cost < 1e-8


def test_gauss_newton_recovers_from_nearby_start():
    x, y = generate_data(1.0, 2.0, 1.0, 100, 0.0)
    result = fit_gauss_newton(x, y, (0.8, 2.2, 0.8), 100)
    assert np.allclose(result.params, TRUE_ABC, atol=1e-6)
    assert 1 <= result.iterations <= 100


def test_noisy_fit_beats_true_parameters_and_methods_agree():
    x, y = generate_data(1.0, 2.0, 1.0, 100, 1.0, seed=42)
    lm = fit_levenberg_marquardt(x, y)
    true_cost = 0.5 * float(np.sum(residuals(TRUE_ABC, x, y) ** 2))
    assert lm.cost <= true_cost
    gn = fit_gauss_newton(x, y, lm.params, 20)
    assert np.allclose(gn.params, lm.params, atol=1e-5)
    assert gn.cost <= lm.cost + 1e-9


def test_gauss_newton_never_increases_cost():
    x, y = generate_data(seed=5)
    start = (0.0, 0.0, 0.0)
    initial_cost = 0.5 * float(np.sum(residuals(start, x, y) ** 2))
    assert fit_gauss_newton(x, y, start, 5).cost <= initial_cost


def test_fit_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        fit_levenberg_marquardt([0.0, 0.1], [1.0])


def test_fit_rejects_empty_data():
    with pytest.raises(ValueError):
        fit_gauss_newton([], [])


def test_main_reports_estimate(capsys):
    assert main(["--seed", "1", "--method", "lm"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "generating data: "
    assert lines[-1].startswith("estimated model: ")
    assert len(lines[-1].split()) == 5