import math

import numpy as np
import pytest

from slamkit.epipolar import TUM_CAMERA_MATRIX
from slamkit.geometry import angle_axis_to_matrix
from slamkit.icp import (
    bundle_adjustment_pnp,
    depth_to_point,
    pose_estimation_3d3d,
    project,
    refine_pose_3d3d,
)

SQUARE_K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def scene():
    rng = np.random.default_rng(7)
    points = rng.uniform([-1.0, -1.0, 2.0], [1.0, 1.0, 5.0], size=(30, 3))
    rotation = angle_axis_to_matrix(0.3, (0.2, 1.0, 0.1))
    translation = np.array([0.1, -0.2, 0.3])
    return points, rotation, translation


def test_depth_zero_means_no_point():
    assert depth_to_point((100.0, 100.0), 0) is None


def test_depth_at_principal_point_lies_on_axis():
    point = depth_to_point((325.1, 249.7), 5000, TUM_CAMERA_MATRIX)
    np.testing.assert_allclose(point, [0.0, 0.0, 1.0], atol=1e-12)


def test_depth_negative_raises():
    with pytest.raises(ValueError):
        depth_to_point((1.0, 1.0), -3)


def test_depth_point_projects_back_to_pixel():
    pixel = (400.0, 100.0)
    point = depth_to_point(pixel, 12000, SQUARE_K)
    np.testing.assert_allclose(project(point, np.eye(3), np.zeros(3), SQUARE_K), pixel)


def test_project_principal_point():
    pixel = project((0.0, 0.0, 2.0), np.eye(3), np.zeros(3), SQUARE_K)
    np.testing.assert_allclose(pixel, [320.0, 240.0])


def test_project_focal_plane_raises():
    with pytest.raises(ValueError):
        project((1.0, 0.0, 0.0), np.eye(3), np.zeros(3), SQUARE_K)


def test_svd_recovers_transform(scene):
    points2, rotation, translation = scene
    points1 = points2 @ rotation.T + translation
    r, t = pose_estimation_3d3d(points1, points2)
    np.testing.assert_allclose(r, rotation, atol=1e-9)
    np.testing.assert_allclose(t, translation, atol=1e-9)
    assert math.isclose(np.linalg.det(r), 1.0, abs_tol=1e-9)


def test_svd_mismatched_lengths_raise(scene):
    points, _, _ = scene
    with pytest.raises(ValueError):
        pose_estimation_3d3d(points, points[:-1])


def test_svd_empty_raises():
    with pytest.raises(ValueError):
        pose_estimation_3d3d(np.zeros((0, 3)), np.zeros((0, 3)))


def test_refine_from_identity_converges(scene):
    points2, rotation, translation = scene
    points1 = points2 @ rotation.T + translation
    r, t = refine_pose_3d3d(points1, points2, iterations=10)
    np.testing.assert_allclose(r, rotation, atol=1e-8)
    np.testing.assert_allclose(t, translation, atol=1e-8)


def test_refine_keeps_exact_solution(scene):
    points2, rotation, translation = scene
    points1 = points2 @ rotation.T + translation
    r, t = refine_pose_3d3d(points1, points2, rotation, translation)
    np.testing.assert_allclose(r, rotation, atol=1e-10)
    np.testing.assert_allclose(t, translation, atol=1e-10)


def test_refine_agrees_with_svd(scene):
    points2, rotation, translation = scene
    rng = np.random.default_rng(3)
    points1 = points2 @ rotation.T + translation + rng.normal(0, 0.01, points2.shape)
    r_svd, t_svd = pose_estimation_3d3d(points1, points2)
    r_gn, t_gn = refine_pose_3d3d(points1, points2, iterations=20)
    np.testing.assert_allclose(r_gn, r_svd, atol=1e-6)
    np.testing.assert_allclose(t_gn, t_svd, atol=1e-6)


def _observe(points, rotation, translation):
    return np.array([project(p, rotation, translation, SQUARE_K) for p in points])


def test_bundle_adjustment_keeps_exact_solution(scene):
    points, rotation, translation = scene
    observed = _observe(points, rotation, translation)
    r, t, refined = bundle_adjustment_pnp(points, observed, SQUARE_K, rotation, translation)
    np.testing.assert_allclose(r, rotation, atol=1e-12)
    np.testing.assert_allclose(t, translation, atol=1e-12)
    np.testing.assert_allclose(refined, points, atol=1e-12)


def test_bundle_adjustment_reduces_reprojection_error(scene):
    points, rotation, translation = scene
    observed = _observe(points, rotation, translation)
    start_r = angle_axis_to_matrix(0.25, (0.2, 1.0, 0.1))
    start_t = translation + np.array([0.05, 0.05, -0.05])
    before = np.abs(_observe(points, start_r, start_t) - observed).max()
    r, t, refined = bundle_adjustment_pnp(points, observed, SQUARE_K, start_r, start_t)
    after = np.abs(_observe(refined, r, t) - observed).max()
    assert after < 1e-3
    assert after < before
    assert math.isclose(np.linalg.det(r), 1.0, abs_tol=1e-9)


def test_bundle_adjustment_mismatch_raises(scene):
    points, rotation, translation = scene
    observed = _observe(points, rotation, translation)
    with pytest.raises(ValueError):
        bundle_adjustment_pnp(points, observed[:-2], SQUARE_K, rotation, translation)


def test_bundle_adjustment_empty_raises():
    with pytest.raises(ValueError):
        bundle_adjustment_pnp(np.zeros((0, 3)), np.zeros((0, 2)), SQUARE_K)