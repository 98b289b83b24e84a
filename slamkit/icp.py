"""Pose from 3D-3D and 3D-2D correspondences: SVD alignment and iterative refinement."""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import TUM_CAMERA_MATRIX, pixel2cam
from slamkit.geometry import SE3

DEPTH_SCALE = 5000.0

_GRADIENT_TOLERANCE = 1e-12
_STEP_TOLERANCE = 1e-12
_MAX_LM_RETRIES = 10
_INITIAL_DAMPING = 1e-5


def _points3(points, name: str) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {array.shape}")
    return array


def _points2(points, name: str) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {array.shape}")
    return array


def _rotation(values) -> np.ndarray:
    array = np.eye(3) if values is None else np.asarray(values, dtype=float)
    if array.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {array.shape}")
    return array


def _translation(values) -> np.ndarray:
    array = np.zeros(3) if values is None else np.asarray(values, dtype=float).reshape(-1)
    if array.shape != (3,):
        raise ValueError("translation must have three elements")
    return array


def _camera(camera_matrix) -> tuple[float, float, float]:
    k = np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError(f"camera_matrix must be 3x3, got shape {k.shape}")
    return float(k[0, 0]), float(k[0, 2]), float(k[1, 2])


def _hat_rows(vectors: np.ndarray) -> np.ndarray:
    x, y, z = vectors[:, 0], vectors[:, 1], vectors[:, 2]
    m = np.zeros((len(vectors), 3, 3))
    m[:, 0, 1] = -z
    m[:, 0, 2] = y
    m[:, 1, 0] = z
    m[:, 1, 2] = -x
    m[:, 2, 0] = -y
    m[:, 2, 1] = x
    return m


def _apply_update(pose: SE3, delta: np.ndarray) -> SE3:
    # The update is ordered (rotation, translation); SE3.exp takes translation first.
    return SE3.exp(np.concatenate([delta[3:], delta[:3]])) * pose


def depth_to_point(
    pixel, depth: float, camera_matrix=TUM_CAMERA_MATRIX, depth_scale: float = DEPTH_SCALE
) -> np.ndarray | None:
    """3D point in the camera frame of a pixel with a raw depth reading.

    Returns None where the depth reading is zero, meaning no measurement.
    """
    if depth < 0:
        raise ValueError("depth must not be negative")
    if depth_scale <= 0:
        raise ValueError("depth_scale must be positive")
    if depth == 0:
        return None
    dd = depth / depth_scale
    x, y = pixel2cam(pixel, camera_matrix)
    return np.array([x * dd, y * dd, dd])


def pose_estimation_3d3d(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    """Rotation and translation with points1 = R @ points2 + t, by SVD."""
    p1 = _points3(points1, "points1")
    p2 = _points3(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError("points1 and points2 must have the same number of points")
    if len(p1) == 0:
        raise ValueError("no point pairs given")
    centre1 = p1.mean(axis=0)
    centre2 = p2.mean(axis=0)
    q1 = p1 - centre1
    q2 = p2 - centre2
    w = q1.T @ q2
    u, _, vt = np.linalg.svd(w)
    v = vt.T
    if np.linalg.det(u) * np.linalg.det(v) < 0:
        u[:, 2] *= -1
    rotation = u @ v.T
    translation = centre1 - rotation @ centre2
    return rotation, translation


def refine_pose_3d3d(
    points1, points2, rotation=None, translation=None, iterations: int = 10
) -> tuple[np.ndarray, np.ndarray]:
    """Refine the pose aligning points2 onto points1 by Gauss-Newton on SE(3)."""
    p1 = _points3(points1, "points1")
    p2 = _points3(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError("points1 and points2 must have the same number of points")
    if len(p1) == 0:
        raise ValueError("no point pairs given")
    pose = SE3(_rotation(rotation), _translation(translation))
    for _ in range(iterations):
        transformed = p2 @ pose.rotation.matrix.T + pose.translation
        error = p1 - transformed
        jac = np.zeros((len(p1), 3, 6))
        jac[:, :, :3] = _hat_rows(transformed)
        jac[:, :, 3:] = -np.eye(3)
        h = np.einsum("nij,nik->jk", jac, jac)
        b = -np.einsum("nij,ni->j", jac, error)
        try:
            delta = np.linalg.solve(h, b)
        except np.linalg.LinAlgError as exc:
            raise ValueError("point configuration is degenerate") from exc
        pose = _apply_update(pose, delta)
        if np.linalg.norm(delta) < _STEP_TOLERANCE:
            break
    return pose.rotation.matrix.copy(), pose.translation.copy()


def project(point, rotation, translation, camera_matrix=TUM_CAMERA_MATRIX) -> np.ndarray:
    """Pixel of a world point seen by a camera at (rotation, translation).

    The focal length K[0, 0] is used for both axes.
    """
    p = np.asarray(point, dtype=float).reshape(-1)
    if p.shape != (3,):
        raise ValueError("point must have three elements")
    focal, cx, cy = _camera(camera_matrix)
    pc = _rotation(rotation) @ p + _translation(translation)
    if pc[2] == 0:
        raise ValueError("point lies in the camera's focal plane")
    return np.array([focal * pc[0] / pc[2] + cx, focal * pc[1] / pc[2] + cy])


def _reprojection(
    pose: SE3, points: np.ndarray, measured: np.ndarray, focal: float, cx: float, cy: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    pc = points @ pose.rotation.matrix.T + pose.translation
    x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = np.column_stack([focal * x / z + cx, focal * y / z + cy])
        dproj = np.zeros((len(points), 2, 3))
        dproj[:, 0, 0] = focal / z
        dproj[:, 0, 2] = -focal * x / (z * z)
        dproj[:, 1, 1] = focal / z
        dproj[:, 1, 2] = -focal * y / (z * z)
    return measured - projected, pc, dproj


def _cost(error: np.ndarray) -> float:
    return 0.5 * float(np.sum(error * error))


def bundle_adjustment_pnp(
    points_3d,
    points_2d,
    camera_matrix=TUM_CAMERA_MATRIX,
    rotation=None,
    translation=None,
    iterations: int = 100,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Jointly refine a camera pose and landmarks against observed pixels.

    Levenberg-Marquardt with the landmarks eliminated by the Schur complement.
    Returns the rotation, the translation and the refined landmarks.
    """
    points = _points3(points_3d, "points_3d").copy()
    measured = _points2(points_2d, "points_2d")
    if len(points) != len(measured):
        raise ValueError("points_3d and points_2d must have the same number of points")
    if len(points) == 0:
        raise ValueError("no correspondences given")
    focal, cx, cy = _camera(camera_matrix)
    pose = SE3(_rotation(rotation), _translation(translation))
    n = len(points)

    error, pc, dproj = _reprojection(pose, points, measured, focal, cx, cy)
    cost = _cost(error)
    if not np.isfinite(cost):
        raise ValueError("initial pose puts points in the camera's focal plane")
    damping: float | None = None
    nu = 2.0

    for _ in range(iterations):
        pose_lift = np.zeros((n, 3, 6))
        pose_lift[:, :, :3] = -_hat_rows(pc)
        pose_lift[:, :, 3:] = np.eye(3)
        jac_pose = -np.einsum("nij,njk->nik", dproj, pose_lift)
        jac_point = -np.einsum("nij,jk->nik", dproj, pose.rotation.matrix)

        a = np.einsum("nij,nik->jk", jac_pose, jac_pose)
        b = np.einsum("nij,nik->njk", jac_pose, jac_point)
        c = np.einsum("nij,nik->njk", jac_point, jac_point)
        g_pose = -np.einsum("nij,ni->j", jac_pose, error)
        g_point = -np.einsum("nij,ni->nj", jac_point, error)

        gradient = max(np.max(np.abs(g_pose)), np.max(np.abs(g_point)))
        if gradient < _GRADIENT_TOLERANCE:
            break
        if damping is None:
            diag = np.concatenate([np.diag(a), np.einsum("nii->ni", c).reshape(-1)])
            damping = _INITIAL_DAMPING * float(np.max(diag))

        accepted = False
        for _ in range(_MAX_LM_RETRIES):
            try:
                c_inv = np.linalg.inv(c + damping * np.eye(3))
                b_cinv = np.einsum("nij,njk->nik", b, c_inv)
                schur = a + damping * np.eye(6) - np.einsum("nij,nkj->ik", b_cinv, b)
                rhs = g_pose - np.einsum("nij,nj->i", b_cinv, g_point)
                delta_pose = np.linalg.solve(schur, rhs)
            except np.linalg.LinAlgError:
                damping *= nu
                nu *= 2.0
                continue
            delta_points = np.einsum(
                "nij,nj->ni", c_inv, g_point - np.einsum("nji,j->ni", b, delta_pose)
            )
            candidate_pose = _apply_update(pose, delta_pose)
            candidate_points = points + delta_points
            new_error, new_pc, new_dproj = _reprojection(
                candidate_pose, candidate_points, measured, focal, cx, cy
            )
            new_cost = _cost(new_error)
            if np.isfinite(new_cost) and new_cost < cost:
                pose, points = candidate_pose, candidate_points
                error, pc, dproj, cost = new_error, new_pc, new_dproj, new_cost
                damping = max(damping / 3.0, 1e-300)
                nu = 2.0
                accepted = True
                break
            damping *= nu
            nu *= 2.0
        if not accepted:
            break
        step = np.concatenate([delta_pose, delta_points.reshape(-1)])
        if np.linalg.norm(step) < _STEP_TOLERANCE:
            break

    return pose.rotation.matrix.copy(), pose.translation.copy(), points