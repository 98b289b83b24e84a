"""Two-view geometry: matching filters, epipolar matrices, pose recovery, triangulation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from slamkit.geometry import hat

TUM_CAMERA_MATRIX = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])
TUM_PRINCIPAL_POINT = (325.1, 249.7)
TUM_FOCAL_LENGTH = 521.0

_MIN_DISTANCE_FLOOR = 30.0
_CHEIRALITY_DISTANCE = 50.0
_EPS = 1.1920929e-07


@dataclass(frozen=True)
class Match:
    """A descriptor match between a query and a train keypoint."""

    query_idx: int
    train_idx: int
    distance: float


@dataclass(frozen=True, eq=False)
class PoseRecovery:
    """Relative pose chosen by the cheirality check, with its inlier count and mask."""

    rotation: np.ndarray
    translation: np.ndarray
    inliers: int
    mask: np.ndarray


def filter_matches(matches: Iterable[Match]) -> list[Match]:
    """Keep matches whose distance is at most max(2 * minimum distance, 30)."""
    candidates = list(matches)
    if not candidates:
        return []
    min_dist = min(m.distance for m in candidates)
    threshold = max(2.0 * min_dist, _MIN_DISTANCE_FLOOR)
    return [m for m in candidates if m.distance <= threshold]


def pixel2cam(point, camera_matrix=TUM_CAMERA_MATRIX) -> np.ndarray:
    """Convert a pixel coordinate to normalised camera coordinates."""
    k = _matrix3(camera_matrix, "camera_matrix")
    x, y = _pair(point)
    return np.array([(x - k[0, 2]) / k[0, 0], (y - k[1, 2]) / k[1, 1]])


def skew(vector) -> np.ndarray:
    """Skew-symmetric matrix t^ such that t^ @ v == t x v."""
    return hat(vector)


def _pair(point) -> tuple[float, float]:
    values = np.asarray(point, dtype=float).reshape(-1)
    if values.shape != (2,):
        raise ValueError("a 2D point must have two coordinates")
    return float(values[0]), float(values[1])


def _matrix3(values, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (3, 3):
        raise ValueError(f"{name} must be 3x3, got shape {array.shape}")
    return array


def _points(points, name: str) -> np.ndarray:
    array = np.asarray(points, dtype=float)
    if array.size == 0:
        return np.zeros((0, 2))
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {array.shape}")
    return array


def _point_pairs(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError("points1 and points2 must have the same number of points")
    return p1, p2


def _normalising_transform(points: np.ndarray) -> np.ndarray:
    centre = points.mean(axis=0)
    mean_dist = float(np.mean(np.linalg.norm(points - centre, axis=1)))
    if mean_dist < _EPS:
        raise ValueError("points are degenerate")
    scale = math.sqrt(2.0) / mean_dist
    return np.array(
        [[scale, 0.0, -scale * centre[0]], [0.0, scale, -scale * centre[1]], [0.0, 0.0, 1.0]]
    )


def find_fundamental_mat(points1, points2) -> np.ndarray:
    """Fundamental matrix F with x2^T F x1 = 0, by the normalised eight-point method."""
    p1, p2 = _point_pairs(points1, points2)
    if len(p1) < 8:
        raise ValueError("the eight-point method needs at least 8 point pairs")
    t1 = _normalising_transform(p1)
    t2 = _normalising_transform(p2)
    h1 = np.column_stack([p1, np.ones(len(p1))]) @ t1.T
    h2 = np.column_stack([p2, np.ones(len(p2))]) @ t2.T
    design = np.einsum("ni,nj->nij", h2, h1).reshape(len(p1), 9)
    _, _, vt = np.linalg.svd(design)
    f = vt[-1].reshape(3, 3)
    u, s, vt_f = np.linalg.svd(f)
    s[2] = 0.0
    f = u @ np.diag(s) @ vt_f
    f = t2.T @ f @ t1
    if abs(f[2, 2]) > _EPS:
        f = f / f[2, 2]
    return f


def find_essential_mat(
    points1, points2, focal: float, principal_point: Sequence[float] = (0.0, 0.0)
) -> np.ndarray:
    """Essential matrix K^T F K for a camera of the given focal length and principal point."""
    cx, cy = _pair(principal_point)
    k = np.array([[focal, 0.0, cx], [0.0, focal, cy], [0.0, 0.0, 1.0]])
    return k.T @ find_fundamental_mat(points1, points2) @ k


def decompose_essential_mat(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The two rotations and the unit translation encoded by an essential matrix."""
    e = _matrix3(essential, "essential")
    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    return u @ w @ vt, u @ w.T @ vt, u[:, 2].copy()


def triangulate_points(projection1, projection2, points1, points2) -> np.ndarray:
    """Linear triangulation; returns homogeneous points as a 4xN array."""
    a = np.asarray(projection1, dtype=float)
    b = np.asarray(projection2, dtype=float)
    if a.shape != (3, 4) or b.shape != (3, 4):
        raise ValueError("projection matrices must be 3x4")
    p1, p2 = _point_pairs(points1, points2)
    if len(p1) == 0:
        return np.zeros((4, 0))
    system = np.stack(
        [
            p1[:, 0:1] * a[2] - a[0],
            p1[:, 1:2] * a[2] - a[1],
            p2[:, 0:1] * b[2] - b[0],
            p2[:, 1:2] * b[2] - b[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(system)
    return vt[:, -1, :].T


def _cheirality_mask(projection: np.ndarray, n1: np.ndarray, n2: np.ndarray) -> np.ndarray:
    p0 = np.eye(3, 4)
    q = triangulate_points(p0, projection, n1, n2)
    with np.errstate(divide="ignore", invalid="ignore"):
        valid = q[2] * q[3] > 0
        q = q / q[3]
        valid &= q[2] < _CHEIRALITY_DISTANCE
        depth = (projection @ q)[2]
        valid &= depth > 0
        valid &= depth < _CHEIRALITY_DISTANCE
    return valid


def recover_pose(
    essential,
    points1,
    points2,
    focal: float,
    principal_point: Sequence[float] = (0.0, 0.0),
    mask=None,
) -> PoseRecovery:
    """Pick the decomposition of E that puts the most points in front of both cameras."""
    p1, p2 = _point_pairs(points1, points2)
    cx, cy = _pair(principal_point)
    centre = np.array([cx, cy])
    n1 = (p1 - centre) / focal
    n2 = (p2 - centre) / focal

    r1, r2, t = decompose_essential_mat(essential)
    candidates = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
    masks = [_cheirality_mask(np.column_stack([r, tt]), n1, n2) for r, tt in candidates]

    if mask is not None:
        given = np.asarray(mask).reshape(-1)
        if given.shape != (len(p1),):
            raise ValueError("mask must have one entry per point pair")
        given = given.astype(bool)
        masks = [given & m for m in masks]

    counts = [int(np.count_nonzero(m)) for m in masks]
    best = int(np.argmax(counts))
    rotation, translation = candidates[best]
    return PoseRecovery(rotation.copy(), translation.copy(), counts[best], masks[best])


def pose_estimation_2d2d(
    points1,
    points2,
    focal: float = TUM_FOCAL_LENGTH,
    principal_point: Sequence[float] = TUM_PRINCIPAL_POINT,
) -> tuple[np.ndarray, np.ndarray, PoseRecovery]:
    """Fundamental matrix, essential matrix and recovered pose from matched pixels."""
    fundamental = find_fundamental_mat(points1, points2)
    essential = find_essential_mat(points1, points2, focal, principal_point)
    pose = recover_pose(essential, points1, points2, focal, principal_point)
    return fundamental, essential, pose


def epipolar_constraint(
    point1, point2, rotation, translation, camera_matrix=TUM_CAMERA_MATRIX
) -> float:
    """Value of y2^T t^ R y1 for a matched pixel pair; zero for a perfect match."""
    r = _matrix3(rotation, "rotation")
    y1 = np.append(pixel2cam(point1, camera_matrix), 1.0)
    y2 = np.append(pixel2cam(point2, camera_matrix), 1.0)
    return float(y2 @ skew(translation) @ r @ y1)


def triangulation(
    points1, points2, rotation, translation, camera_matrix=TUM_CAMERA_MATRIX
) -> np.ndarray:
    """3D points, in the first camera's frame, of matched pixels; shape (N, 3)."""
    r = _matrix3(rotation, "rotation")
    t = np.asarray(translation, dtype=float).reshape(-1)
    if t.shape != (3,):
        raise ValueError("translation must have three elements")
    p1, p2 = _point_pairs(points1, points2)
    n1 = np.array([pixel2cam(p, camera_matrix) for p in p1]).reshape(-1, 2)
    n2 = np.array([pixel2cam(p, camera_matrix) for p in p2]).reshape(-1, 2)
    q = triangulate_points(np.eye(3, 4), np.column_stack([r, t]), n1, n2)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (q[:3] / q[3]).T