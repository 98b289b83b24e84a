"""Colored point clouds from RGB-D frames with known poses: build, filter, save."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image
from scipy.spatial import cKDTree

from slamkit.geometry import isometry, quaternion_to_matrix

POSE_FIELDS = 7


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics and the factor that turns raw depth into metres."""

    cx: float = 325.5
    cy: float = 253.5
    fx: float = 518.0
    fy: float = 519.0
    depth_scale: float = 1000.0


def pose_to_matrix(values) -> np.ndarray:
    """4x4 pose of the values (tx, ty, tz, qx, qy, qz, qw)."""
    data = np.asarray(values, dtype=float).reshape(-1)
    if data.shape != (POSE_FIELDS,):
        raise ValueError("a pose needs 7 values: tx ty tz qx qy qz qw")
    return isometry(quaternion_to_matrix(data[3:]), data[:3])


def read_poses(path, count: int = 5) -> list[np.ndarray]:
    """Read ``count`` poses of 7 whitespace-separated values each."""
    tokens = Path(path).read_text().split()
    needed = count * POSE_FIELDS
    if len(tokens) < needed:
        raise ValueError(f"pose file holds {len(tokens)} values, {needed} needed")
    values = np.array([float(token) for token in tokens[:needed]])
    return [pose_to_matrix(chunk) for chunk in values.reshape(count, POSE_FIELDS)]


def depth_to_cloud(
    color, depth, pose, intrinsics: CameraIntrinsics = CameraIntrinsics(), max_depth=None
) -> tuple[np.ndarray, np.ndarray]:
    """World points and their colours for every pixel with a valid depth.

    Pixels with zero depth are skipped, and so are those with raw depth at
    or above ``max_depth`` when it is given.
    """
    colors = np.asarray(color)
    depths = np.asarray(depth)
    if colors.ndim != 3 or colors.shape[2] < 3:
        raise ValueError("color must have shape (H, W, 3)")
    if depths.shape != colors.shape[:2]:
        raise ValueError("depth and color must have the same size")
    transform = np.asarray(pose, dtype=float)
    if transform.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    valid = depths > 0
    if max_depth is not None:
        valid &= depths < max_depth
    v, u = np.nonzero(valid)
    z = depths[v, u].astype(float) / intrinsics.depth_scale
    camera = np.column_stack(
        [(u - intrinsics.cx) * z / intrinsics.fx, (v - intrinsics.cy) * z / intrinsics.fy, z]
    )
    world = camera @ transform[:3, :3].T + transform[:3, 3]
    return world, colors[v, u, :3].astype(np.uint8)


def _checked(points, colors) -> tuple[np.ndarray, np.ndarray]:
    p = np.asarray(points, dtype=float).reshape(-1, 3)
    c = np.asarray(colors, dtype=np.uint8).reshape(-1, 3)
    if len(p) != len(c):
        raise ValueError("points and colors must have the same length")
    return p, c


def statistical_outlier_removal(
    points, colors, mean_k: int = 50, std_mul: float = 1.0
) -> tuple[np.ndarray, np.ndarray]:
    """Drop points whose mean neighbour distance exceeds mean + std_mul * stddev."""
    if mean_k < 1:
        raise ValueError("mean_k must be positive")
    p, c = _checked(points, colors)
    if len(p) < 2:
        return p, c
    k = min(mean_k, len(p) - 1)
    distances, _ = cKDTree(p).query(p, k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)
    mean = mean_distances.mean()
    std = mean_distances.std(ddof=1)
    keep = mean_distances <= mean + std_mul * std
    return p[keep], c[keep]


def voxel_filter(points, colors, leaf_size=0.01) -> tuple[np.ndarray, np.ndarray]:
    """Replace the points in each voxel by their centroid and mean colour."""
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError("leaf_size must be positive")
    p, c = _checked(points, colors)
    if len(p) == 0:
        return p, c
    keys = np.floor(p / leaf).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), 3))
    color_sums = np.zeros((len(counts), 3))
    np.add.at(sums, inverse, p)
    np.add.at(color_sums, inverse, c.astype(float))
    centroids = sums / counts[:, None]
    mean_colors = np.rint(color_sums / counts[:, None]).astype(np.uint8)
    return centroids, mean_colors


def save_pcd_binary(path, points, colors) -> None:
    """Write an XYZRGB cloud as a binary PCD file."""
    p, c = _checked(points, colors)
    n = len(p)
    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {n}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {n}\n"
        "DATA binary\n"
    )
    records = np.zeros(n, dtype=[("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])
    records["x"], records["y"], records["z"] = p[:, 0], p[:, 1], p[:, 2]
    rgb = c.astype(np.uint32)
    records["rgb"] = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
    with open(path, "wb") as handle:
        handle.write(header.encode("ascii"))
        handle.write(records.tobytes())


def join_map(
    directory,
    count: int = 5,
    intrinsics: CameraIntrinsics = CameraIntrinsics(),
    max_depth=None,
    filtered: bool = False,
) -> tuple[np.ndarray, np.ndarray]:
    """Fuse ``count`` RGB-D frames of ``directory`` into one world-frame cloud.

    The directory holds pose.txt, color/<i>.png and depth/<i>.pgm for i from 1.
    With ``filtered`` each frame is cleaned of outliers and the result is
    downsampled on a 1 cm voxel grid.
    """
    root = Path(directory)
    poses = read_poses(root / "pose.txt", count)
    all_points, all_colors = [], []
    for index, pose in enumerate(poses, start=1):
        print(f"converting image: {index}")
        with Image.open(root / "color" / f"{index}.png") as image:
            color = np.asarray(image.convert("RGB"))
        with Image.open(root / "depth" / f"{index}.pgm") as image:
            depth = np.asarray(image).astype(np.int64)
        points, colors = depth_to_cloud(color, depth, pose, intrinsics, max_depth)
        if filtered:
            points, colors = statistical_outlier_removal(points, colors, 50, 1.0)
        all_points.append(points)
        all_colors.append(colors)
    points = np.concatenate(all_points) if all_points else np.zeros((0, 3))
    colors = np.concatenate(all_colors) if all_colors else np.zeros((0, 3), dtype=np.uint8)
    print(f"point cloud has {len(points)} points.")
    if filtered:
        points, colors = voxel_filter(points, colors, 0.01)
        print(f"after filtering, point cloud has {len(points)} points.")
    return points, colors


def main(argv: list[str] | None = None) -> int:
    """Build a point cloud map from RGB-D frames and save it as map.pcd."""
    parser = argparse.ArgumentParser(prog="join-map", description=main.__doc__)
    parser.add_argument("directory", nargs="?", default=".")
    parser.add_argument("--count", type=int, default=5)
    parser.add_argument("--max-depth", type=int, default=None)
    parser.add_argument("--filtered", action="store_true")
    parser.add_argument("--output", default="map.pcd")
    args = parser.parse_args(argv)
    if not (Path(args.directory) / "pose.txt").is_file():
        print(f"cannot find pose file in {args.directory}")
        return 1
    points, colors = join_map(
        args.directory, args.count, CameraIntrinsics(), args.max_depth, args.filtered
    )
    save_pcd_binary(args.output, points, colors)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())