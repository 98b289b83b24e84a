"""Monocular dense depth estimation by epipolar search, NCC and depth filtering."""

from __future__ import annotations

import argparse
import math
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import SE3

BOARDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 2
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
NCC_THRESHOLD = 0.85
SEARCH_STEP = 0.7
MAX_HALF_LENGTH = 100.0
TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"


def read_dataset_files(path) -> tuple[list[str], list[SE3]]:
    """Image paths and camera-to-world poses listed in the dataset's trajectory file."""
    root = Path(path)
    tokens = (root / TRAJECTORY_FILE).read_text().split()
    files, poses = [], []
    for start in range(0, len(tokens) - 7, 8):
        name = tokens[start]
        data = [float(t) for t in tokens[start + 1 : start + 8]]
        files.append(str(root / "images" / name))
        poses.append(SE3.from_quaternion(data[3:7], data[:3]))
    return files, poses


def px2cam(pixel) -> np.ndarray:
    """Normalised camera ray (z = 1) of a pixel."""
    x, y = np.asarray(pixel, dtype=float).reshape(2)
    return np.array([(x - CX) / FX, (y - CY) / FY, 1.0])


def cam2px(point) -> np.ndarray:
    """Pixel of a point in the camera frame."""
    x, y, z = np.asarray(point, dtype=float).reshape(3)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pixel) -> bool:
    """Whether a pixel lies within the image, away from the border."""
    x, y = np.asarray(pixel, dtype=float).reshape(2)
    return bool(x >= BOARDER and y >= BOARDER and x + BOARDER < WIDTH and y + BOARDER <= HEIGHT)


def bilinear_interpolated_value(image, pixel) -> float:
    """Bilinearly interpolated grey value in [0, 1]."""
    x, y = np.asarray(pixel, dtype=float).reshape(2)
    ix, iy = int(x), int(y)
    xx = x - math.floor(x)
    yy = y - math.floor(y)
    img = np.asarray(image)
    return (
        (1 - xx) * (1 - yy) * float(img[iy, ix])
        + xx * (1 - yy) * float(img[iy, ix + 1])
        + (1 - xx) * yy * float(img[iy + 1, ix])
        + xx * yy * float(img[iy + 1, ix + 1])
    ) / 255.0


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of the windows around two pixels."""
    rx, ry = np.asarray(pt_ref, dtype=float).reshape(2)
    cp = np.asarray(pt_curr, dtype=float).reshape(2)
    offsets = range(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1)
    ref_img = np.asarray(ref)
    values_ref = np.array(
        [float(ref_img[int(dy + ry), int(dx + rx)]) / 255.0 for dx in offsets for dy in offsets]
    )
    values_curr = np.array(
        [bilinear_interpolated_value(curr, cp + (dx, dy)) for dx in offsets for dy in offsets]
    )
    a = values_ref - values_ref.sum() / NCC_AREA
    b = values_curr - values_curr.sum() / NCC_AREA
    return float((a @ b) / math.sqrt(float(a @ a) * float(b @ b) + 1e-10))


def _normalized(v: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(v)
    return v / n if n > 0 else v


def epipolar_search(ref, curr, t_c_r: SE3, pt_ref, depth_mu: float, depth_cov: float):
    """Best NCC match of ``pt_ref`` along its epipolar segment, or None.

    ``depth_cov`` is the standard deviation of the depth; the segment spans
    three of them on each side of the mean depth.
    """
    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(t_c_r.act(f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, 0.1)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(t_c_r.act(f_ref * d_min))
    px_max_curr = cam2px(t_c_r.act(f_ref * d_max))
    line = px_max_curr - px_min_curr
    direction = _normalized(line)
    half_length = min(0.5 * float(np.linalg.norm(line)), MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    offset = -half_length
    while offset <= half_length:
        px_curr = px_mean_curr + offset * direction
        offset += SEARCH_STEP
        if not inside(px_curr):
            continue
        score = ncc(ref, curr, pt_ref, px_curr)
        if score > best_ncc:
            best_ncc, best_px = score, px_curr
    if best_ncc < NCC_THRESHOLD:
        return None
    return best_px


def update_depth_filter(pt_ref, pt_curr, t_c_r: SE3, depth, depth_cov) -> tuple[float, float]:
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused depth and variance written at ``pt_ref``.
    """
    t_r_c = t_c_r.inverse()
    f_ref = _normalized(px2cam(pt_ref))
    f_curr = _normalized(px2cam(pt_curr))
    t = t_r_c.translation
    f2 = t_r_c.rotation.matrix @ f_curr
    b = np.array([t @ f_ref, t @ f2])
    a0 = f_ref @ f_ref
    a2 = f_ref @ f2
    a1 = -a2
    a3 = -(f2 @ f2)
    det = a0 * a3 - a1 * a2
    lam = np.array([a3 * b[0] - a1 * b[1], -a2 * b[0] + a0 * b[1]]) / det
    xm = lam[0] * f_ref
    xn = t + lam[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    p = f_ref * depth_estimation
    a = p - t
    t_norm = float(np.linalg.norm(t))
    a_norm = float(np.linalg.norm(a))
    alpha = math.acos(float(f_ref @ t) / t_norm)
    beta = math.acos(float(-(a @ t)) / (a_norm * t_norm))
    beta_prime = beta + math.atan(1 / FX)
    gamma = math.pi - alpha - beta_prime
    p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov2 = (p_prime - depth_estimation) ** 2

    x, y = (int(v) for v in np.asarray(pt_ref, dtype=float).reshape(2))
    mu = depth[y, x]
    sigma2 = depth_cov[y, x]
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[y, x] = mu_fuse
    depth_cov[y, x] = sigma_fuse2
    return float(mu_fuse), float(sigma_fuse2)


def update(ref, curr, t_c_r: SE3, depth, depth_cov) -> int:
    """Update every unconverged pixel of the depth maps; returns how many matched."""
    region = depth_cov[BOARDER : HEIGHT - BOARDER, BOARDER : WIDTH - BOARDER]
    active = np.argwhere((region >= MIN_COV) & (region <= MAX_COV)) + BOARDER
    updated = 0
    for y, x in active:
        pt_ref = np.array([float(x), float(y)])
        pt_curr = epipolar_search(
            ref, curr, t_c_r, pt_ref, depth[y, x], math.sqrt(depth_cov[y, x])
        )
        if pt_curr is None:
            continue
        update_depth_filter(pt_ref, pt_curr, t_c_r, depth, depth_cov)
        updated += 1
    return updated


def _read_gray(path: str) -> np.ndarray | None:
    try:
        with Image.open(path) as image:
            return np.asarray(image.convert("L"))
    except OSError:
        return None


def main(argv: list[str] | None = None) -> int:
    """Estimate the depth of the first frame of a dataset and save depth.png."""
    parser = argparse.ArgumentParser(prog="dense-mapping", description=main.__doc__)
    parser.add_argument("dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)
    try:
        files, poses = read_dataset_files(args.dataset)
    except OSError:
        print("Reading image files failed!")
        return 1
    print(f"read total {len(files)} files.")
    if not files:
        return 1
    ref = _read_gray(files[0])
    if ref is None:
        print("Reading image files failed!")
        return 1
    depth = np.full((HEIGHT, WIDTH), 3.0)
    depth_cov = np.full((HEIGHT, WIDTH), 3.0)
    for index in range(1, len(files)):
        print(f"*** loop {index} ***")
        curr = _read_gray(files[index])
        if curr is None:
            continue
        update(ref, curr, poses[index].inverse() * poses[0], depth, depth_cov)
    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())