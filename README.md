# slamkit

Building blocks for visual SLAM on top of NumPy, SciPy and Pillow:

- `slamkit.geometry` — rotations as matrices, angle–axis (`angle_axis_to_matrix`),
  quaternions in `(x, y, z, w)` order (`matrix_to_quaternion`,
  `quaternion_to_matrix`), Euler angles (`euler_angles`), 4×4 rigid transforms
  (`isometry`), `hat`/`vee`, text formatting helpers (`format_rotation`,
  `format_vector`, `format_quaternion`), and the Lie groups `SO3` and `SE3` with
  `exp`, `log`, `inverse` and composition by `*`. `SE3` twists put the
  translation part first and the rotation part last.
- `slamkit.curve_fitting` — nonlinear least squares for `y = exp(a·x² + b·x + c)`:
  `generate_data`, `residuals`, `jacobian`, `fit_gauss_newton` and
  `fit_levenberg_marquardt`, each fit returning a `FitResult` (parameters,
  final cost, iterations run).
- `slamkit.epipolar` — match filtering (`Match`, `filter_matches`),
  `pixel2cam`, the normalised eight-point `find_fundamental_mat`,
  `find_essential_mat`, `decompose_essential_mat`, linear `triangulate_points`,
  cheirality-checked `recover_pose` (returning a `PoseRecovery`),
  `pose_estimation_2d2d`, `epipolar_constraint` and `triangulation`.
- `slamkit.icp` — `depth_to_point`, 3D–3D alignment by SVD
  (`pose_estimation_3d3d`) with Gauss–Newton refinement on SE(3)
  (`refine_pose_3d3d`), `project`, and `bundle_adjustment_pnp`, which refines a
  camera pose and its landmarks together by Levenberg–Marquardt.
- `slamkit.pointcloud` — `CameraIntrinsics`, pose reading (`pose_to_matrix`,
  `read_poses`), RGB-D frames to world points (`depth_to_cloud`),
  `statistical_outlier_removal`, `voxel_filter`, `save_pcd_binary` and
  `join_map`.
- `slamkit.dense_mapping` — dense monocular depth estimation for a reference
  frame: epipolar search with NCC matching (`epipolar_search`, `ncc`),
  triangulation with Gaussian depth fusion (`update_depth_filter`) and a
  whole-image `update`.
- `slamkit.hello` — `print_hello`, a greeting.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Library use

```python
import numpy as np
from slamkit.geometry import SO3, SE3, angle_axis_to_matrix, hat, vee

rotation = angle_axis_to_matrix(np.pi / 2, np.array([0.0, 0.0, 1.0]))
so3 = SO3(rotation)
omega = so3.log()                       # rotation vector
assert np.allclose(vee(hat(omega)), omega)

updated = SO3.exp(np.array([1e-4, 0.0, 0.0])) * so3

pose = SE3(rotation, np.array([1.0, 0.0, 0.0]))
xi = pose.log()                         # translation first, rotation last
assert np.allclose(SE3.vee(SE3.hat(xi)), xi)
print(pose.matrix())
```

Fitting a curve to noisy samples:

```python
from slamkit.curve_fitting import generate_data, fit_levenberg_marquardt

x, y = generate_data(1.0, 2.0, 1.0, 100, 1.0, 0)
result = fit_levenberg_marquardt(x, y, [0.0, 0.0, 0.0], 100)
print(result.params, result.cost, result.iterations)
```

Relative pose and 3D points from matched pixel coordinates of two views
(arrays of shape `(N, 2)`, at least eight pairs):

```python
from slamkit.epipolar import pose_estimation_2d2d, triangulation

fundamental, essential, pose = pose_estimation_2d2d(points1, points2)
points_3d = triangulation(points1, points2, pose.rotation, pose.translation)
```

## Commands

| Command | What it does |
| --- | --- |
| `slamkit-hello` | Prints `Hello SLAM!`. |
| `slamkit-geometry` | Walks through rotation, quaternion, `SO3` and `SE3` operations and prints the results. |
| `slamkit-curve-fitting` | Generates noisy samples of `exp(x² + 2x + 1)` and fits the three parameters. Options: `--method lm` or `gn`, `--seed`, `-n`, `--sigma`, `--iterations`. |
| `slamkit-joinmap` | Joins RGB-D frames and their poses into one point cloud and writes it as binary PCD. |
| `slamkit-dense-mapping` | Estimates a dense depth map for the first frame of a monocular dataset and writes it as an image. |

`slamkit-joinmap [directory]` (default `.`) expects `pose.txt` holding seven
values `tx ty tz qx qy qz qw` per frame, together with `color/1.png`,
`color/2.png`, … and 16-bit `depth/1.pgm`, `depth/2.pgm`, …. Options:
`--count` (frames, default 5), `--max-depth` (drop raw depths at or above this),
`--filtered` (per-frame statistical outlier removal and a 1 cm voxel grid) and
`--output` (default `map.pcd`). It exits with status 1 when `pose.txt` is missing.

`slamkit-dense-mapping` takes the dataset directory as its argument:

```
slamkit-dense-mapping path/to/dataset --output depth.png
```

The directory holds `first_200_frames_traj_over_table_input_sequence.txt`, whose
entries are an image name followed by `tx ty tz qx qy qz qw` (camera-to-world),
and the images under `images/`. The saved image holds the estimated depth in
metres, rounded and clipped to 0–255.

## What it does not do

The package works on coordinates you supply. It does not detect or match
features in images: the epipolar and ICP functions take already matched pixel
or 3D coordinates. It opens no windows and draws nothing on screen, and it
does not build occupancy maps; point clouds are only written to PCD files.