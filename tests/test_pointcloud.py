import numpy as np
import pytest
from PIL import Image

from slamkit.pointcloud import (
    CameraIntrinsics,
    depth_to_cloud,
    join_map,
    pose_to_matrix,
    read_poses,
    save_pcd_binary,
    statistical_outlier_removal,
    voxel_filter,
)

UNIT = CameraIntrinsics(cx=0.0, cy=0.0, fx=1.0, fy=1.0, depth_scale=1.0)


def test_pose_identity_quaternion():
    m = pose_to_matrix([1, 2, 3, 0, 0, 0, 1])
    assert np.allclose(m[:3, :3], np.eye(3))
    assert np.allclose(m[:3, 3], [1, 2, 3])


def test_pose_wrong_size():
    with pytest.raises(ValueError):
        pose_to_matrix([1, 2, 3])


def test_read_poses(tmp_path):
    f = tmp_path / "pose.txt"
    f.write_text("1 2 3 0 0 0 1\n4 5 6 0 0 0 1\n")
    poses = read_poses(f, 2)
    assert len(poses) == 2
    assert np.allclose(poses[1][:3, 3], [4, 5, 6])


def test_read_poses_too_short(tmp_path):
    f = tmp_path / "pose.txt"
    f.write_text("1 2 3")
    with pytest.raises(ValueError):
        read_poses(f, 1)


def test_depth_to_cloud_skips_and_maps():
    color = np.zeros((2, 2, 3), dtype=np.uint8)
    color[1, 1] = [10, 20, 30]
    depth = np.array([[0, 5], [2, 3]])
    points, colors = depth_to_cloud(color, depth, np.eye(4), UNIT, max_depth=5)
    assert len(points) == 2
    assert np.allclose(points[1], [3, 3, 3])
    assert colors[1].tolist() == [10, 20, 30]


def test_depth_to_cloud_size_mismatch():
    with pytest.raises(ValueError):
        depth_to_cloud(np.zeros((2, 2, 3)), np.zeros((3, 2)), np.eye(4), UNIT)


def test_outlier_removed():
    rng = np.random.default_rng(0)
    points = np.vstack([rng.normal(0, 0.01, (100, 3)), [[10, 10, 10]]])
    colors = np.zeros((101, 3), dtype=np.uint8)
    kept, _ = statistical_outlier_removal(points, colors, 10, 1.0)
    assert len(kept) < 101
    assert not np.any(np.all(kept == [10, 10, 10], axis=1))


def test_voxel_merges():
    points = np.array([[0.001, 0.001, 0.001], [0.003, 0.003, 0.003], [0.5, 0.5, 0.5]])
    colors = np.array([[0, 0, 0], [100, 100, 100], [7, 7, 7]], dtype=np.uint8)
    p, c = voxel_filter(points, colors, 0.01)
    assert len(p) == 2
    assert np.allclose(p[0], [0.002, 0.002, 0.002])
    assert c[0].tolist() == [50, 50, 50]


def test_save_pcd(tmp_path):
    path = tmp_path / "map.pcd"
    save_pcd_binary(path, [[1, 2, 3]], [[1, 2, 3]])
    data = path.read_bytes()
    head, body = data.split(b"DATA binary\n")
    assert b"POINTS 1" in head
    values = np.frombuffer(body[:12], dtype="<f4")
    assert values.tolist() == [1.0, 2.0, 3.0]
    assert np.frombuffer(body[12:], dtype="<u4")[0] == (1 << 16) | (2 << 8) | 3


def test_join_map(tmp_path):
    (tmp_path / "color").mkdir()
    (tmp_path / "depth").mkdir()
    (tmp_path / "pose.txt").write_text("0 0 0 0 0 0 1\n")
    Image.fromarray(np.full((4, 4, 3), 9, dtype=np.uint8)).save(tmp_path / "color" / "1.png")
    depth = np.zeros((4, 4), dtype=np.uint8)
    depth[0, 0] = 100
    Image.fromarray(depth).save(tmp_path / "depth" / "1.pgm")
    points, colors = join_map(tmp_path, 1, UNIT)
    assert len(points) == 1
    assert np.allclose(points[0], [0, 0, 100])
    assert colors[0].tolist() == [9, 9, 9]