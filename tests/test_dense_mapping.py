import numpy as np
import pytest

from slamkit.dense_mapping import (
    bilinear_interpolated_value,
    cam2px,
    epipolar_search,
    inside,
    ncc,
    px2cam,
    read_dataset_files,
    update,
    update_depth_filter,
)
from slamkit.geometry import SE3


@pytest.fixture
def textured():
    return np.random.default_rng(1).integers(0, 256, (480, 640), dtype=np.uint8)


def test_px_cam_round_trip():
    px = np.array([123.0, 77.0])
    assert np.allclose(cam2px(px2cam(px) * 2.5), px)


@pytest.mark.parametrize(
    "pixel,expected",
    [((20, 20), True), ((19, 20), False), ((620, 100), False), ((100, 460), True), ((100, 461), False)],
)
def test_inside(pixel, expected):
    assert inside(pixel) is expected


def test_bilinear_uniform_and_midpoint():
    img = np.array([[0, 255], [0, 255]], dtype=np.uint8)
    assert bilinear_interpolated_value(img, (0.5, 0.0)) == pytest.approx(0.5)
    assert bilinear_interpolated_value(np.full((3, 3), 255, np.uint8), (0.3, 0.7)) == pytest.approx(1.0)


def test_ncc_identical_and_inverted(textured):
    pt = np.array([100.0, 100.0])
    assert ncc(textured, textured, pt, pt) == pytest.approx(1.0, abs=1e-6)
    assert ncc(textured, 255 - textured, pt, pt) == pytest.approx(-1.0, abs=1e-6)


def test_epipolar_search_identity(textured):
    pose = SE3(np.eye(3), np.zeros(3))
    pt = np.array([200.0, 150.0])
    found = epipolar_search(textured, textured, pose, pt, 3.0, 1.0)
    assert found is not None
    assert np.allclose(found, pt, atol=1e-6)


def test_epipolar_search_no_match(textured):
    pose = SE3(np.eye(3), np.zeros(3))
    other = np.random.default_rng(2).integers(0, 256, (480, 640), dtype=np.uint8)
    assert epipolar_search(textured, other, pose, np.array([200.0, 150.0]), 3.0, 1.0) is None


def test_update_depth_filter_recovers_depth():
    pose = SE3(np.eye(3), [-0.1, 0.0, 0.0])
    pt_ref = np.array([100.0, 100.0])
    f_ref = px2cam(pt_ref)
    f_ref /= np.linalg.norm(f_ref)
    pt_curr = cam2px(pose.act(f_ref * 2.0))
    depth = np.full((480, 640), 3.0)
    cov = np.full((480, 640), 1e12)
    mu, sigma2 = update_depth_filter(pt_ref, pt_curr, pose, depth, cov)
    assert mu == pytest.approx(2.0, rel=1e-4)
    assert depth[100, 100] == mu
    assert sigma2 < 1e12


def test_update_skips_converged(textured):
    depth = np.full((480, 640), 3.0)
    cov = np.full((480, 640), 0.01)
    count = update(textured, textured, SE3(np.eye(3), [0.1, 0, 0]), depth, cov)
    assert count == 0
    assert np.all(depth == 3.0)


def test_read_dataset_files(tmp_path):
    (tmp_path / "first_200_frames_traj_over_table_input_sequence.txt").write_text(
        "a.png 1 2 3 0 0 0 1\nb.png 4 5 6 0 0 0 1\n"
    )
    files, poses = read_dataset_files(tmp_path)
    assert [f.split("/")[-1].split("\\")[-1] for f in files] == ["a.png", "b.png"]
    assert np.allclose(poses[1].translation, [4, 5, 6])


def test_read_dataset_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset_files(tmp_path)