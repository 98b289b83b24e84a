"""Visual SLAM building blocks: geometry, curve fitting, multi-view pose estimation and mapping."""

__version__ = "0.1.0"
__all__ = [
    "curve_fitting",
    "dense_mapping",
    "epipolar",
    "geometry",
    "hello",
    "icp",
    "pointcloud",
]