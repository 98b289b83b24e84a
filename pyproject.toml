[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual SLAM building blocks: rigid-body geometry, Lie groups, curve fitting, epipolar geometry, ICP, point-cloud mapping and dense monocular depth estimation"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]
keywords = [
    "slam",
    "computer-vision",
    "lie-group",
    "epipolar-geometry",
    "icp",
    "point-cloud",
    "depth-estimation",
    "bundle-adjustment",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
slamkit-hello = "slamkit.hello:main"
slamkit-geometry = "slamkit.geometry:main"
slamkit-curve-fitting = "slamkit.curve_fitting:main"
slamkit-joinmap = "slamkit.pointcloud:main"
slamkit-dense-mapping = "slamkit.dense_mapping:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.hatch.build.targets.sdist]
include = ["slamkit", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
