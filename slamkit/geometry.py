"""Rotations, rigid transforms and the SO(3)/SE(3) Lie groups."""

from __future__ import annotations

import argparse
import math
from typing import Iterable

import numpy as np

_EPS = 1e-10


def _vector(values: Iterable[float], size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float).reshape(-1)
    if array.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {array.shape}")
    return array


def _square(values, size: int, name: str) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.shape != (size, size):
        raise ValueError(f"{name} must be {size}x{size}, got shape {array.shape}")
    return array


def hat(vector) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector."""
    x, y, z = _vector(vector, 3, "vector")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(matrix) -> np.ndarray:
    """Return the 3-vector of a skew-symmetric matrix."""
    m = _square(matrix, 3, "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def angle_axis_to_matrix(angle: float, axis) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    direction = _vector(axis, 3, "axis")
    norm = np.linalg.norm(direction)
    if norm < _EPS:
        raise ValueError("rotation axis must not be zero")
    k = hat(direction / norm)
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def matrix_to_quaternion(rotation) -> np.ndarray:
    """Unit quaternion of a rotation matrix, as coefficients (x, y, z, w)."""
    r = _square(rotation, 3, "rotation")
    q = np.zeros(4)
    diagonal_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    if diagonal_sum > 0.0:
        s = math.sqrt(diagonal_sum + 1.0)
        q[3] = 0.5 * s
        s = 0.5 / s
        q[0] = (r[2, 1] - r[1, 2]) * s
        q[1] = (r[0, 2] - r[2, 0]) * s
        q[2] = (r[1, 0] - r[0, 1]) * s
    else:
        i = 0
        if r[1, 1] > r[0, 0]:
            i = 1
        if r[2, 2] > r[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(r[i, i] - r[j, j] - r[k, k] + 1.0)
        q[i] = 0.5 * s
        s = 0.5 / s
        q[3] = (r[k, j] - r[j, k]) * s
        q[j] = (r[j, i] + r[i, j]) * s
        q[k] = (r[k, i] + r[i, k]) * s
    return q


def quaternion_to_matrix(quaternion) -> np.ndarray:
    """Rotation matrix of a quaternion given as coefficients (x, y, z, w)."""
    q = _vector(quaternion, 4, "quaternion")
    norm = np.linalg.norm(q)
    if norm < _EPS:
        raise ValueError("quaternion must not be zero")
    x, y, z, w = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def euler_angles(rotation, a0: int = 2, a1: int = 1, a2: int = 0) -> np.ndarray:
    """Euler angles about axes (a0, a1, a2) so that R = R_a0 * R_a1 * R_a2.

    The first angle lies in [0, pi] and the other two in [-pi, pi].
    """
    r = _square(rotation, 3, "rotation")
    if any(a not in (0, 1, 2) for a in (a0, a1, a2)) or a0 == a1 or a1 == a2:
        raise ValueError("axes must be in 0..2 with neighbouring axes distinct")
    odd = 0 if (a0 + 1) % 3 == a1 else 1
    i = a0
    j = (a0 + 1 + odd) % 3
    k = (a0 + 2 - odd) % 3
    res = np.zeros(3)

    def flip(angle: float) -> bool:
        return (odd and angle < 0.0) or (not odd and angle > 0.0)

    if a0 == a2:
        res[0] = math.atan2(r[j, i], r[k, i])
        s2 = math.hypot(r[j, i], r[k, i])
        if flip(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = -math.atan2(s2, r[i, i])
        else:
            res[1] = math.atan2(s2, r[i, i])
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(c1 * r[j, k] - s1 * r[k, k], c1 * r[j, j] - s1 * r[k, j])
    else:
        res[0] = math.atan2(r[j, k], r[k, k])
        c2 = math.hypot(r[i, i], r[i, j])
        if flip(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = math.atan2(-r[i, k], -c2)
        else:
            res[1] = math.atan2(-r[i, k], c2)
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(s1 * r[k, i] - c1 * r[j, i], c1 * r[j, j] - s1 * r[k, j])
    if not odd:
        res = -res
    return res


def isometry(rotation, translation) -> np.ndarray:
    """4x4 homogeneous matrix of a rotation followed by a translation."""
    transform = np.eye(4)
    transform[:3, :3] = _square(rotation, 3, "rotation")
    transform[:3, 3] = _vector(translation, 3, "translation")
    return transform


def format_rotation(rotation) -> str:
    """Render a rotation matrix as ``=[a,b,c],[d,e,f],[g,h,i]`` with two decimals."""
    r = _square(rotation, 3, "rotation")
    rows = ("[" + ",".join(f"{value:.2f}" for value in row) + "]" for row in r)
    return "=" + ",".join(rows)


def format_vector(vector) -> str:
    """Render a 3-vector as ``=[x,y,z]``."""
    v = _vector(vector, 3, "vector")
    return "=[" + ",".join(f"{value:g}" for value in v) + "]"


def format_quaternion(quaternion) -> str:
    """Render quaternion coefficients (x, y, z, w) as ``=[x,y,z,w]``."""
    q = _vector(quaternion, 4, "quaternion")
    return "=[" + ",".join(f"{value:g}" for value in q) + "]"


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _EPS:
        return np.eye(3) + 0.5 * k + (k @ k) / 6.0
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta**2 * k
        + (theta - math.sin(theta)) / theta**3 * (k @ k)
    )


def _left_jacobian_inverse(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _EPS:
        return np.eye(3) - 0.5 * k + (k @ k) / 12.0
    factor = (1.0 - theta * math.sin(theta) / (2.0 * (1.0 - math.cos(theta)))) / theta**2
    return np.eye(3) - 0.5 * k + factor * (k @ k)


class SO3:
    """A 3D rotation."""

    def __init__(self, matrix) -> None:
        self.matrix = _square(matrix, 3, "matrix").copy()

    @classmethod
    def exp(cls, omega) -> "SO3":
        """Rotation of the rotation vector ``omega``."""
        k = hat(omega)
        theta = float(np.linalg.norm(_vector(omega, 3, "omega")))
        if theta < _EPS:
            return cls(np.eye(3) + k + 0.5 * (k @ k))
        return cls(
            np.eye(3)
            + math.sin(theta) / theta * k
            + (1.0 - math.cos(theta)) / theta**2 * (k @ k)
        )

    @classmethod
    def from_quaternion(cls, quaternion) -> "SO3":
        """Rotation of quaternion coefficients (x, y, z, w)."""
        return cls(quaternion_to_matrix(quaternion))

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        q = matrix_to_quaternion(self.matrix)
        if q[3] < 0.0:
            q = -q
        xyz, w = q[:3], q[3]
        n = float(np.linalg.norm(xyz))
        if n < _EPS:
            return 2.0 / w * (1.0 - n * n / (3.0 * w * w)) * xyz
        return 2.0 * math.atan2(n, w) / n * xyz

    def inverse(self) -> "SO3":
        return SO3(self.matrix.T)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(self.matrix @ other.matrix)
        vector = np.asarray(other, dtype=float)
        if vector.shape == (3,):
            return self.matrix @ vector
        return NotImplemented

    def __str__(self) -> str:
        return " ".join(f"{value:g}" for value in self.log())

    def __repr__(self) -> str:
        return f"SO3(log=[{self}])"


class SE3:
    """A rigid-body transform: rotation and translation."""

    def __init__(self, rotation, translation) -> None:
        self.rotation = rotation if isinstance(rotation, SO3) else SO3(rotation)
        self.translation = _vector(translation, 3, "translation").copy()

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Transform of the twist ``xi`` = (translation part, rotation part)."""
        twist = _vector(xi, 6, "xi")
        rho, phi = twist[:3], twist[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    @classmethod
    def from_quaternion(cls, quaternion, translation) -> "SE3":
        return cls(SO3.from_quaternion(quaternion), translation)

    @staticmethod
    def hat(xi) -> np.ndarray:
        twist = _vector(xi, 6, "xi")
        matrix = np.zeros((4, 4))
        matrix[:3, :3] = hat(twist[3:])
        matrix[:3, 3] = twist[:3]
        return matrix

    @staticmethod
    def vee(matrix) -> np.ndarray:
        m = _square(matrix, 4, "matrix")
        return np.concatenate([m[:3, 3], vee(m[:3, :3])])

    def log(self) -> np.ndarray:
        """Twist of this transform, translation part first."""
        phi = self.rotation.log()
        rho = _left_jacobian_inverse(phi) @ self.translation
        return np.concatenate([rho, phi])

    def matrix(self) -> np.ndarray:
        return isometry(self.rotation.matrix, self.translation)

    def inverse(self) -> "SE3":
        rotation = self.rotation.inverse()
        return SE3(rotation, -(rotation.matrix @ self.translation))

    def act(self, point) -> np.ndarray:
        """Transform a 3D point."""
        return self.rotation.matrix @ _vector(point, 3, "point") + self.translation

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation * other.rotation,
                self.rotation.matrix @ other.translation + self.translation,
            )
        vector = np.asarray(other, dtype=float)
        if vector.shape == (3,):
            return self.act(vector)
        return NotImplemented

    def __str__(self) -> str:
        translation = " ".join(f"{value:g}" for value in self.translation)
        return f"{self.rotation}\n{translation}"

    def __repr__(self) -> str:
        return f"SE3(log=[{' '.join(f'{v:g}' for v in self.log())}])"


def _row(vector) -> str:
    return " ".join(f"{value:.3g}" for value in np.asarray(vector).reshape(-1))


def _block(matrix) -> str:
    return "\n".join(" ".join(f"{value:10.3g}" for value in row) for row in np.asarray(matrix))


def main(argv: list[str] | None = None) -> int:
    """Show rotation representations and Lie group operations."""
    parser = argparse.ArgumentParser(prog="geometry-demo", description=main.__doc__)
    parser.parse_args(argv)

    rotation = angle_axis_to_matrix(math.pi / 4, (0, 0, 1))
    v = np.array([1.0, 0.0, 0.0])
    print("rotation matrix =\n" + _block(rotation))
    print("(1,0,0) after rotation = " + _row(rotation @ v))
    print("yaw pitch roll = " + _row(euler_angles(rotation, 2, 1, 0)))
    transform = isometry(rotation, (1, 3, 4))
    print("Transform matrix = \n" + _block(transform))
    print("v tranformed = " + _row((transform @ np.append(v, 1.0))[:3]))
    quaternion = matrix_to_quaternion(rotation)
    print("quaternion = \n" + "\n".join(f"{c:.3g}" for c in quaternion))
    print("(1,0,0) after rotation = " + _row(quaternion_to_matrix(quaternion) @ v))
    print("R" + format_rotation(rotation) + "  q" + format_quaternion(quaternion))

    r90 = angle_axis_to_matrix(math.pi / 2, (0, 0, 1))
    so3_r = SO3(r90)
    so3_v = SO3.exp((0, 0, math.pi / 2))
    so3_q = SO3.from_quaternion(matrix_to_quaternion(r90))
    print(f"SO(3) from matrix: {so3_r}")
    print(f"SO(3) from vector: {so3_v}")
    print(f"SO(3) from quaternion :{so3_q}")
    so3 = so3_r.log()
    print("so3 = " + _row(so3))
    print("so3 hat=\n" + _block(hat(so3)))
    print("so3 hat vee= " + _row(vee(hat(so3))))
    print(f"SO3 updated = {SO3.exp((1e-4, 0, 0)) * so3_r}")

    print("************************************")
    t = np.array([1.0, 0.0, 0.0])
    se3_rt = SE3(r90, t)
    se3_qt = SE3.from_quaternion(matrix_to_quaternion(r90), t)
    print(f"SE3 from R,t= \n{se3_rt}")
    print(f"SE3 from q,t= \n{se3_qt}")
    se3 = se3_rt.log()
    print("se3 = " + _row(se3))
    print("se3 hat = \n" + _block(SE3.hat(se3)))
    print("se3 hat vee = " + _row(SE3.vee(SE3.hat(se3))))
    update = np.zeros(6)
    update[0] = 1e-4
    print("SE3 updated = \n" + _block((SE3.exp(update) * se3_rt).matrix()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())