import math
from collections.abc import Sequence

import numpy as np

__all__ = [
    "IDENTITY_QUAT",
    "normalize",
    "rpy_to_quat",
    "quat_to_rpy",
    "rpy_to_matrix",
    "quat_multiply",
    "quat_from_axis_angle",
    "quat_rotate",
    "quat_to_matrix",
    "matrix_to_quat",
    "euler_xyz_to_quat",
    "euler_sequence_to_quat",
    "quat_between",
    "compose",
    "decompose",
    "rotate_inertia",
]

IDENTITY_QUAT = (1.0, 0.0, 0.0, 0.0)

_BASIS = {"x": (1.0, 0.0, 0.0), "y": (0.0, 1.0, 0.0), "z": (0.0, 0.0, 1.0)}


def normalize(vector: Sequence[float]) -> tuple[float, float, float]:
    """Scale a 3-vector to unit length, leaving the zero vector untouched"""
    v = np.asarray(vector, dtype=float)
    norm = np.linalg.norm(v)
    if norm == 0.0:
        return (0.0, 0.0, 0.0)
    return tuple(float(x) for x in v / norm)  # ty: ignore[invalid-return-type]


def rpy_to_quat(rpy: Sequence[float]) -> tuple[float, float, float, float]:
    """Convert roll-pitch-yaw Euler angles to unit quaternion

    Args:
        rpy: (roll, pitch, yaw) in radians, composed as Rz @ Ry @ Rx

    Returns:
        (w, x, y, z) unit quaternion
    """
    roll, pitch, yaw = rpy
    cr, cp, cy = math.cos(0.5 * roll), math.cos(0.5 * pitch), math.cos(0.5 * yaw)
    sr, sp, sy = math.sin(0.5 * roll), math.sin(0.5 * pitch), math.sin(0.5 * yaw)

    qw = cr * cp * cy + sr * sp * sy
    qx = sr * cp * cy - cr * sp * sy
    qy = cr * sp * cy + sr * cp * sy
    qz = cr * cp * sy - sr * sp * cy

    return (qw, qx, qy, qz)


def rpy_to_matrix(rpy: Sequence[float]) -> np.ndarray:
    """Rotation matrix for roll-pitch-yaw angles"""
    return quat_to_matrix(rpy_to_quat(rpy))


def quat_to_rpy(quat: Sequence[float]) -> tuple[float, float, float]:
    """Convert unit quaternion to roll-pitch-yaw Euler angles

    Args:
        quat: (w, x, y, z) quaternion

    Returns:
        (roll, pitch, yaw) in radians
    """
    R = quat_to_matrix(quat)
    pitch = math.asin(float(np.clip(-R[2, 0], -1.0, 1.0)))

    if abs(R[2, 0]) < 1.0 - 1e-9:
        roll = math.atan2(R[2, 1], R[2, 2])
        yaw = math.atan2(R[1, 0], R[0, 0])
    else:
        # gimbal lock, fold yaw into roll
        roll = math.atan2(-R[1, 2], R[1, 1])
        yaw = 0.0

    return (roll, pitch, yaw)


def quat_multiply(a: Sequence[float], b: Sequence[float]) -> tuple[float, float, float, float]:
    """Hamilton product a * b"""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return (
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    )


def quat_from_axis_angle(axis: Sequence[float], angle: float) -> tuple[float, float, float, float]:
    """Quaternion rotating by angle (radians) about axis

    A zero axis yields the identity rotation.
    """
    x, y, z = normalize(axis)
    if (x, y, z) == (0.0, 0.0, 0.0):
        return IDENTITY_QUAT
    s = math.sin(0.5 * angle)
    return (math.cos(0.5 * angle), x * s, y * s, z * s)


def quat_to_matrix(quat: Sequence[float]) -> np.ndarray:
    """Convert quaternion to 3x3 rotation matrix

    Args:
        quat: (w, x, y, z) quaternion, normalized before conversion

    Returns:
        3x3 rotation matrix
    """
    q = np.asarray(quat, dtype=float)
    norm = np.linalg.norm(q)
    if norm == 0.0:
        return np.eye(3)
    w, x, y, z = q / norm

    xx, yy, zz = x * x, y * y, z * z
    wx, wy, wz = w * x, w * y, w * z
    xy, xz, yz = x * y, x * z, y * z

    return np.array(
        [
            [1 - 2 * (yy + zz), 2 * (xy - wz), 2 * (xz + wy)],
            [2 * (xy + wz), 1 - 2 * (xx + zz), 2 * (yz - wx)],
            [2 * (xz - wy), 2 * (yz + wx), 1 - 2 * (xx + yy)],
        ]
    )


def matrix_to_quat(matrix: np.ndarray) -> tuple[float, float, float, float]:
    """Convert 3x3 rotation matrix to unit quaternion with non-negative w"""
    m = np.asarray(matrix, dtype=float)[:3, :3]
    trace = m[0, 0] + m[1, 1] + m[2, 2]

    if trace > 0:
        s = 2.0 * math.sqrt(trace + 1.0)
        w = 0.25 * s
        x = (m[2, 1] - m[1, 2]) / s
        y = (m[0, 2] - m[2, 0]) / s
        z = (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s

    q = np.array([w, x, y, z])
    q /= np.linalg.norm(q)
    if q[0] < 0:
        q = -q
    return tuple(float(c) for c in q)  # ty: ignore[invalid-return-type]


def quat_rotate(quat: Sequence[float], vector: Sequence[float]) -> tuple[float, float, float]:
    """Rotate a 3-vector by a quaternion"""
    v = quat_to_matrix(quat) @ np.asarray(vector, dtype=float)
    return (float(v[0]), float(v[1]), float(v[2]))


def euler_xyz_to_quat(rx: float, ry: float, rz: float) -> tuple[float, float, float, float]:
    """Quaternion for an XYZ-ordered Euler triple, R = Rx @ Ry @ Rz"""
    return euler_sequence_to_quat((rx, ry, rz), "xyz")


def euler_sequence_to_quat(angles: Sequence[float], sequence: str = "xyz") -> tuple[float, float, float, float]:
    """Quaternion for Euler angles applied along an axis sequence

    Lower-case axes rotate with the frame (intrinsic), upper-case axes are
    fixed (extrinsic), as in the MJCF ``eulerseq`` compiler attribute.

    Args:
        angles: Three angles in radians
        sequence: Three axis letters, e.g. "xyz" or "ZYX"

    Returns:
        (w, x, y, z) unit quaternion

    Raises:
        ValueError: If sequence is not three axis letters
    """
    if len(sequence) != 3 or any(c.lower() not in _BASIS for c in sequence):
        raise ValueError(f"Invalid Euler sequence: '{sequence}'")

    quat = IDENTITY_QUAT
    for angle, axis_name in zip(angles, sequence):
        rot = quat_from_axis_angle(_BASIS[axis_name.lower()], angle)
        if axis_name.islower():
            quat = quat_multiply(quat, rot)
        else:
            quat = quat_multiply(rot, quat)

    return quat


def quat_between(a: Sequence[float], b: Sequence[float]) -> tuple[float, float, float, float]:
    """Shortest-arc quaternion rotating direction a onto direction b"""
    u = np.asarray(normalize(a))
    v = np.asarray(normalize(b))
    d = float(np.dot(u, v))

    if d > 1.0 - 1e-12:
        return IDENTITY_QUAT
    if d < -1.0 + 1e-12:
        ortho = np.cross(u, (1.0, 0.0, 0.0))
        if np.linalg.norm(ortho) < 1e-9:
            ortho = np.cross(u, (0.0, 1.0, 0.0))
        return quat_from_axis_angle(ortho, math.pi)

    c = np.cross(u, v)
    q = np.array([1.0 + d, c[0], c[1], c[2]])
    q /= np.linalg.norm(q)
    return tuple(float(x) for x in q)  # ty: ignore[invalid-return-type]


def compose(position: Sequence[float], quat: Sequence[float]) -> np.ndarray:
    """Build a 4x4 homogeneous transform from translation and rotation"""
    T = np.eye(4)
    T[:3, :3] = quat_to_matrix(quat)
    T[:3, 3] = position
    return T


def decompose(T: np.ndarray) -> tuple[tuple[float, float, float], tuple[float, float, float, float]]:
    """Split a 4x4 homogeneous transform into translation and quaternion"""
    position = (float(T[0, 3]), float(T[1, 3]), float(T[2, 3]))
    return position, matrix_to_quat(T[:3, :3])


def rotate_inertia(diagonal: Sequence[float], quat: Sequence[float]) -> np.ndarray:
    """Express a principal-axes inertia in the parent frame

    Args:
        diagonal: (ixx, iyy, izz) principal moments
        quat: (w, x, y, z) orientation of the principal axes

    Returns:
        Full symmetric 3x3 tensor R @ diag(d) @ R.T
    """
    R = quat_to_matrix(quat)
    return R @ np.diag(np.asarray(diagonal, dtype=float)) @ R.T
