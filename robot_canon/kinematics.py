import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields, replace
from typing import ClassVar

import numpy as np

from .model import Joint, JointType, Robot
from .transforms import compose, decompose, euler_xyz_to_quat, quat_from_axis_angle, quat_multiply, quat_rotate

__all__ = [
    "JointValue",
    "FixedValue",
    "ScalarValue",
    "PlanarValue",
    "FloatingValue",
    "KinematicJoint",
    "KinematicModel",
    "zero_value",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JointValue:
    """Base class for joint values, one variant per degree-of-freedom count"""

    arity: ClassVar[int] = 0

    def components(self) -> tuple[float, ...]:
        return tuple(getattr(self, f.name) for f in fields(self))

    def merge(self, values: Sequence[float | None]) -> "JointValue":
        """Copy with components replaced by values, None keeping the current component"""
        updates = {f.name: float(v) for f, v in zip(fields(self), values) if v is not None}
        return replace(self, **updates)


@dataclass(frozen=True)
class FixedValue(JointValue):
    arity: ClassVar[int] = 0


@dataclass(frozen=True)
class ScalarValue(JointValue):
    """Angle in radians or displacement in meters"""

    arity: ClassVar[int] = 1
    value: float = 0.0


@dataclass(frozen=True)
class PlanarValue(JointValue):
    """Translation in the joint's xy plane and rotation about its axis"""

    arity: ClassVar[int] = 3
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0


@dataclass(frozen=True)
class FloatingValue(JointValue):
    """Translation and XYZ Euler rotation"""

    arity: ClassVar[int] = 6
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0


_VALUE_TYPES = {
    JointType.FIXED: FixedValue,
    JointType.REVOLUTE: ScalarValue,
    JointType.CONTINUOUS: ScalarValue,
    JointType.PRISMATIC: ScalarValue,
    JointType.PLANAR: PlanarValue,
    JointType.FLOATING: FloatingValue,
}


def zero_value(joint_type: JointType) -> JointValue:
    """Initial value for a joint of the given type"""
    return _VALUE_TYPES[joint_type]()


class KinematicJoint:
    """Joint whose local transform follows its value

    Attributes:
        joint: Underlying model joint
        ignore_limits: If True, revolute and prismatic values are not clamped
        position: Current (x, y, z) of the child frame in the parent frame
        quaternion: Current (w, x, y, z) orientation of the child frame in the parent frame
        value: Current joint value
        mimic_joints: Joints that follow this joint
    """

    def __init__(self, joint: Joint, ignore_limits: bool = False):
        self.joint = joint
        self.ignore_limits = ignore_limits
        self.position = tuple(float(v) for v in joint.origin.xyz)
        self.quaternion = joint.origin.quat
        self.value = zero_value(joint.type)
        self.mimic_joints: list[KinematicJoint] = []
        self._rest_position = None
        self._rest_quaternion = None

    def __repr__(self) -> str:
        return f"KinematicJoint({self.name!r}, {self.value})"

    @property
    def name(self) -> str:
        return self.joint.name

    @property
    def angle(self) -> float | None:
        """First component of the value, None for fixed joints"""
        components = self.value.components()
        return components[0] if components else None

    def local_transform(self) -> np.ndarray:
        """4x4 transform of the child frame in the parent frame"""
        return compose(self.position, self.quaternion)

    def reset(self) -> None:
        """Return to the rest pose with a zero value"""
        if self._rest_position is not None:
            self.position = self._rest_position
            self.quaternion = self._rest_quaternion
        self.value = zero_value(self.joint.type)

    def set_value(self, *values: float | None) -> bool:
        """Drive the joint and every joint mimicking it

        Args:
            values: Components of the new value, None keeps the current component

        Returns:
            True if this joint or any dependent changed
        """
        if self._rest_position is None:
            self._rest_position = self.position
            self._rest_quaternion = self.quaternion

        did_update = False
        for mimic_joint in self.mimic_joints:
            did_update = mimic_joint._update_from_mimicked(*values) or did_update

        joint_type = self.joint.type

        if joint_type == JointType.FIXED:
            return did_update

        if joint_type in (JointType.REVOLUTE, JointType.CONTINUOUS, JointType.PRISMATIC):
            return self._set_scalar(values[0] if values else None) or did_update

        if joint_type == JointType.PLANAR:
            return self._set_planar(values) or did_update

        if joint_type == JointType.FLOATING:
            return self._set_floating(values) or did_update

        return did_update

    def _update_from_mimicked(self, *values: float | None) -> bool:
        mimic = self.joint.mimic
        modified = [None if v is None else v * mimic.multiplier + mimic.offset for v in values]  # ty: ignore[possibly-missing-attribute]
        return self.set_value(*modified)

    def _set_scalar(self, value: float | None) -> bool:
        if value is None:
            return False

        value = float(value)
        if value == self.value.value:  # ty: ignore[unresolved-attribute]
            return False

        joint = self.joint
        clamp = joint.type == JointType.PRISMATIC or joint.type == JointType.REVOLUTE
        if clamp and not self.ignore_limits:
            value = min(max(value, joint.limit.lower), joint.limit.upper)

        if joint.type == JointType.PRISMATIC:
            direction = quat_rotate(self.quaternion, joint.axis)
            self.position = tuple(p + d * value for p, d in zip(self._rest_position, direction))  # ty: ignore[invalid-argument-type]
        else:
            self.quaternion = quat_multiply(self._rest_quaternion, quat_from_axis_angle(joint.axis, value))  # ty: ignore[invalid-argument-type]

        if value == self.value.value:  # ty: ignore[unresolved-attribute]
            return False

        self.value = ScalarValue(value)
        return True

    def _set_planar(self, values: Sequence[float | None]) -> bool:
        new_value = self.value.merge(values)
        if new_value == self.value:
            return False

        self.value = new_value
        x, y, theta = new_value.components()
        motion = compose((x, y, 0.0), quat_from_axis_angle(self.joint.axis, theta))
        self._apply_motion(motion)
        return True

    def _set_floating(self, values: Sequence[float | None]) -> bool:
        new_value = self.value.merge(values)
        if new_value == self.value:
            return False

        self.value = new_value
        x, y, z, roll, pitch, yaw = new_value.components()
        motion = compose((x, y, z), euler_xyz_to_quat(roll, pitch, yaw))
        self._apply_motion(motion)
        return True

    def _apply_motion(self, motion: np.ndarray) -> None:
        rest = compose(self._rest_position, self._rest_quaternion)  # ty: ignore[invalid-argument-type]
        self.position, self.quaternion = decompose(motion @ rest)


class KinematicModel:
    """Joint state and forward kinematics for a Robot

    Attributes:
        robot: Robot being driven
        joints: Dict mapping joint names to KinematicJoint objects
    """

    def __init__(self, robot: Robot, ignore_limits: bool = False):
        """Wrap robot and wire mimic couplings

        Args:
            robot: Robot to drive
            ignore_limits: If True, joint values are never clamped

        Raises:
            MimicCycleError: If mimic couplings form a loop
        """
        robot.check_mimic_cycles()

        self.robot = robot
        self.joints = {name: KinematicJoint(joint, ignore_limits) for name, joint in robot.joints.items()}

        for joint in self.joints.values():
            mimic = joint.joint.mimic
            if mimic is None:
                continue
            if mimic.joint not in self.joints:
                logger.warning("Joint '%s' mimics unknown joint '%s', ignoring", joint.name, mimic.joint)
                continue
            self.joints[mimic.joint].mimic_joints.append(joint)

    def set_joint_value(self, name: str, *values: float | None) -> bool:
        """Set the value of one joint

        Args:
            name: Joint name
            values: Value components, one for revolute, continuous and prismatic joints,
                three for planar (x, y, theta) and six for floating (x, y, z, roll, pitch, yaw)

        Returns:
            True if any joint changed, False if nothing changed or the joint is unknown
        """
        joint = self.joints.get(name)
        if joint is None:
            return False
        return joint.set_value(*values)

    def set_joint_values(self, values: Mapping[str, float | Sequence[float | None]]) -> bool:
        """Set several joints at once

        Returns:
            True if any joint changed
        """
        did_change = False
        for name, value in values.items():
            if isinstance(value, Sequence):
                did_change = self.set_joint_value(name, *value) or did_change
            else:
                did_change = self.set_joint_value(name, value) or did_change
        return did_change

    def joint_values(self) -> dict[str, tuple[float, ...]]:
        return {name: joint.value.components() for name, joint in self.joints.items()}

    def reset(self) -> None:
        """Return every joint to its rest pose with a zero value"""
        for joint in self.joints.values():
            joint.reset()

    def link_transforms(self) -> dict[str, np.ndarray]:
        """World transform of every link reachable from the root

        Returns:
            Dict mapping link names to 4x4 transforms, the root at the identity
        """
        transforms = {}
        if self.robot.root is None:
            return transforms

        transforms[self.robot.root] = np.eye(4)
        stack = [self.robot.root]
        while stack:
            parent = stack.pop()
            for joint in self.robot.child_joints(parent):
                if joint.child in transforms:
                    continue
                transforms[joint.child] = transforms[parent] @ self.joints[joint.name].local_transform()
                stack.append(joint.child)

        return transforms
