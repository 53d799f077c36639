from dataclasses import dataclass
from enum import Enum

from .model import JointType, Robot

__all__ = ["Severity", "ValidationIssue", "validate_robot"]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    """Structural problem found in a Robot

    Attributes:
        severity: ERROR if the tree is unusable as-is, WARNING otherwise
        message: Human-readable description
        element: Name of the offending link or joint, None for robot-level issues
    """

    severity: Severity
    message: str
    element: str | None = None

    def __str__(self) -> str:
        where = f" [{self.element}]" if self.element else ""
        return f"{self.severity.value}{where}: {self.message}"


def validate_robot(robot: Robot) -> list[ValidationIssue]:
    """Check tree structure, inertial plausibility, limits and mimic targets

    Args:
        robot: Robot to check

    Returns:
        List of issues, empty if the robot is well-formed
    """
    issues = []

    if not robot.links:
        return [ValidationIssue(Severity.ERROR, "Robot has no links")]

    if robot.root is None:
        issues.append(ValidationIssue(Severity.ERROR, "Robot has no root link"))
    elif robot.root not in robot.links:
        issues.append(ValidationIssue(Severity.ERROR, f"Root link '{robot.root}' does not exist", robot.root))

    parents: dict[str, str] = {}
    for joint in robot.joints.values():
        if joint.is_orphan:
            issues.append(
                ValidationIssue(Severity.WARNING, "Joint is not attached to both a parent and a child link", joint.name)
            )
            continue
        if joint.child in parents:
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    f"Link '{joint.child}' is the child of both '{parents[joint.child]}' and '{joint.name}'",
                    joint.child,
                )
            )
        else:
            parents[joint.child] = joint.name  # ty: ignore[invalid-assignment]

        if joint.child == robot.root:
            issues.append(ValidationIssue(Severity.ERROR, "Root link is the child of a joint", joint.name))

    in_cycle = set()
    for start in parents:
        seen = []
        link = start
        while link in parents and link not in seen and link not in in_cycle:
            seen.append(link)
            link = robot.joints[parents[link]].parent
        if link in seen:
            cycle = seen[seen.index(link) :]
            in_cycle.update(cycle)
            issues.append(ValidationIssue(Severity.ERROR, f"Kinematic loop: {' -> '.join(cycle)}", link))

    reachable = set(robot.iter_tree())
    for name in robot.links:
        if name not in reachable:
            issues.append(ValidationIssue(Severity.WARNING, "Link is not reachable from the root", name))

    for link in robot.links.values():
        if link.synthesized:
            continue
        has_geometry = link.visual.geometry is not None or link.collision.geometry is not None
        if has_geometry and link.inertial.mass <= 0.0:
            issues.append(ValidationIssue(Severity.WARNING, "Link has geometry but no positive mass", link.name))

        inertia = link.inertial.inertia
        if min(inertia.ixx, inertia.iyy, inertia.izz) < 0.0:
            issues.append(ValidationIssue(Severity.ERROR, "Inertia has a negative diagonal entry", link.name))

    for joint in robot.joints.values():
        if joint.type in (JointType.REVOLUTE, JointType.PRISMATIC) and joint.limit.lower > joint.limit.upper:
            issues.append(
                ValidationIssue(
                    Severity.ERROR,
                    f"Lower limit {joint.limit.lower} exceeds upper limit {joint.limit.upper}",
                    joint.name,
                )
            )
        if joint.mimic is not None and joint.mimic.joint not in robot.joints:
            issues.append(
                ValidationIssue(Severity.WARNING, f"Mimics unknown joint '{joint.mimic.joint}'", joint.name)
            )

    return issues
