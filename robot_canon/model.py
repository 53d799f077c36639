import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from .errors import MimicCycleError
from .transforms import rpy_to_quat

__all__ = [
    "Robot",
    "Link",
    "Joint",
    "JointType",
    "Pose",
    "Base",
    "Geometry",
    "Box",
    "Cylinder",
    "Capsule",
    "Sphere",
    "Mesh",
    "Inertia",
    "Inertial",
    "Collision",
    "Material",
    "MaterialSource",
    "Visual",
    "Limit",
    "Dynamics",
    "Hardware",
    "Mimic",
    "DEFAULT_LIMIT",
]

logger = logging.getLogger(__name__)


class JointType(str, Enum):
    FIXED = "fixed"
    REVOLUTE = "revolute"
    CONTINUOUS = "continuous"
    PRISMATIC = "prismatic"
    PLANAR = "planar"
    FLOATING = "floating"


class MaterialSource(str, Enum):
    """Where a visual's color came from, in decreasing precedence"""

    INLINE = "inline"
    NAMED = "named"
    GAZEBO = "gazebo"


@dataclass
class Base:
    """Base class for objects with source tracking metadata

    Attributes:
        line_number: Line number of element in source file
        source_path: Hierarchical path to element in source format
        source_file: Path to source file
    """

    _line_number: int | None = field(default=None, repr=False, compare=False, kw_only=True)
    _source_path: str | None = field(default=None, repr=False, compare=False, kw_only=True)
    _source_file: str | None = field(default=None, repr=False, compare=False, kw_only=True)


@dataclass
class Pose(Base):
    """Position and orientation in SE(3)

    Attributes:
        xyz: (x, y, z) position in meters, defaults to (0.0, 0.0, 0.0)
        rpy: (roll, pitch, yaw) in radians composed as Rz @ Ry @ Rx, defaults to (0.0, 0.0, 0.0)
    """

    xyz: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rpy: tuple[float, float, float] = (0.0, 0.0, 0.0)

    @property
    def quat(self) -> tuple[float, float, float, float]:
        """(w, x, y, z) unit quaternion of the orientation"""
        return rpy_to_quat(self.rpy)

    def is_identity(self, tol: float = 1e-12) -> bool:
        return all(abs(v) <= tol for v in (*self.xyz, *self.rpy))


@dataclass
class Geometry(Base):
    """Base class for geometric shapes"""

    pass


@dataclass
class Box(Geometry):
    """Box geometry

    Attributes:
        size: (x, y, z) full extents in meters
    """

    size: tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass
class Cylinder(Geometry):
    """Cylinder geometry

    Attributes:
        radius: Radius in meters
        length: Length in meters
    """

    radius: float = 0.0
    length: float = 0.0


@dataclass
class Capsule(Geometry):
    """Capsule geometry, a cylinder capped by two hemispheres

    Attributes:
        radius: Radius in meters
        length: Length of the cylindrical section in meters
    """

    radius: float = 0.0
    length: float = 0.0


@dataclass
class Sphere(Geometry):
    """Sphere geometry

    Attributes:
        radius: Radius in meters
    """

    radius: float = 0.0


@dataclass
class Mesh(Geometry):
    """Mesh geometry

    Attributes:
        filename: URI to mesh file, resolved later against an asset index
        scale: (x, y, z) scale factors, defaults to (1.0, 1.0, 1.0)
    """

    filename: str = ""
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0)


@dataclass
class Inertia(Base):
    """Inertia tensor

    Attributes:
        ixx, ixy, ixz, iyy, iyz, izz: Components of the 3x3 symmetric inertia tensor in kg*m^2
    """

    ixx: float = 0.0
    ixy: float = 0.0
    ixz: float = 0.0
    iyy: float = 0.0
    iyz: float = 0.0
    izz: float = 0.0


@dataclass
class Inertial(Base):
    """Inertial properties of a link

    Attributes:
        origin: Pose of inertial frame w.r.t. link frame, defaults to the identity
        mass: Mass in kilograms
        inertia: Inertia tensor
    """

    origin: Pose = field(default_factory=Pose)
    mass: float = 0.0
    inertia: Inertia = field(default_factory=Inertia)


@dataclass
class Material(Base):
    """Resolved color of a visual element

    Attributes:
        name: Name of the material, defaults to None if not specified
        rgba: (r, g, b, a) color values from 0-1, defaults to None if not specified
        texture_filename: URI to texture file, defaults to None if not specified
        source: Which declaration supplied the color, defaults to None if not specified
    """

    name: str | None = None
    rgba: tuple[float, float, float, float] | None = None
    texture_filename: str | None = None
    source: MaterialSource | None = None


@dataclass
class Visual(Base):
    """Visual geometry of a link

    Attributes:
        origin: Pose of visual geometry w.r.t. link frame, defaults to the identity
        geometry: Geometric shape for visualization, None for an invisible link
        material: Material properties, defaults to None if not specified
    """

    origin: Pose = field(default_factory=Pose)
    geometry: Geometry | None = None
    material: Material | None = None


@dataclass
class Collision(Base):
    """Collision geometry of a link

    Attributes:
        name: Optional name of the collision element
        origin: Pose of collision geometry w.r.t. link frame, defaults to the identity
        geometry: Geometric shape for collision checking, None if the link does not collide
    """

    name: str | None = None
    origin: Pose = field(default_factory=Pose)
    geometry: Geometry | None = None


@dataclass
class Limit(Base):
    """Joint limits

    Attributes:
        lower: Lower joint limit (radians for revolute, meters for prismatic)
        upper: Upper joint limit (radians for revolute, meters for prismatic)
        effort: Maximum joint effort (torque for revolute, force for prismatic)
        velocity: Maximum joint velocity (rad/s for revolute, m/s for prismatic)
    """

    lower: float = -1.57
    upper: float = 1.57
    effort: float = 100.0
    velocity: float = 10.0


DEFAULT_LIMIT = Limit()


@dataclass
class Dynamics(Base):
    """Joint damping and friction

    Attributes:
        damping: Viscous damping coefficient
        friction: Static friction
    """

    damping: float = 0.0
    friction: float = 0.0


@dataclass
class Hardware(Base):
    """Actuator metadata carried in the vendor extension block

    Attributes:
        motor_type: Motor model identifier, "None" when unassigned
        motor_id: Bus or controller id of the motor
        motor_direction: 1 or -1
        armature: Reflected rotor inertia
    """

    motor_type: str = "None"
    motor_id: str = ""
    motor_direction: int = 1
    armature: float = 0.0


@dataclass
class Mimic(Base):
    """Coupling of a joint to another joint's value

    Attributes:
        joint: Name of the joint being mimicked
        multiplier: Scale applied to the mimicked value
        offset: Offset added after scaling
    """

    joint: str
    multiplier: float = 1.0
    offset: float = 0.0


@dataclass
class Joint(Base):
    """Joint connecting two links

    Attributes:
        name: Name of the joint
        type: Type of joint
        parent: Name of the parent link, None if the reference could not be resolved
        child: Name of the child link, None if the reference could not be resolved
        origin: Pose of child link frame w.r.t. parent link frame, defaults to the identity
        axis: Unit (x, y, z) axis of actuation expressed in the joint frame, defaults to (1.0, 0.0, 0.0)
        limit: Joint limits
        dynamics: Damping and friction
        hardware: Actuator metadata
        mimic: Mimic coupling, defaults to None
        synthesized: True if the joint was created by a parser rather than read from the source
    """

    name: str
    type: JointType
    parent: str | None
    child: str | None
    origin: Pose = field(default_factory=Pose)
    axis: tuple[float, float, float] = (1.0, 0.0, 0.0)
    limit: Limit = field(default_factory=Limit)
    dynamics: Dynamics = field(default_factory=Dynamics)
    hardware: Hardware = field(default_factory=Hardware)
    mimic: Mimic | None = None
    synthesized: bool = False

    @property
    def is_orphan(self) -> bool:
        return self.parent is None or self.child is None


@dataclass
class Link(Base):
    """Robot link

    Attributes:
        name: Name of the link
        visual: Visual element, geometry None if the link is invisible
        collision: Collision element, geometry None if the link does not collide
        inertial: Inertial properties
        synthesized: True if the link was created by a parser rather than read from the source
    """

    name: str
    visual: Visual = field(default_factory=Visual)
    collision: Collision = field(default_factory=Collision)
    inertial: Inertial = field(default_factory=Inertial)
    synthesized: bool = False


@dataclass
class Robot:
    """Canonical robot representation shared by every format

    Attributes:
        name: Name of the robot
        links: Dict mapping link names to Link objects, defaults to empty dict
        joints: Dict mapping joint names to Joint objects, defaults to empty dict
        root: Name of the root link, None for an empty robot
    """

    name: str
    links: dict[str, Link] = field(default_factory=dict)
    joints: dict[str, Joint] = field(default_factory=dict)
    root: str | None = None

    def parent_joint(self, link_name: str) -> Joint | None:
        """Joint whose child is link_name, or None for the root"""
        for joint in self.joints.values():
            if joint.child == link_name and joint.parent is not None:
                return joint
        return None

    def child_joints(self, link_name: str) -> list[Joint]:
        """Joints whose parent is link_name, in insertion order"""
        return [j for j in self.joints.values() if j.parent == link_name and j.child is not None]

    def find_root(self) -> str | None:
        """Detect the root link

        The first link that is never the child of a wired joint is the root. If
        every link is a child (a cycle), the first link is used and a warning is logged.

        Returns:
            Name of the root link, or None if the robot has no links
        """
        if not self.links:
            return None

        children = {j.child for j in self.joints.values() if j.parent is not None and j.child is not None}
        for name in self.links:
            if name not in children:
                return name

        fallback = next(iter(self.links))
        logger.warning("No unambiguous root link in '%s', using '%s'", self.name, fallback)
        return fallback

    def mimic_dependents(self) -> dict[str, list[str]]:
        """Map each mimicked joint to the joints that follow it, skipping unknown targets"""
        dependents: dict[str, list[str]] = {name: [] for name in self.joints}
        for joint in self.joints.values():
            if joint.mimic is not None and joint.mimic.joint in dependents:
                dependents[joint.mimic.joint].append(joint.name)
        return dependents

    def check_mimic_cycles(self) -> None:
        """Reject mimic couplings that loop back onto a joint

        Raises:
            MimicCycleError: If following mimic dependents revisits a joint
        """
        dependents = self.mimic_dependents()

        def walk(name: str, path: list[str]) -> None:
            if name in path:
                raise MimicCycleError(path[path.index(name) :] + [name])
            path.append(name)
            for dependent in dependents[name]:
                walk(dependent, path)
            path.pop()

        for name in dependents:
            walk(name, [])

    def iter_tree(self) -> Iterator[str]:
        """Yield link names depth-first from the root, each link at most once"""
        if self.root is None:
            return
        visited = set()
        stack = [self.root]
        while stack:
            name = stack.pop()
            if name in visited or name not in self.links:
                continue
            visited.add(name)
            yield name
            stack.extend(reversed([j.child for j in self.child_joints(name)]))

    def add_link(self, link: Link, parent: str | None = None, joint: Joint | None = None) -> None:
        """Add a link, optionally attached below an existing link

        Args:
            link: Link to add
            parent: Name of the parent link, None to add the link as root of an empty robot
            joint: Joint connecting parent to link, a fixed joint named "{parent}_{link}_joint" if omitted

        Raises:
            ValueError: If the link or joint name is taken, the parent is unknown, or a
                parentless link is added to a non-empty robot
        """
        if link.name in self.links:
            raise ValueError(f"Duplicate link name: '{link.name}'")

        if parent is None:
            if self.links:
                raise ValueError(f"Link '{link.name}' needs a parent in a non-empty robot")
            self.links[link.name] = link
            self.root = link.name
            return

        if parent not in self.links:
            raise ValueError(f"Unknown parent link: '{parent}'")

        if joint is None:
            joint = Joint(name=f"{parent}_{link.name}_joint", type=JointType.FIXED, parent=parent, child=link.name)
        else:
            joint.parent = parent
            joint.child = link.name

        if joint.name in self.joints:
            raise ValueError(f"Duplicate joint name: '{joint.name}'")

        self.links[link.name] = link
        self.joints[joint.name] = joint

    def remove_link(self, name: str) -> list[str]:
        """Remove a link together with its subtree and every joint touching them

        Args:
            name: Name of the link to remove

        Returns:
            Names of the removed links

        Raises:
            KeyError: If the link does not exist
        """
        if name not in self.links:
            raise KeyError(name)

        removed = []
        stack = [name]
        while stack:
            current = stack.pop()
            if current in removed:
                continue
            removed.append(current)
            stack.extend(j.child for j in self.child_joints(current))

        for link_name in removed:
            del self.links[link_name]

        self.joints = {
            joint_name: joint
            for joint_name, joint in self.joints.items()
            if joint.parent not in removed and joint.child not in removed
        }

        if self.root in removed:
            self.root = self.find_root()

        return removed
