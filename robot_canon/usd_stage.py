import logging
import math
from pathlib import Path

from pxr import Gf, Usd, UsdGeom, UsdPhysics

from .errors import MissingRootError
from .model import (
    Box,
    Capsule,
    Collision,
    Cylinder,
    Geometry,
    Inertia,
    Inertial,
    Joint,
    JointType,
    Limit,
    Link,
    Mesh,
    Pose,
    Robot,
    Sphere,
    Visual,
)
from .transforms import quat_to_rpy

__all__ = ["USDStageParser"]

logger = logging.getLogger(__name__)

_AXIS_MAP = {"X": (1.0, 0.0, 0.0), "Y": (0.0, 1.0, 0.0), "Z": (0.0, 0.0, 1.0)}


def _gf_quat(quat) -> tuple[float, float, float, float]:
    quat = quat.GetNormalized()
    return (quat.GetReal(), *quat.GetImaginary())


class USDStageParser:
    """Parser for USD stages opened through pxr

    Links are taken from the ``isaac:physics:robotLinks`` relationship when the
    default prim carries one, otherwise from prims with the rigid body API, and
    finally from the Xform children of the default prim.

    Attributes:
        usd_path: Path to USD file
    """

    def __init__(self, usd_path: Path | str):
        """Initialize USD stage parser

        Args:
            usd_path: Path to USD, USDA, USDC or USDZ file
        """
        self.usd_path = Path(usd_path)
        self._stage = None
        self._xform_cache = None

    def parse(self) -> Robot:
        """Parse USD stage into Robot model

        Returns:
            Robot model

        Raises:
            FileNotFoundError: If USD file doesn't exist
            MissingRootError: If the stage has no default or root prim
        """
        if not self.usd_path.exists():
            raise FileNotFoundError(f"USD file not found: {self.usd_path}")

        self._stage = Usd.Stage.Open(str(self.usd_path))
        self._xform_cache = UsdGeom.XformCache()

        robot_prim = self._stage.GetDefaultPrim()
        if not robot_prim:
            root_prims = list(self._stage.GetPseudoRoot().GetChildren())
            if not root_prims:
                raise MissingRootError(f"No prims found in USD stage {self.usd_path.name}")
            robot_prim = root_prims[0]

        link_prims = self._find_link_prims(robot_prim)
        link_paths = {prim.GetPath() for prim in link_prims}

        links = {}
        for link_prim in link_prims:
            link = self._parse_link(link_prim, link_paths)
            links[link.name] = link

        joints = self._parse_joints(robot_prim, links)

        robot = Robot(name=robot_prim.GetName(), links=links, joints=joints)
        robot.root = robot.find_root()
        robot.check_mimic_cycles()

        return robot

    def _find_link_prims(self, robot_prim: Usd.Prim) -> list[Usd.Prim]:
        robot_links_rel = robot_prim.GetRelationship("isaac:physics:robotLinks")
        if robot_links_rel and robot_links_rel.GetTargets():
            return [self._stage.GetPrimAtPath(path) for path in robot_links_rel.GetTargets()]  # ty: ignore[possibly-missing-attribute]

        rigid_bodies = [
            prim
            for prim in Usd.PrimRange(robot_prim, Usd.TraverseInstanceProxies())
            if prim.HasAPI(UsdPhysics.RigidBodyAPI)
        ]
        if rigid_bodies:
            return rigid_bodies

        logger.info("No rigid bodies in '%s', using its Xform children as links", robot_prim.GetName())
        return [child for child in robot_prim.GetChildren() if child.IsA(UsdGeom.Xform)] or [robot_prim]

    def _parse_link(self, link_prim: Usd.Prim, link_paths: set) -> Link:
        """Parse a link prim with its first visual and first collision shape

        Args:
            link_prim: Link prim
            link_paths: Paths of every link prim, where geometry search stops

        Returns:
            Link object
        """
        visual_prim = None
        collision_prim = None

        iterator = iter(Usd.PrimRange(link_prim, Usd.TraverseInstanceProxies()))
        for prim in iterator:
            if prim != link_prim and prim.GetPath() in link_paths:
                iterator.PruneChildren()
                continue
            if not prim.IsA(UsdGeom.Gprim):
                continue

            if prim.HasAPI(UsdPhysics.CollisionAPI) or prim.GetParent().GetName() == "collisions":
                collision_prim = collision_prim or prim
            else:
                visual_prim = visual_prim or prim

        # a single shape without a collision API serves both roles
        if collision_prim is None and visual_prim is not None:
            collision_prim = visual_prim

        visual = Visual()
        if visual_prim is not None:
            origin, scale = self._relative_transform(visual_prim, link_prim)
            visual = Visual(
                origin=origin,
                geometry=self._parse_geometry(visual_prim, scale),
                **self._get_source_metadata(visual_prim),
            )

        collision = Collision()
        if collision_prim is not None:
            origin, scale = self._relative_transform(collision_prim, link_prim)
            collision = Collision(
                name=collision_prim.GetName(),
                origin=origin,
                geometry=self._parse_geometry(collision_prim, scale),
                **self._get_source_metadata(collision_prim),
            )

        return Link(
            name=link_prim.GetName(),
            visual=visual,
            collision=collision,
            inertial=self._parse_inertial(link_prim),
            **self._get_source_metadata(link_prim),
        )

    def _relative_transform(self, prim: Usd.Prim, link_prim: Usd.Prim) -> tuple[Pose, tuple[float, float, float]]:
        """Pose and scale of prim expressed in the link frame"""
        prim_world = self._xform_cache.GetLocalToWorldTransform(prim)  # ty: ignore[possibly-missing-attribute]
        link_world = self._xform_cache.GetLocalToWorldTransform(link_prim)  # ty: ignore[possibly-missing-attribute]
        transform = Gf.Transform(prim_world * link_world.GetInverse())

        xyz = tuple(transform.GetTranslation())
        quat = _gf_quat(transform.GetRotation().GetQuat())
        scale = tuple(transform.GetScale())

        return Pose(xyz=xyz, rpy=quat_to_rpy(quat)), scale  # ty: ignore[invalid-return-type]

    def _parse_inertial(self, link_prim: Usd.Prim) -> Inertial:
        """Parse inertial information from a link prim

        Args:
            link_prim: Link prim

        Returns:
            Inertial object, massless if the prim has no mass API
        """
        if not link_prim.HasAPI(UsdPhysics.MassAPI):
            return Inertial()

        mass_api = UsdPhysics.MassAPI(link_prim)

        mass = mass_api.GetMassAttr().Get() or 0.0
        center = mass_api.GetCenterOfMassAttr().Get()
        xyz = tuple(center) if center is not None else (0.0, 0.0, 0.0)

        principal_axes = mass_api.GetPrincipalAxesAttr().Get()
        rpy = quat_to_rpy(_gf_quat(principal_axes)) if principal_axes is not None else (0.0, 0.0, 0.0)

        diag = mass_api.GetDiagonalInertiaAttr().Get()
        inertia = Inertia(ixx=diag[0], iyy=diag[1], izz=diag[2]) if diag is not None else Inertia()

        return Inertial(origin=Pose(xyz=xyz, rpy=rpy), mass=mass, inertia=inertia)  # ty: ignore[invalid-argument-type]

    def _parse_geometry(self, geom_prim: Usd.Prim, scale: tuple[float, float, float]) -> Geometry | None:
        """Parse geometry from prim

        Args:
            geom_prim: Geometry prim
            scale: (x, y, z) scale of the prim relative to its link

        Returns:
            Geometry object, or None if type not supported
        """
        prim_type = geom_prim.GetTypeName()
        metadata = self._get_source_metadata(geom_prim)

        if prim_type in ("Cylinder", "Capsule"):
            schema = UsdGeom.Cylinder(geom_prim) if prim_type == "Cylinder" else UsdGeom.Capsule(geom_prim)

            radius = schema.GetRadiusAttr().Get()
            height = schema.GetHeightAttr().Get()
            axis = schema.GetAxisAttr().Get()

            if axis == "X":
                radius *= max(scale[1], scale[2])
                height *= scale[0]
            elif axis == "Y":
                radius *= max(scale[0], scale[2])
                height *= scale[1]
            else:
                radius *= max(scale[0], scale[1])
                height *= scale[2]

            shape = Cylinder if prim_type == "Cylinder" else Capsule
            return shape(radius=radius, length=height, **metadata)

        elif prim_type == "Cube":
            size = UsdGeom.Cube(geom_prim).GetSizeAttr().Get()
            return Box(size=tuple(size * s for s in scale), **metadata)  # ty: ignore[invalid-argument-type]

        elif prim_type == "Sphere":
            radius = UsdGeom.Sphere(geom_prim).GetRadiusAttr().Get()
            return Sphere(radius=radius * max(scale), **metadata)

        elif prim_type == "Mesh":
            parent_name = geom_prim.GetParent().GetName()
            mesh_id = f"usd:{parent_name}/{geom_prim.GetName()}"
            return Mesh(filename=mesh_id, scale=scale, **metadata)

        logger.debug("Skipping unsupported geometry prim %s", geom_prim.GetPath())
        return None

    def _parse_joints(self, robot_prim: Usd.Prim, links: dict[str, Link]) -> dict[str, Joint]:
        """Parse all physics joint prims below the robot prim

        Args:
            robot_prim: Root robot prim
            links: Parsed links, used to resolve joint bodies

        Returns:
            Dict mapping joint names to Joint objects
        """
        joints = {}

        for joint_prim in Usd.PrimRange(robot_prim, Usd.TraverseInstanceProxies()):
            if not joint_prim.IsA(UsdPhysics.Joint):
                continue

            joint_name = joint_prim.GetName()
            type_str = joint_prim.GetTypeName()

            if type_str == "PhysicsRevoluteJoint":
                joint_type, limit = self._parse_limit(joint_prim, angular=True)
            elif type_str == "PhysicsPrismaticJoint":
                _, limit = self._parse_limit(joint_prim, angular=False)
                joint_type = JointType.PRISMATIC
            elif type_str == "PhysicsSphericalJoint":
                joint_type, limit = JointType.CONTINUOUS, Limit()
            elif type_str == "PhysicsFixedJoint":
                joint_type, limit = JointType.FIXED, Limit()
            else:
                logger.warning("Skipping unsupported joint %s of type %s", joint_prim.GetPath(), type_str)
                continue

            axis_attr = joint_prim.GetAttribute("physics:axis")
            axis = _AXIS_MAP.get(axis_attr.Get() if axis_attr else "X", (1.0, 0.0, 0.0))

            pos = joint_prim.GetAttribute("physics:localPos0").Get()
            rot = joint_prim.GetAttribute("physics:localRot0").Get()
            origin = Pose(
                xyz=tuple(pos) if pos is not None else (0.0, 0.0, 0.0),  # ty: ignore[invalid-argument-type]
                rpy=quat_to_rpy(_gf_quat(rot)) if rot is not None else (0.0, 0.0, 0.0),
            )

            joints[joint_name] = Joint(
                name=joint_name,
                type=joint_type,
                parent=self._body_name(joint_prim, "physics:body0", links),
                child=self._body_name(joint_prim, "physics:body1", links),
                origin=origin,
                axis=axis,
                limit=limit,
                **self._get_source_metadata(joint_prim),
            )

        return joints

    def _parse_limit(self, joint_prim: Usd.Prim, angular: bool) -> tuple[JointType, Limit]:
        """Read joint limits, converting angular limits from degrees"""
        lower_attr = joint_prim.GetAttribute("physics:lowerLimit")
        upper_attr = joint_prim.GetAttribute("physics:upperLimit")

        has_limits = all((lower_attr, upper_attr)) and lower_attr.IsAuthored() and upper_attr.IsAuthored()
        if not has_limits:
            return JointType.CONTINUOUS if angular else JointType.PRISMATIC, Limit()

        lower, upper = lower_attr.Get(), upper_attr.Get()
        if angular:
            lower, upper = math.radians(lower), math.radians(upper)

        default = Limit()
        drive = "angular" if angular else "linear"
        effort_attr = joint_prim.GetAttribute(f"drive:{drive}:physics:maxForce")
        velocity_attr = joint_prim.GetAttribute("physxJoint:maxJointVelocity")
        effort = effort_attr.Get() if effort_attr and effort_attr.HasValue() else default.effort
        velocity = velocity_attr.Get() if velocity_attr and velocity_attr.HasValue() else default.velocity
        if angular and velocity_attr and velocity_attr.HasValue():
            velocity = math.radians(velocity)

        return JointType.REVOLUTE if angular else JointType.PRISMATIC, Limit(
            lower=lower, upper=upper, effort=effort, velocity=velocity
        )

    def _body_name(self, joint_prim: Usd.Prim, relationship: str, links: dict[str, Link]) -> str | None:
        rel = joint_prim.GetRelationship(relationship)
        targets = rel.GetTargets() if rel else []
        if not targets:
            # an empty body0 anchors the joint to the world
            return None

        name = targets[0].name
        if name not in links:
            logger.warning("Joint '%s' references unknown body '%s'", joint_prim.GetName(), targets[0])
            return None

        return name

    def _get_source_metadata(self, prim: Usd.Prim) -> dict:
        """Get source tracking metadata for prim

        Args:
            prim: Prim to get metadata for

        Returns:
            Dict with _line_number, _source_path, _source_file
        """
        return {
            "_line_number": None,
            "_source_path": str(prim.GetPath()),
            "_source_file": str(self.usd_path),
        }
