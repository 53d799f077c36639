import logging
import re
from pathlib import PurePosixPath

import numpy as np
from lxml import etree

from .errors import UnsupportedFormatError
from .model import (
    DEFAULT_LIMIT,
    Box,
    Capsule,
    Collision,
    Cylinder,
    Dynamics,
    Geometry,
    Inertial,
    Joint,
    JointType,
    Link,
    Material,
    MaterialSource,
    Mesh,
    Pose,
    Robot,
    Sphere,
    Visual,
)
from .parsers import RobotFormat
from .transforms import IDENTITY_QUAT, compose, decompose, quat_to_matrix, quat_to_rpy

__all__ = ["URDFGenerator", "MJCFGenerator", "generate"]

logger = logging.getLogger(__name__)

_FOLDED_NAME = re.compile(r"^(?P<parent>.+)_collision_\d+$")


def _format_number(value: float) -> str:
    text = f"{float(value):.10g}"
    return "0" if text == "-0" else text


def _format_vector(values) -> str:
    return " ".join(_format_number(v) for v in values)


def _is_zero(values, tol: float = 1e-12) -> bool:
    return all(abs(v) <= tol for v in values)


def _compose_pose(outer: Pose, inner: Pose) -> Pose:
    """Pose of inner expressed in the frame outer is expressed in"""
    T = compose(outer.xyz, outer.quat) @ compose(inner.xyz, inner.quat)
    xyz, quat = decompose(T)
    return Pose(xyz=xyz, rpy=quat_to_rpy(quat))


class _Generator:
    """Shared traversal for generators

    Attributes:
        robot: Robot to serialize
        extended: If True, vendor hardware metadata is written
    """

    def __init__(self, robot: Robot, extended: bool = False):
        self.robot = robot
        self.extended = extended

    def _foldable(self, link: Link) -> bool:
        """Whether link is a parser-made geometry holder that belongs inside its parent"""
        return link.visual.geometry is None

    def _folded_links(self) -> dict[str, Joint]:
        """Map links that fold into their parent onto the fixed joint attaching them

        A link folds when it was synthesized by a parser, or follows the
        "{parent}_collision_{n}" naming, and it hangs off a fixed joint with no children.
        """
        folded = {}

        for joint in self.robot.joints.values():
            if joint.type != JointType.FIXED or joint.is_orphan:
                continue
            link = self.robot.links.get(joint.child)  # ty: ignore[invalid-argument-type]
            if link is None or self.robot.child_joints(link.name):
                continue

            match = _FOLDED_NAME.match(link.name)
            named = match is not None and match.group("parent") == joint.parent
            if (link.synthesized or named) and self._foldable(link):
                folded[link.name] = joint

        return folded

    def _live_joints(self, folded: dict[str, Joint]) -> list[Joint]:
        joints = []
        for joint in self.robot.joints.values():
            if joint.is_orphan:
                logger.warning("Skipping joint '%s' without parent or child link", joint.name)
                continue
            if joint.child in folded:
                continue
            joints.append(joint)
        return joints

    def _to_string(self, root: etree._Element) -> str:
        return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="utf-8").decode("utf-8")


class URDFGenerator(_Generator):
    """Serialize a Robot to URDF

    Fields equal to the parser defaults are omitted, so parsing the output
    reproduces the model.
    """

    def generate(self) -> str:
        """Generate URDF text

        Returns:
            URDF document with XML declaration
        """
        robot = self.robot
        root = etree.Element("robot", name=robot.name)

        folded = self._folded_links()
        extra_collisions: dict[str, list[Collision]] = {}
        for link_name, joint in folded.items():
            collision = robot.links[link_name].collision
            if collision.geometry is None:
                continue
            origin = collision.origin if joint.origin.is_identity() else _compose_pose(joint.origin, collision.origin)
            extra_collisions.setdefault(joint.parent, []).append(  # ty: ignore[invalid-argument-type]
                Collision(name=collision.name, origin=origin, geometry=collision.geometry)
            )

        self._add_named_materials(root, folded)

        for link in robot.links.values():
            if link.name in folded:
                continue
            self._add_link(root, link, extra_collisions.get(link.name, []))

        for joint in self._live_joints(folded):
            self._add_joint(root, joint)

        for link in robot.links.values():
            material = link.visual.material
            if link.name not in folded and material is not None and material.source == MaterialSource.GAZEBO:
                gazebo_elem = etree.SubElement(root, "gazebo", reference=link.name)
                etree.SubElement(gazebo_elem, "material").text = material.name

        return self._to_string(root)

    def _add_named_materials(self, root: etree._Element, folded: dict[str, Joint]):
        """Declare each named material once at the top level"""
        declared = set()
        for link in self.robot.links.values():
            material = link.visual.material
            if link.name in folded or material is None or material.source != MaterialSource.NAMED:
                continue
            if material.name in declared or not material.name:
                continue
            declared.add(material.name)
            self._add_material(root, material)

    def _add_material(self, parent: etree._Element, material: Material, name: str | None = None):
        material_elem = etree.SubElement(parent, "material", name=material.name or name or "")
        if material.rgba is not None:
            etree.SubElement(material_elem, "color", rgba=_format_vector(material.rgba))
        if material.texture_filename:
            etree.SubElement(material_elem, "texture", filename=material.texture_filename)

    def _add_origin(self, parent: etree._Element, origin: Pose):
        if origin.is_identity():
            return
        attrib = {"xyz": _format_vector(origin.xyz)}
        if not _is_zero(origin.rpy):
            attrib["rpy"] = _format_vector(origin.rpy)
        etree.SubElement(parent, "origin", attrib)

    def _add_geometry(self, parent: etree._Element, geometry: Geometry):
        geometry_elem = etree.SubElement(parent, "geometry")

        if isinstance(geometry, Box):
            etree.SubElement(geometry_elem, "box", size=_format_vector(geometry.size))
        elif isinstance(geometry, Cylinder):
            etree.SubElement(
                geometry_elem, "cylinder", radius=_format_number(geometry.radius), length=_format_number(geometry.length)
            )
        elif isinstance(geometry, Capsule):
            etree.SubElement(
                geometry_elem, "capsule", radius=_format_number(geometry.radius), length=_format_number(geometry.length)
            )
        elif isinstance(geometry, Sphere):
            etree.SubElement(geometry_elem, "sphere", radius=_format_number(geometry.radius))
        elif isinstance(geometry, Mesh):
            mesh_elem = etree.SubElement(geometry_elem, "mesh", filename=geometry.filename)
            if tuple(geometry.scale) != (1.0, 1.0, 1.0):
                mesh_elem.set("scale", _format_vector(geometry.scale))

    def _add_link(self, root: etree._Element, link: Link, extra_collisions: list[Collision]):
        link_elem = etree.SubElement(root, "link", name=link.name)

        visual = link.visual
        if visual.geometry is not None:
            visual_elem = etree.SubElement(link_elem, "visual")
            self._add_origin(visual_elem, visual.origin)
            self._add_geometry(visual_elem, visual.geometry)
            material = visual.material
            if material is not None and material.source == MaterialSource.NAMED and material.name:
                etree.SubElement(visual_elem, "material", name=material.name)
            elif material is not None and material.source != MaterialSource.GAZEBO:
                self._add_material(visual_elem, material, name=f"{link.name}_material")

        for collision in [link.collision, *extra_collisions]:
            if collision.geometry is None:
                continue
            collision_elem = etree.SubElement(link_elem, "collision")
            if collision.name:
                collision_elem.set("name", collision.name)
            self._add_origin(collision_elem, collision.origin)
            self._add_geometry(collision_elem, collision.geometry)

        self._add_inertial(link_elem, link.inertial)

    def _add_inertial(self, link_elem: etree._Element, inertial: Inertial):
        inertia = inertial.inertia
        components = (inertia.ixx, inertia.ixy, inertia.ixz, inertia.iyy, inertia.iyz, inertia.izz)
        if inertial.mass == 0.0 and _is_zero(components) and inertial.origin.is_identity():
            return

        inertial_elem = etree.SubElement(link_elem, "inertial")
        self._add_origin(inertial_elem, inertial.origin)
        etree.SubElement(inertial_elem, "mass", value=_format_number(inertial.mass))
        etree.SubElement(
            inertial_elem,
            "inertia",
            ixx=_format_number(inertia.ixx),
            ixy=_format_number(inertia.ixy),
            ixz=_format_number(inertia.ixz),
            iyy=_format_number(inertia.iyy),
            iyz=_format_number(inertia.iyz),
            izz=_format_number(inertia.izz),
        )

    def _add_joint(self, root: etree._Element, joint: Joint):
        joint_elem = etree.SubElement(root, "joint", name=joint.name, type=joint.type.value)
        etree.SubElement(joint_elem, "parent", link=joint.parent)  # ty: ignore[invalid-argument-type]
        etree.SubElement(joint_elem, "child", link=joint.child)  # ty: ignore[invalid-argument-type]
        self._add_origin(joint_elem, joint.origin)

        if joint.type != JointType.FIXED and tuple(joint.axis) != (1.0, 0.0, 0.0):
            etree.SubElement(joint_elem, "axis", xyz=_format_vector(joint.axis))

        limit = joint.limit
        if joint.type in (JointType.REVOLUTE, JointType.PRISMATIC) or limit != DEFAULT_LIMIT:
            etree.SubElement(
                joint_elem,
                "limit",
                lower=_format_number(limit.lower),
                upper=_format_number(limit.upper),
                effort=_format_number(limit.effort),
                velocity=_format_number(limit.velocity),
            )

        if joint.dynamics != Dynamics():
            etree.SubElement(
                joint_elem,
                "dynamics",
                damping=_format_number(joint.dynamics.damping),
                friction=_format_number(joint.dynamics.friction),
            )

        if joint.mimic is not None:
            mimic_elem = etree.SubElement(joint_elem, "mimic", joint=joint.mimic.joint)
            if joint.mimic.multiplier != 1.0:
                mimic_elem.set("multiplier", _format_number(joint.mimic.multiplier))
            if joint.mimic.offset != 0.0:
                mimic_elem.set("offset", _format_number(joint.mimic.offset))

        if self.extended and joint.type != JointType.FIXED:
            hardware = joint.hardware
            hardware_elem = etree.SubElement(joint_elem, "hardware")
            etree.SubElement(hardware_elem, "motorType").text = hardware.motor_type
            if hardware.motor_id:
                etree.SubElement(hardware_elem, "motorId").text = hardware.motor_id
            etree.SubElement(hardware_elem, "motorDirection").text = str(hardware.motor_direction)
            etree.SubElement(hardware_elem, "armature").text = _format_number(hardware.armature)


class MJCFGenerator(_Generator):
    """Serialize a Robot to MJCF

    A root link named "world" becomes the worldbody; any other root becomes the
    single top-level body. Parser-made geometry holders fold back into extra
    geoms of their parent body.
    """

    def _foldable(self, link: Link) -> bool:
        return True

    def generate(self) -> str:
        """Generate MJCF text

        Returns:
            MJCF document with XML declaration
        """
        robot = self.robot
        root = etree.Element("mujoco", model=robot.name)
        etree.SubElement(root, "compiler", angle="radian")

        self._folded = self._folded_links()
        self._joints = {j.child: j for j in self._live_joints(self._folded)}
        self._mesh_names: dict[tuple, str] = {}
        self._material_names: dict[str, str] = {}

        asset_elem = etree.SubElement(root, "asset")
        worldbody = etree.SubElement(root, "worldbody")

        if robot.root is not None and robot.root in robot.links:
            if robot.root == "world":
                self._fill_body(worldbody, robot.links[robot.root], asset_elem)
            else:
                self._add_body(worldbody, robot.links[robot.root], None, asset_elem)

        if len(asset_elem) == 0:
            root.remove(asset_elem)

        self._add_equality(root)

        return self._to_string(root)

    def _add_body(self, parent_elem: etree._Element, link: Link, joint: Joint | None, asset_elem: etree._Element):
        body_elem = etree.SubElement(parent_elem, "body", name=link.name)

        if joint is not None:
            self._set_pose(body_elem, joint.origin)
            self._add_joint(body_elem, joint, link)

        self._add_inertial(body_elem, link.inertial)
        self._fill_body(body_elem, link, asset_elem)

    def _fill_body(self, body_elem: etree._Element, link: Link, asset_elem: etree._Element):
        """Write geoms of link and its folded holders, then recurse into child bodies"""
        self._add_geoms(body_elem, link.visual, link.collision, Pose(), asset_elem)

        for joint in self.robot.child_joints(link.name):
            child = self.robot.links.get(joint.child)  # ty: ignore[invalid-argument-type]
            if child is None:
                continue
            if child.name in self._folded:
                self._add_geoms(body_elem, child.visual, child.collision, joint.origin, asset_elem)
            elif self._joints.get(child.name) is joint:
                self._add_body(body_elem, child, joint, asset_elem)

    def _add_geoms(self, body_elem, visual: Visual, collision: Collision, offset: Pose, asset_elem):
        if visual.geometry is not None:
            origin = visual.origin if offset.is_identity() else _compose_pose(offset, visual.origin)
            geom_elem = self._add_geom(body_elem, visual.geometry, origin, asset_elem)
            if geom_elem is not None:
                geom_elem.set("group", "1")
                geom_elem.set("contype", "0")
                geom_elem.set("conaffinity", "0")
                self._set_material(geom_elem, visual.material, asset_elem)

        if collision.geometry is not None:
            origin = collision.origin if offset.is_identity() else _compose_pose(offset, collision.origin)
            self._add_geom(body_elem, collision.geometry, origin, asset_elem)

    def _add_geom(self, body_elem, geometry: Geometry, origin: Pose, asset_elem) -> etree._Element | None:
        if isinstance(geometry, Box):
            attrib = {"type": "box", "size": _format_vector(s / 2 for s in geometry.size)}
        elif isinstance(geometry, Sphere):
            attrib = {"type": "sphere", "size": _format_number(geometry.radius)}
        elif isinstance(geometry, (Cylinder, Capsule)):
            kind = "cylinder" if isinstance(geometry, Cylinder) else "capsule"
            attrib = {"type": kind, "size": _format_vector((geometry.radius, geometry.length / 2))}
        elif isinstance(geometry, Mesh):
            attrib = {"type": "mesh", "mesh": self._mesh_asset(geometry, asset_elem)}
        else:
            return None

        geom_elem = etree.SubElement(body_elem, "geom", attrib)
        self._set_pose(geom_elem, origin)
        return geom_elem

    def _mesh_asset(self, mesh: Mesh, asset_elem: etree._Element) -> str:
        """Name of the mesh asset for mesh, declaring it on first use"""
        key = (mesh.filename, tuple(mesh.scale))
        if key in self._mesh_names:
            return self._mesh_names[key]

        stem = PurePosixPath(mesh.filename.replace("\\", "/")).stem or "mesh"
        name = stem
        used = set(self._mesh_names.values())
        counter = 1
        while name in used:
            name = f"{stem}_{counter}"
            counter += 1

        mesh_elem = etree.SubElement(asset_elem, "mesh", name=name, file=mesh.filename)
        if key[1] != (1.0, 1.0, 1.0):
            mesh_elem.set("scale", _format_vector(mesh.scale))

        self._mesh_names[key] = name
        return name

    def _set_material(self, geom_elem: etree._Element, material: Material | None, asset_elem: etree._Element):
        if material is None:
            return

        if material.source == MaterialSource.NAMED and material.name:
            if material.name not in self._material_names:
                material_elem = etree.SubElement(asset_elem, "material", name=material.name)
                if material.rgba is not None:
                    material_elem.set("rgba", _format_vector(material.rgba))
                if material.texture_filename:
                    texture_name = f"{material.name}_texture"
                    etree.SubElement(asset_elem, "texture", name=texture_name, type="2d", file=material.texture_filename)
                    material_elem.set("texture", texture_name)
                self._material_names[material.name] = material.name
            geom_elem.set("material", material.name)
        elif material.rgba is not None:
            geom_elem.set("rgba", _format_vector(material.rgba))

    def _set_pose(self, elem: etree._Element, pose: Pose):
        if not _is_zero(pose.xyz):
            elem.set("pos", _format_vector(pose.xyz))
        quat = pose.quat
        if not _is_zero(np.subtract(quat, IDENTITY_QUAT)):
            elem.set("quat", _format_vector(quat))

    def _add_joint(self, body_elem: etree._Element, joint: Joint, link: Link):
        if joint.type == JointType.FIXED:
            return

        if joint.type == JointType.FLOATING:
            etree.SubElement(body_elem, "freejoint", name=joint.name)
            return

        if joint.type == JointType.PLANAR:
            logger.warning("MJCF has no planar joint, writing '%s' as a hinge", joint.name)

        attrib = {"name": joint.name, "type": "slide" if joint.type == JointType.PRISMATIC else "hinge"}
        if tuple(joint.axis) != (0.0, 0.0, 1.0):
            attrib["axis"] = _format_vector(joint.axis)

        if joint.type in (JointType.REVOLUTE, JointType.PRISMATIC):
            attrib["limited"] = "true"
            attrib["range"] = _format_vector((joint.limit.lower, joint.limit.upper))
        else:
            attrib["limited"] = "false"

        if joint.dynamics.damping:
            attrib["damping"] = _format_number(joint.dynamics.damping)
        if joint.dynamics.friction:
            attrib["frictionloss"] = _format_number(joint.dynamics.friction)
        if self.extended and joint.hardware.armature:
            attrib["armature"] = _format_number(joint.hardware.armature)

        etree.SubElement(body_elem, "joint", attrib)

    def _add_inertial(self, body_elem: etree._Element, inertial: Inertial):
        inertia = inertial.inertia
        tensor = np.array(
            [
                [inertia.ixx, inertia.ixy, inertia.ixz],
                [inertia.ixy, inertia.iyy, inertia.iyz],
                [inertia.ixz, inertia.iyz, inertia.izz],
            ]
        )
        if inertial.mass == 0.0 and not tensor.any():
            return

        # fullinertia cannot carry an orientation, rotate into the body frame
        R = quat_to_matrix(inertial.origin.quat)
        tensor = R @ tensor @ R.T

        attrib = {"mass": _format_number(inertial.mass)}
        if not _is_zero(inertial.origin.xyz):
            attrib["pos"] = _format_vector(inertial.origin.xyz)
        attrib["fullinertia"] = _format_vector(
            (tensor[0, 0], tensor[1, 1], tensor[2, 2], tensor[0, 1], tensor[0, 2], tensor[1, 2])
        )
        etree.SubElement(body_elem, "inertial", attrib)

    def _add_equality(self, root: etree._Element):
        """Write mimic couplings as joint equality constraints"""
        written = {j.name for j in self._joints.values() if j.type != JointType.FIXED}
        equality_elem = None

        for joint in self._joints.values():
            mimic = joint.mimic
            if mimic is None:
                continue
            if joint.name not in written or mimic.joint not in written:
                logger.debug("Skipping mimic of '%s' on '%s', joint not written", mimic.joint, joint.name)
                continue

            if equality_elem is None:
                equality_elem = etree.SubElement(root, "equality")
            etree.SubElement(
                equality_elem,
                "joint",
                joint1=joint.name,
                joint2=mimic.joint,
                polycoef=_format_vector((mimic.offset, mimic.multiplier, 0, 0, 0)),
            )


_GENERATORS = {
    RobotFormat.URDF: URDFGenerator,
    RobotFormat.MJCF: MJCFGenerator,
}


def generate(robot: Robot, format: RobotFormat | str, extended: bool = False) -> str:
    """Serialize robot in the requested format

    Args:
        robot: Robot to serialize
        format: Target format, "urdf" or "mjcf"
        extended: If True, vendor hardware metadata is written

    Returns:
        Generated document

    Raises:
        UnsupportedFormatError: If no generator exists for the format
    """
    try:
        generator_class = _GENERATORS[RobotFormat(format)]
    except (KeyError, ValueError):
        raise UnsupportedFormatError(f"No generator for format '{format}'")

    return generator_class(robot, extended=extended).generate()
