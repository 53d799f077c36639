import logging
import math
import posixpath
import re
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from lxml import etree

from .errors import MalformedXMLError, MissingAttributeError, MissingRootError, ParseError, UnsupportedFormatError
from .model import (
    Box,
    Capsule,
    Collision,
    Cylinder,
    Dynamics,
    Geometry,
    Hardware,
    Inertia,
    Inertial,
    Joint,
    JointType,
    Limit,
    Link,
    Material,
    MaterialSource,
    Mesh,
    Mimic,
    Pose,
    Robot,
    Sphere,
    Visual,
)
from .transforms import (
    IDENTITY_QUAT,
    euler_sequence_to_quat,
    matrix_to_quat,
    normalize,
    quat_between,
    quat_from_axis_angle,
    quat_to_rpy,
    rotate_inertia,
)

__all__ = [
    "XMLParser",
    "URDFParser",
    "XacroParser",
    "MJCFParser",
    "USDAParser",
    "RobotFormat",
    "GAZEBO_COLORS",
    "detect_format",
    "get_parser",
    "load_robot",
    "load_robot_file",
]

logger = logging.getLogger(__name__)

GAZEBO_COLORS = {
    "Gazebo/Black": "#000000",
    "Gazebo/Blue": "#0000FF",
    "Gazebo/Green": "#00FF00",
    "Gazebo/Red": "#FF0000",
    "Gazebo/White": "#FFFFFF",
    "Gazebo/Yellow": "#FFFF00",
    "Gazebo/Grey": "#808080",
    "Gazebo/DarkGrey": "#333333",
    "Gazebo/LightGrey": "#CCCCCC",
    "Gazebo/Orange": "#FFA500",
    "Gazebo/Purple": "#800080",
    "Gazebo/Turquoise": "#40E0D0",
    "Gazebo/Gold": "#FFD700",
    "Gazebo/Indigo": "#4B0082",
    "Gazebo/SkyBlue": "#87CEEB",
    "Gazebo/Wood": "#8B4513",
    "Gazebo/FlatBlack": "#000000",
}

_XML_DECLARATION = re.compile(r"<\?xml[^?]*\?>")


def _hex_to_rgba(color: str) -> tuple[float, float, float, float]:
    value = color.lstrip("#")
    return (int(value[0:2], 16) / 255, int(value[2:4], 16) / 255, int(value[4:6], 16) / 255, 1.0)


class XMLParser:
    """Base class for lenient XML robot description parsers

    Attributes:
        text: Raw markup
        source_file: Path the markup was read from, if any
        root_tag: Tag of the expected document root
    """

    root_tag = ""

    def __init__(self, text: str, source_file: Path | str | None = None):
        """Initialize parser

        Args:
            text: Raw markup
            source_file: Path the markup was read from, used for source metadata
        """
        self.text = text
        self.source_file = str(source_file) if source_file is not None else None
        self._tree = None

    @classmethod
    def from_file(cls, xml_path: Path | str, **kwargs):
        """Create a parser for the markup stored at xml_path

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        xml_path = Path(xml_path)
        if not xml_path.exists():
            raise FileNotFoundError(f"XML file not found: {xml_path}")

        return cls(xml_path.read_text(encoding="utf-8", errors="replace"), source_file=xml_path, **kwargs)

    def _preprocess(self, text: str) -> str:
        """Repair common defects before handing the text to lxml

        Strips a byte order mark and moves an XML declaration that follows
        leading comments or whitespace to the front of the document.
        """
        text = text.lstrip("﻿")

        match = _XML_DECLARATION.search(text)
        if match and text[: match.start()].strip():
            declaration = match.group(0)
            text = declaration + "\n" + text[: match.start()] + text[match.end() :]

        return text.strip()

    def _load(self) -> etree._Element:
        """Parse the text and locate the root element

        Returns:
            Element with tag root_tag

        Raises:
            MalformedXMLError: If the text is not well-formed XML
            MissingRootError: If no root_tag element exists
        """
        text = self._preprocess(self.text)
        if not text:
            raise MissingRootError(f"Empty document, expected <{self.root_tag}>")

        parser = etree.XMLParser(encoding="utf-8", remove_comments=True, remove_pis=True)
        try:
            document = etree.fromstring(text.encode("utf-8"), parser=parser)
        except etree.XMLSyntaxError as e:
            line, column = e.position if e.position else (None, None)
            raise MalformedXMLError(f"Malformed XML: {e.msg}", line=line, column=column) from e

        self._tree = document.getroottree()

        if document.tag == self.root_tag:
            return document

        nested = document.find(f".//{self.root_tag}")
        if nested is None:
            raise MissingRootError(f"No <{self.root_tag}> element found", line=document.sourceline)

        return nested

    def _parse_vector(
        self, vector: str | None, length: int, default: tuple[float, ...] | None = None
    ) -> tuple[float, ...]:
        """Parse space-separated string into tuple of floats

        Missing or unreadable components fall back to the matching default component.

        Args:
            vector: Space-separated string of numbers, or None
            length: Expected number of values
            default: Values used for missing components, zeros if omitted

        Returns:
            Tuple of length floats
        """
        if default is None:
            default = (0.0,) * length
        if vector is None:
            return default

        parts = vector.split()
        if len(parts) != length:
            logger.warning("Expected %d space-separated values, got %d: '%s'", length, len(parts), vector)

        values = []
        for i in range(length):
            if i < len(parts):
                values.append(self._parse_float(parts[i], default[i]))
            else:
                values.append(default[i])

        return tuple(values)

    def _parse_float(self, value: str | None, default: float) -> float:
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Could not parse '%s' as a number, using %s", value, default)
            return default

    def _require(self, elem: etree._Element, attribute: str) -> str:
        value = elem.get(attribute)
        if value is None:
            raise MissingAttributeError(elem.tag, attribute, line=elem.sourceline)
        return value

    def _get_source_metadata(self, elem: etree._Element) -> dict:
        """Get source tracking metadata for element

        Args:
            elem: Element to get metadata for

        Returns:
            Dict with _line_number, _source_path, _source_file
        """
        return {
            "_line_number": elem.sourceline,
            "_source_path": self._tree.getpath(elem),  # ty: ignore[possibly-missing-attribute]
            "_source_file": self.source_file,
        }

    def _add_link(self, links: dict[str, Link], link: Link) -> None:
        if link.name in links:
            raise ParseError(f"Duplicate link name: '{link.name}'", line=link._line_number)
        links[link.name] = link

    def _add_joint(self, joints: dict[str, Joint], joint: Joint) -> None:
        if joint.name in joints:
            raise ParseError(f"Duplicate joint name: '{joint.name}'", line=joint._line_number)
        joints[joint.name] = joint


class URDFParser(XMLParser):
    """Parser for URDF documents"""

    root_tag = "robot"

    def parse(self) -> Robot:
        """Parse URDF text into Robot model

        Returns:
            Robot model

        Raises:
            MalformedXMLError: If the text is not well-formed XML
            MissingRootError: If there is no <robot> element
            MissingAttributeError: If a link, joint, mesh or mimic lacks a required attribute
            ParseError: If link or joint names are duplicated or a joint type is unknown
            MimicCycleError: If mimic joints form a loop
        """
        root = self._load()

        robot_name = root.get("name") or "imported_robot"
        self._global_materials = self._parse_global_materials(root)
        self._gazebo_materials = self._parse_gazebo_materials(root)

        links = {}
        joints = {}

        for link_elem in root.findall("link"):
            self._parse_link(link_elem, links, joints)

        for joint_elem in root.findall("joint"):
            self._add_joint(joints, self._parse_joint(joint_elem, links))

        robot = Robot(name=robot_name, links=links, joints=joints)
        robot.root = robot.find_root()
        robot.check_mimic_cycles()

        return robot

    def _parse_global_materials(self, root: etree._Element) -> dict[str, Material]:
        """Collect named material colors declared anywhere in the document

        Top-level declarations win over materials first defined inside a visual.

        Args:
            root: Root element of URDF tree

        Returns:
            Dict mapping material names to Material objects
        """
        materials = {}

        candidates = root.findall("material") + [m for m in root.iterfind("link/visual/material")]
        for material_elem in candidates:
            name = material_elem.get("name")
            if not name or name in materials:
                continue

            rgba = self._parse_color(material_elem)
            texture_filename = self._parse_texture(material_elem)
            if rgba is None and texture_filename is None:
                continue

            materials[name] = Material(
                name=name,
                rgba=rgba,
                texture_filename=texture_filename,
                source=MaterialSource.NAMED,
                **self._get_source_metadata(material_elem),
            )

        return materials

    def _parse_gazebo_materials(self, root: etree._Element) -> dict[str, Material]:
        """Map link names to palette colors from <gazebo reference="..."> blocks

        Args:
            root: Root element of URDF tree

        Returns:
            Dict mapping link names to Material objects
        """
        materials = {}

        for gazebo_elem in root.findall("gazebo"):
            reference = gazebo_elem.get("reference")
            material_elem = gazebo_elem.find(".//material")
            if not reference or material_elem is None or not material_elem.text:
                continue

            color_name = material_elem.text.strip()
            if color_name not in GAZEBO_COLORS:
                logger.debug("Ignoring unknown Gazebo material '%s' on '%s'", color_name, reference)
                continue

            materials[reference] = Material(
                name=color_name,
                rgba=_hex_to_rgba(GAZEBO_COLORS[color_name]),
                source=MaterialSource.GAZEBO,
                **self._get_source_metadata(material_elem),
            )

        return materials

    def _parse_color(self, material_elem: etree._Element) -> tuple[float, float, float, float] | None:
        color_elem = material_elem.find("color")
        if color_elem is None or color_elem.get("rgba") is None:
            return None

        parts = color_elem.get("rgba").split()  # ty: ignore[possibly-missing-attribute]
        if len(parts) < 3:
            logger.warning("Ignoring color with fewer than 3 components: '%s'", color_elem.get("rgba"))
            return None

        return self._parse_vector(" ".join(parts[:4]), 4, default=(0.0, 0.0, 0.0, 1.0))  # ty: ignore[invalid-return-type]

    def _parse_texture(self, material_elem: etree._Element) -> str | None:
        texture_elem = material_elem.find("texture")
        if texture_elem is None:
            return None
        return texture_elem.get("filename")

    def _parse_link(self, link_elem: etree._Element, links: dict[str, Link], joints: dict[str, Joint]) -> None:
        """Parse a link element, splitting extra collisions into virtual child links

        Args:
            link_elem: Link element
            links: Dict to populate with the link and its virtual children
            joints: Dict to populate with fixed joints attaching the virtual children
        """
        name = self._require(link_elem, "name")

        visual = self._parse_visual(link_elem, name)
        inertial = self._parse_inertial(link_elem)

        collision_elems = link_elem.findall("collision")
        collision = self._parse_collision(collision_elems[0]) if collision_elems else Collision()

        self._add_link(
            links,
            Link(
                name=name,
                visual=visual,
                collision=collision,
                inertial=inertial,
                **self._get_source_metadata(link_elem),
            ),
        )

        for i, collision_elem in enumerate(collision_elems[1:], start=1):
            virtual_name = f"{name}_collision_{i}"
            self._add_link(
                links,
                Link(
                    name=virtual_name,
                    collision=self._parse_collision(collision_elem),
                    synthesized=True,
                    **self._get_source_metadata(collision_elem),
                ),
            )
            self._add_joint(
                joints,
                Joint(
                    name=f"{name}_collision_joint_{i}",
                    type=JointType.FIXED,
                    parent=name,
                    child=virtual_name,
                    axis=(0.0, 0.0, 0.0),
                    synthesized=True,
                    **self._get_source_metadata(collision_elem),
                ),
            )

    def _parse_inertial(self, link_elem: etree._Element) -> Inertial:
        """Parse inertial element

        Args:
            link_elem: Link element containing inertial element

        Returns:
            Inertial object, massless with zero inertia if no inertial is defined
        """
        inertial_elem = link_elem.find("inertial")
        if inertial_elem is None:
            return Inertial()

        origin = self._parse_origin(inertial_elem)

        mass_elem = inertial_elem.find("mass")
        mass = self._parse_float(mass_elem.get("value"), 0.0) if mass_elem is not None else 0.0

        inertia_elem = inertial_elem.find("inertia")
        if inertia_elem is not None:
            inertia = Inertia(
                ixx=self._parse_float(inertia_elem.get("ixx"), 0.0),
                ixy=self._parse_float(inertia_elem.get("ixy"), 0.0),
                ixz=self._parse_float(inertia_elem.get("ixz"), 0.0),
                iyy=self._parse_float(inertia_elem.get("iyy"), 0.0),
                iyz=self._parse_float(inertia_elem.get("iyz"), 0.0),
                izz=self._parse_float(inertia_elem.get("izz"), 0.0),
                **self._get_source_metadata(inertia_elem),
            )
        else:
            inertia = Inertia()

        return Inertial(origin=origin, mass=mass, inertia=inertia, **self._get_source_metadata(inertial_elem))

    def _parse_collision(self, collision_elem: etree._Element) -> Collision:
        return Collision(
            name=collision_elem.get("name"),
            origin=self._parse_origin(collision_elem),
            geometry=self._parse_geometry(collision_elem),
            **self._get_source_metadata(collision_elem),
        )

    def _parse_visual(self, link_elem: etree._Element, link_name: str) -> Visual:
        """Parse the first visual element and resolve its color

        Args:
            link_elem: Link element containing visual elements
            link_name: Name of the link, used for Gazebo material lookup

        Returns:
            Visual object, without geometry if the link has no visual
        """
        visual_elems = link_elem.findall("visual")
        if len(visual_elems) > 1:
            logger.info("Link '%s' has %d visuals, keeping the first", link_name, len(visual_elems))

        if not visual_elems:
            return Visual(material=self._gazebo_materials.get(link_name))

        visual_elem = visual_elems[0]
        material = self._parse_material(visual_elem) or self._gazebo_materials.get(link_name)

        return Visual(
            origin=self._parse_origin(visual_elem),
            geometry=self._parse_geometry(visual_elem),
            material=material,
            **self._get_source_metadata(visual_elem),
        )

    def _parse_material(self, visual_elem: etree._Element) -> Material | None:
        """Resolve the color of a visual element

        Inline <color> wins over a reference to a named material.

        Args:
            visual_elem: Visual element containing material

        Returns:
            Material object, or None if no color could be resolved
        """
        material_elem = visual_elem.find("material")
        if material_elem is None:
            return None

        name = material_elem.get("name")
        rgba = self._parse_color(material_elem)
        texture_filename = self._parse_texture(material_elem)

        if rgba is not None:
            return Material(
                name=name,
                rgba=rgba,
                texture_filename=texture_filename,
                source=MaterialSource.INLINE,
                **self._get_source_metadata(material_elem),
            )

        if name in self._global_materials:
            resolved = self._global_materials[name]
            return Material(
                name=name,
                rgba=resolved.rgba,
                texture_filename=texture_filename or resolved.texture_filename,
                source=MaterialSource.NAMED,
                **self._get_source_metadata(material_elem),
            )

        if name:
            logger.debug("Material '%s' has no color definition", name)

        return None

    def _parse_geometry(self, parent_elem: etree._Element) -> Geometry | None:
        """Parse geometry element

        Args:
            parent_elem: Parent element containing geometry element

        Returns:
            Geometry object, or None if no geometry is defined

        Raises:
            MissingAttributeError: If a mesh has no filename
        """
        geometry_elem = parent_elem.find("geometry")
        if geometry_elem is None or len(geometry_elem) == 0:
            return None

        shape_elem = geometry_elem[0]
        metadata = self._get_source_metadata(shape_elem)

        if shape_elem.tag == "box":
            size = self._parse_vector(shape_elem.get("size"), 3)
            return Box(size=size, **metadata)  # ty: ignore[invalid-argument-type]

        elif shape_elem.tag == "cylinder":
            radius = self._parse_float(shape_elem.get("radius"), 0.1)
            length = self._parse_float(shape_elem.get("length"), 0.5)
            return Cylinder(radius=radius, length=length, **metadata)

        elif shape_elem.tag == "capsule":
            radius = self._parse_float(shape_elem.get("radius"), 0.1)
            length = self._parse_float(shape_elem.get("length"), 0.5)
            return Capsule(radius=radius, length=length, **metadata)

        elif shape_elem.tag == "sphere":
            radius = self._parse_float(shape_elem.get("radius"), 0.1)
            return Sphere(radius=radius, **metadata)

        elif shape_elem.tag == "mesh":
            filename = self._require(shape_elem, "filename")
            return Mesh(filename=filename, scale=self._parse_scale(shape_elem.get("scale")), **metadata)

        logger.warning("Unsupported geometry <%s> on line %s", shape_elem.tag, shape_elem.sourceline)
        return None

    def _parse_scale(self, scale: str | None) -> tuple[float, float, float]:
        """Parse a mesh scale given as one uniform factor or three components"""
        if scale is None:
            return (1.0, 1.0, 1.0)

        parts = scale.split()
        if len(parts) == 1:
            factor = self._parse_float(parts[0], 1.0)
            return (factor, factor, factor)

        return self._parse_vector(scale, 3, default=(1.0, 1.0, 1.0))  # ty: ignore[invalid-return-type]

    def _parse_joint(self, joint_elem: etree._Element, links: dict[str, Link]) -> Joint:
        """Parse a joint element

        Parent or child references that name no link are kept as None and the
        joint is left out of the tree.

        Args:
            joint_elem: Joint element
            links: Links parsed so far

        Returns:
            Joint object

        Raises:
            MissingAttributeError: If the joint has no name
            ParseError: If the joint type is unknown
        """
        name = self._require(joint_elem, "name")

        type_str = joint_elem.get("type", "revolute")
        try:
            joint_type = JointType(type_str)
        except ValueError:
            raise ParseError(f"Unknown joint type '{type_str}' for joint '{name}'", line=joint_elem.sourceline)

        parent = self._resolve_link(joint_elem, "parent", links)
        child = self._resolve_link(joint_elem, "child", links)

        return Joint(
            name=name,
            type=joint_type,
            parent=parent,
            child=child,
            origin=self._parse_origin(joint_elem),
            axis=self._parse_axis(joint_elem),
            limit=self._parse_limit(joint_elem),
            dynamics=self._parse_dynamics(joint_elem),
            hardware=self._parse_hardware(joint_elem),
            mimic=self._parse_mimic(joint_elem),
            **self._get_source_metadata(joint_elem),
        )

    def _resolve_link(self, joint_elem: etree._Element, tag: str, links: dict[str, Link]) -> str | None:
        ref_elem = joint_elem.find(tag)
        link_name = ref_elem.get("link") if ref_elem is not None else None

        if link_name not in links:
            logger.warning(
                "Joint '%s' references unknown %s link '%s', leaving it unattached",
                joint_elem.get("name"),
                tag,
                link_name,
            )
            return None

        return link_name

    def _parse_origin(self, parent_elem: etree._Element) -> Pose:
        """Parse origin element

        Args:
            parent_elem: Parent element containing origin element

        Returns:
            Pose with xyz and rpy, or default Pose if no origin is defined
        """
        origin_elem = parent_elem.find("origin")
        if origin_elem is None:
            return Pose()

        xyz = self._parse_vector(origin_elem.get("xyz"), 3)
        rpy = self._parse_vector(origin_elem.get("rpy"), 3)

        return Pose(xyz=xyz, rpy=rpy, **self._get_source_metadata(origin_elem))  # ty: ignore[invalid-argument-type]

    def _parse_axis(self, joint_elem: etree._Element) -> tuple[float, float, float]:
        """Parse axis element

        Args:
            joint_elem: Joint element containing axis element

        Returns:
            Unit axis, or (1.0, 0.0, 0.0) if no axis is defined
        """
        axis_elem = joint_elem.find("axis")
        if axis_elem is None:
            return (1.0, 0.0, 0.0)

        return normalize(self._parse_vector(axis_elem.get("xyz"), 3, default=(1.0, 0.0, 0.0)))

    def _parse_limit(self, joint_elem: etree._Element) -> Limit:
        """Parse limit element, filling absent attributes with the default limit"""
        limit_elem = joint_elem.find("limit")
        if limit_elem is None:
            return Limit()

        default = Limit()
        return Limit(
            lower=self._parse_float(limit_elem.get("lower"), default.lower),
            upper=self._parse_float(limit_elem.get("upper"), default.upper),
            effort=self._parse_float(limit_elem.get("effort"), default.effort),
            velocity=self._parse_float(limit_elem.get("velocity"), default.velocity),
            **self._get_source_metadata(limit_elem),
        )

    def _parse_dynamics(self, joint_elem: etree._Element) -> Dynamics:
        dynamics_elem = joint_elem.find("dynamics")
        if dynamics_elem is None:
            return Dynamics()

        return Dynamics(
            damping=self._parse_float(dynamics_elem.get("damping"), 0.0),
            friction=self._parse_float(dynamics_elem.get("friction"), 0.0),
            **self._get_source_metadata(dynamics_elem),
        )

    def _parse_hardware(self, joint_elem: etree._Element) -> Hardware:
        """Parse the vendor <hardware> block carrying motor metadata"""
        hardware_elem = joint_elem.find("hardware")
        if hardware_elem is None:
            return Hardware()

        direction = hardware_elem.findtext("motorDirection", "1").strip()
        return Hardware(
            motor_type=hardware_elem.findtext("motorType", "None").strip() or "None",
            motor_id=hardware_elem.findtext("motorId", "").strip(),
            motor_direction=-1 if direction.startswith("-") else 1,
            armature=self._parse_float(hardware_elem.findtext("armature"), 0.0),
            **self._get_source_metadata(hardware_elem),
        )

    def _parse_mimic(self, joint_elem: etree._Element) -> Mimic | None:
        mimic_elem = joint_elem.find("mimic")
        if mimic_elem is None:
            return None

        return Mimic(
            joint=self._require(mimic_elem, "joint"),
            multiplier=self._parse_float(mimic_elem.get("multiplier"), 1.0),
            offset=self._parse_float(mimic_elem.get("offset"), 0.0),
            **self._get_source_metadata(mimic_elem),
        )


class XacroParser(XMLParser):
    """Parser for Xacro documents

    Properties, macros, arguments, conditionals and includes are expanded with
    xacrodoc and the result is parsed as URDF. Source line numbers refer to the
    expanded document.
    """

    root_tag = "robot"

    def __init__(self, text: str, source_file: Path | str | None = None, args: dict[str, str] | None = None):
        """Initialize parser

        Args:
            text: Raw Xacro markup
            source_file: Path the markup was read from, includes resolve relative to it
            args: Values for <xacro:arg> declarations
        """
        super().__init__(text, source_file=source_file)
        self.args = dict(args) if args else {}

    def expand(self) -> str:
        """Expand the document into URDF text

        An existing source file is expanded in place so relative includes resolve;
        otherwise the text is expanded from a temporary file.

        Returns:
            URDF markup

        Raises:
            ParseError: If xacrodoc cannot expand the document
        """
        source = Path(self.source_file) if self.source_file else None
        if source is not None and source.is_file():
            return self._expand_file(source)

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "robot.urdf.xacro"
            path.write_text(self.text, encoding="utf-8")
            return self._expand_file(path)

    def _expand_file(self, path: Path) -> str:
        from xacrodoc import XacroDoc

        try:
            # package:// URIs are left for the asset resolver
            doc = XacroDoc.from_file(str(path.resolve()), subargs=self.args, resolve_packages=False)
            return doc.to_urdf_string()
        except Exception as e:
            raise ParseError(f"Xacro expansion failed: {e}") from e

    def parse(self) -> Robot:
        """Expand the Xacro document and parse it as URDF

        Returns:
            Robot model

        Raises:
            ParseError: If expansion fails, or any error URDFParser.parse raises
            MimicCycleError: If mimic joints form a loop
        """
        return URDFParser(self.expand(), source_file=self.source_file).parse()


@dataclass
class _Geom:
    """Intermediate MJCF geom, kept until visual/collision pairing is done"""

    elem: etree._Element
    name: str | None
    mesh: str | None
    is_visual: bool
    geometry: Geometry | None
    origin: Pose
    material: Material | None


class MJCFParser(XMLParser):
    """Parser for MJCF (MuJoCo XML) documents"""

    root_tag = "mujoco"

    def parse(self) -> Robot:
        """Parse MJCF text into Robot model

        The worldbody becomes the root link "world" and every nested body becomes
        a link attached to its parent body.

        Returns:
            Robot model

        Raises:
            MalformedXMLError: If the text is not well-formed XML
            MissingRootError: If there is no <mujoco> or <worldbody> element
            ParseError: If body or joint names are duplicated
            MimicCycleError: If equality couplings form a loop
        """
        root = self._load()

        robot_name = root.get("model") or "mjcf_robot"

        self._compiler = self._parse_compiler(root)
        self._classes = self._parse_classes(root)
        self._global_materials = self._parse_global_materials(root)
        self._global_meshes = self._parse_global_meshes(root)
        self._body_counter = 0

        worldbody = root.find("worldbody")
        if worldbody is None:
            raise MissingRootError("No <worldbody> element found", line=root.sourceline)

        links = {}
        joints = {}
        self._parse_body(worldbody, worldbody.get("name") or "world", None, None, links, joints)
        self._parse_equality(root, joints)

        robot = Robot(name=robot_name, links=links, joints=joints)
        robot.root = robot.find_root()
        robot.check_mimic_cycles()

        return robot

    def _parse_compiler(self, root: etree._Element) -> dict:
        """Read compiler settings that change how numbers are interpreted

        Returns:
            Dict with 'degrees' (bool), 'meshdir' (str) and 'eulerseq' (str)
        """
        compiler = {"degrees": True, "meshdir": "", "eulerseq": "xyz"}

        for compiler_elem in root.findall("compiler"):
            if angle := compiler_elem.get("angle"):
                compiler["degrees"] = angle != "radian"
            if meshdir := compiler_elem.get("meshdir") or compiler_elem.get("assetdir"):
                compiler["meshdir"] = meshdir
            if eulerseq := compiler_elem.get("eulerseq"):
                compiler["eulerseq"] = eulerseq

        return compiler

    def _angle(self, value: float) -> float:
        return math.radians(value) if self._compiler["degrees"] else value

    def _parse_classes(self, root: etree._Element) -> dict[str, dict]:
        """Parse all default classes

        Args:
            root: Root element of MJCF tree

        Returns:
            Dict mapping class names to class data
        """
        classes = {}

        for default_elem in root.findall("default"):
            self._parse_defaults(default_elem, None, classes)

        return classes

    def _parse_defaults(self, default_elem: etree._Element, parent_class: str | None, classes: dict):
        """Recursively parse default elements

        Args:
            default_elem: Default element to parse
            parent_class: Name of parent class
            classes: Dict to populate with class data
        """
        class_name = default_elem.get("class", "main")

        classes[class_name] = {"parent": parent_class}

        for elem_type in ["joint", "geom"]:
            elem = default_elem.find(elem_type)
            if elem is not None:
                classes[class_name][elem_type] = dict(elem.attrib)

        # recursively parse children
        for child_elem in default_elem.findall("default"):
            self._parse_defaults(child_elem, class_name, classes)

    def _get_class_defaults(self, class_name: str | None, element_type: str) -> dict:
        """Recursively get class defaults for an element type

        Args:
            class_name: Name of the class, None for the top-level defaults
            element_type: Type of element ('joint' or 'geom')

        Returns:
            Dict of default attributes
        """
        class_name = class_name or "main"
        if class_name not in self._classes:
            return {}

        class_data = self._classes[class_name]

        # recursively get parent defaults
        parent = class_data.get("parent")
        defaults = self._get_class_defaults(parent, element_type) if parent else {}

        # stack child data
        if element_type in class_data:
            defaults.update(class_data[element_type])

        return defaults

    def _parse_global_materials(self, root: etree._Element) -> dict[str, Material]:
        """Parse all global material elements

        Args:
            root: Root element of MJCF tree

        Returns:
            Dict mapping global material names to Material objects
        """
        materials = {}

        for assets in root.findall("asset"):
            textures = self._parse_global_textures(assets)

            for material_elem in assets.findall("material"):
                name = material_elem.get("name")
                if not name:
                    continue

                if rgba_str := material_elem.get("rgba"):
                    rgba = self._parse_vector(rgba_str, 4, default=(0.0, 0.0, 0.0, 1.0))
                else:
                    rgba = None

                if texture_name := material_elem.get("texture"):
                    texture_filename = textures.get(texture_name)
                else:
                    texture_filename = None

                materials[name] = Material(
                    name=name,
                    rgba=rgba,  # ty: ignore[invalid-argument-type]
                    texture_filename=texture_filename,
                    source=MaterialSource.NAMED,
                    **self._get_source_metadata(material_elem),
                )

        return materials

    def _parse_global_textures(self, assets: etree._Element) -> dict[str, str]:
        """Parse all global texture elements

        Args:
            assets: Asset element containing textures

        Returns:
            Dict mapping texture names to filenames
        """
        textures = {}

        for texture_elem in assets.findall("texture"):
            name = texture_elem.get("name")
            filename = texture_elem.get("file")

            if name and filename:
                textures[name] = filename

        return textures

    def _parse_global_meshes(self, root: etree._Element) -> dict[str, Mesh]:
        """Parse all global mesh elements

        Args:
            root: Root element of MJCF tree

        Returns:
            Dict mapping mesh names to Mesh objects, file paths prefixed with meshdir
        """
        meshes = {}
        meshdir = self._compiler["meshdir"]

        for assets in root.findall("asset"):
            for mesh_elem in assets.findall("mesh"):
                filename = mesh_elem.get("file")
                if filename is None:
                    continue

                name = mesh_elem.get("name") or Path(filename).stem

                if meshdir and not filename.startswith("/") and ":" not in filename:
                    filename = posixpath.join(meshdir, filename)

                scale = self._parse_vector(mesh_elem.get("scale"), 3, default=(1.0, 1.0, 1.0))

                meshes[name] = Mesh(filename=filename, scale=scale, **self._get_source_metadata(mesh_elem))  # ty: ignore[invalid-argument-type]

        return meshes

    def _parse_body(
        self,
        body_elem: etree._Element,
        body_name: str,
        parent_name: str | None,
        childclass: str | None,
        links: dict[str, Link],
        joints: dict[str, Joint],
    ):
        """Parse a body into links and joints, then recurse into child bodies

        Args:
            body_elem: Body element (or the worldbody)
            body_name: Name to give the body's main link
            parent_name: Name of the parent link, None for the worldbody
            childclass: Default class inherited from enclosing bodies
            links: Dict to populate with links
            joints: Dict to populate with joints
        """
        childclass = body_elem.get("childclass") or childclass

        geoms = [self._parse_geom(geom_elem, childclass) for geom_elem in body_elem.findall("geom")]
        pairs = self._pair_geoms(geoms)

        visual_geom, collision_geom = pairs[0]
        self._add_link(
            links,
            Link(
                name=body_name,
                visual=self._to_visual(visual_geom),
                collision=self._to_collision(collision_geom),
                inertial=self._parse_inertial(body_elem),
                **self._get_source_metadata(body_elem),
            ),
        )

        if parent_name is not None:
            self._add_joint(joints, self._create_joint(body_elem, parent_name, body_name, childclass))

        for i, (visual_geom, collision_geom) in enumerate(pairs[1:], start=1):
            sub_name = f"{body_name}_geom_{i}"
            self._add_link(
                links,
                Link(
                    name=sub_name,
                    visual=self._to_visual(visual_geom),
                    collision=self._to_collision(collision_geom),
                    synthesized=True,
                    **self._get_source_metadata((visual_geom or collision_geom).elem),  # ty: ignore[possibly-missing-attribute]
                ),
            )
            self._add_joint(
                joints,
                Joint(
                    name=f"fixed_{sub_name}",
                    type=JointType.FIXED,
                    parent=body_name,
                    child=sub_name,
                    axis=(0.0, 0.0, 0.0),
                    synthesized=True,
                ),
            )

        for child_elem in body_elem.findall("body"):
            child_name = child_elem.get("name")
            if not child_name:
                child_name = f"body_{self._body_counter}"
                self._body_counter += 1
            self._parse_body(child_elem, child_name, body_name, childclass, links, joints)

    def _pair_geoms(self, geoms: list[_Geom]) -> list[tuple[_Geom | None, _Geom | None]]:
        """Pair visual geoms with collision geoms

        Visuals match collisions by shared mesh, or by shared name when the visual
        has no mesh. The first visual falls back to the first collision if nothing
        matched. Unmatched collisions become collision-only pairs.

        Returns:
            List of (visual, collision) pairs, at least one entry
        """
        visuals = [g for g in geoms if g.is_visual]
        collisions = [g for g in geoms if not g.is_visual]
        used = set()
        pairs = []

        for visual in visuals:
            match = None
            for i, collision in enumerate(collisions):
                if i in used:
                    continue
                if visual.mesh is not None and collision.mesh == visual.mesh:
                    match = i
                    break
                if visual.mesh is None and visual.name is not None and collision.name == visual.name:
                    match = i
                    break

            if match is None and not pairs and collisions and 0 not in used:
                match = 0

            if match is not None:
                used.add(match)
                pairs.append((visual, collisions[match]))
            else:
                pairs.append((visual, None))

        for i, collision in enumerate(collisions):
            if i not in used:
                pairs.append((None, collision))

        return pairs or [(None, None)]

    def _to_visual(self, geom: _Geom | None) -> Visual:
        if geom is None:
            return Visual()
        return Visual(
            origin=geom.origin,
            geometry=geom.geometry,
            material=geom.material,
            **self._get_source_metadata(geom.elem),
        )

    def _to_collision(self, geom: _Geom | None) -> Collision:
        if geom is None:
            return Collision()
        return Collision(
            name=geom.name,
            origin=geom.origin,
            geometry=geom.geometry,
            **self._get_source_metadata(geom.elem),
        )

    def _parse_geom(self, geom_elem: etree._Element, childclass: str | None) -> _Geom:
        """Parse a geom element into an unpaired intermediate geom"""
        defaults = self._get_class_defaults(geom_elem.get("class") or childclass, "geom")

        def attr(key: str) -> str | None:
            return geom_elem.get(key, defaults.get(key))

        group = int(self._parse_float(attr("group"), 0))
        contype = int(self._parse_float(attr("contype"), 1))
        conaffinity = int(self._parse_float(attr("conaffinity"), 1))

        geometry, origin = self._parse_geometry(geom_elem, attr)

        return _Geom(
            elem=geom_elem,
            name=geom_elem.get("name"),
            mesh=attr("mesh"),
            is_visual=group == 1 and contype == 0 and conaffinity == 0,
            geometry=geometry,
            origin=origin,
            material=self._parse_material(attr),
        )

    def _infer_geom_type(self, attr) -> str:
        """Geom type from the explicit attribute or from which size attributes are present"""
        if geom_type := attr("type"):
            return geom_type
        if attr("mesh"):
            return "mesh"

        fromto = attr("fromto")
        if fromto is not None and len(fromto.split()) == 6:
            return "capsule"

        size = attr("size").split() if attr("size") else []
        if len(size) == 1:
            return "sphere"
        if len(size) == 2:
            return "capsule"
        if len(size) >= 3:
            return "ellipsoid"
        return "sphere"

    def _parse_geometry(self, geom_elem: etree._Element, attr) -> tuple[Geometry | None, Pose]:
        """Parse geometry and placement of a geom

        Args:
            geom_elem: Geom element
            attr: Attribute lookup falling back to class defaults

        Returns:
            Tuple of geometry (None if unsupported) and its pose in the body frame
        """
        metadata = self._get_source_metadata(geom_elem)
        geom_type = self._infer_geom_type(attr)
        size = [self._parse_float(s, 0.0) for s in (attr("size") or "").split()]
        origin = self._parse_origin(geom_elem, attr)

        def size_at(i: int, fallback: float) -> float:
            if i < len(size) and size[i]:
                return size[i]
            return fallback

        if geom_type == "mesh":
            mesh_name = attr("mesh")
            if mesh_name in self._global_meshes:
                mesh = self._global_meshes[mesh_name]
                return Mesh(filename=mesh.filename, scale=mesh.scale, **metadata), origin
            logger.warning("Geom references undeclared mesh '%s'", mesh_name)
            return Mesh(filename=mesh_name or "", **metadata), origin

        if geom_type in ("capsule", "cylinder"):
            radius = size_at(0, 0.1)
            fromto = attr("fromto")
            if fromto is not None and len(fromto.split()) == 6:
                values = self._parse_vector(fromto, 6)
                start, end = values[:3], values[3:]
                direction = tuple(e - s for s, e in zip(start, end))
                length = math.sqrt(sum(d * d for d in direction))
                center = tuple(0.5 * (s + e) for s, e in zip(start, end))
                rpy = quat_to_rpy(quat_between((0.0, 0.0, 1.0), direction)) if length > 0 else (0.0, 0.0, 0.0)
                origin = Pose(xyz=center, rpy=rpy, **metadata)  # ty: ignore[invalid-argument-type]
            else:
                length = 2 * size_at(1, 0.05)

            shape = Capsule if geom_type == "capsule" else Cylinder
            return shape(radius=radius, length=length, **metadata), origin

        if geom_type == "box":
            half = (size_at(0, 0.05), size_at(1, size_at(0, 0.05)), size_at(2, size_at(0, 0.05)))
            return Box(size=tuple(2 * h for h in half), **metadata), origin  # ty: ignore[invalid-argument-type]

        if geom_type == "sphere":
            return Sphere(radius=size_at(0, 0.05), **metadata), origin

        if geom_type == "ellipsoid":
            radii = (size_at(0, 0.05), size_at(1, size_at(0, 0.05)), size_at(2, size_at(0, 0.05)))
            logger.debug("Approximating ellipsoid %s with a sphere", radii)
            return Sphere(radius=max(radii), **metadata), origin

        if geom_type == "plane":
            # zero half-size means an infinite plane, shown as a 10 m patch
            return Box(size=(2 * size_at(0, 5.0), 2 * size_at(1, 5.0), 0.001), **metadata), origin

        logger.warning("Unsupported geom type '%s' on line %s", geom_type, geom_elem.sourceline)
        return None, origin

    def _parse_material(self, attr) -> Material | None:
        """Resolve geom color, inline rgba winning over the referenced material"""
        material_name = attr("material")
        resolved = self._global_materials.get(material_name) if material_name else None

        if rgba_str := attr("rgba"):
            return Material(
                name=material_name,
                rgba=self._parse_vector(rgba_str, 4, default=(0.5, 0.5, 0.5, 1.0)),  # ty: ignore[invalid-argument-type]
                texture_filename=resolved.texture_filename if resolved else None,
                source=MaterialSource.INLINE,
            )

        if resolved is not None:
            return Material(
                name=material_name,
                rgba=resolved.rgba,
                texture_filename=resolved.texture_filename,
                source=MaterialSource.NAMED,
            )

        return None

    def _parse_inertial(self, body_elem: etree._Element) -> Inertial:
        """Parse inertial element

        A diagonal inertia with an orientation is rotated into the body frame.

        Args:
            body_elem: Body element containing inertial element

        Returns:
            Inertial object, massless if no inertial is defined
        """
        inertial_elem = body_elem.find("inertial")
        if inertial_elem is None:
            return Inertial()

        metadata = self._get_source_metadata(inertial_elem)
        mass = self._parse_float(inertial_elem.get("mass"), 0.0)
        xyz = self._parse_vector(inertial_elem.get("pos"), 3)
        quat = self._parse_orientation(inertial_elem, inertial_elem.get)

        if fullinertia := inertial_elem.get("fullinertia"):
            ixx, iyy, izz, ixy, ixz, iyz = self._parse_vector(fullinertia, 6)
            inertia = Inertia(ixx=ixx, iyy=iyy, izz=izz, ixy=ixy, ixz=ixz, iyz=iyz, **metadata)
            origin = Pose(xyz=xyz, rpy=quat_to_rpy(quat), **metadata)  # ty: ignore[invalid-argument-type]
        elif diaginertia := inertial_elem.get("diaginertia"):
            tensor = rotate_inertia(self._parse_vector(diaginertia, 3), quat)
            inertia = Inertia(
                ixx=float(tensor[0, 0]),
                iyy=float(tensor[1, 1]),
                izz=float(tensor[2, 2]),
                ixy=float(tensor[0, 1]),
                ixz=float(tensor[0, 2]),
                iyz=float(tensor[1, 2]),
                **metadata,
            )
            origin = Pose(xyz=xyz, **metadata)  # ty: ignore[invalid-argument-type]
        else:
            inertia = Inertia(**metadata)
            origin = Pose(xyz=xyz, **metadata)  # ty: ignore[invalid-argument-type]

        return Inertial(origin=origin, mass=mass, inertia=inertia, **metadata)

    def _create_joint(self, body_elem: etree._Element, parent_name: str, child_name: str, childclass: str | None) -> Joint:
        """Create Joint object from body element pair

        Only the first joint of a body is kept. A body without joints is welded to
        its parent by a fixed joint.

        Args:
            body_elem: Body element containing joint
            parent_name: Name of parent body
            child_name: Name of this body (child)
            childclass: Default class inherited from enclosing bodies

        Returns:
            Joint object
        """
        origin = self._parse_origin(body_elem, body_elem.get)
        joint_elems = body_elem.findall("joint") + body_elem.findall("freejoint")

        if len(joint_elems) > 1:
            logger.warning("Body '%s' has %d joints, keeping the first", child_name, len(joint_elems))

        if not joint_elems:
            return Joint(
                name=f"{child_name}_fixed",
                type=JointType.FIXED,
                parent=parent_name,
                child=child_name,
                origin=origin,
                axis=(0.0, 0.0, 1.0),
                **self._get_source_metadata(body_elem),
            )

        joint_elem = joint_elems[0]
        if joint_elem.tag == "freejoint":
            return Joint(
                name=joint_elem.get("name", f"{child_name}_freejoint"),
                type=JointType.FLOATING,
                parent=parent_name,
                child=child_name,
                origin=origin,
                axis=(0.0, 0.0, 1.0),
                **self._get_source_metadata(joint_elem),
            )

        defaults = self._get_class_defaults(joint_elem.get("class") or childclass, "joint")

        def attr(key: str) -> str | None:
            return joint_elem.get(key, defaults.get(key))

        type_str = attr("type") or "hinge"
        range_str = attr("range")
        limited = attr("limited") or "auto"
        has_range = range_str is not None and (limited == "true" or limited == "auto")

        if type_str == "hinge":
            joint_type = JointType.REVOLUTE if has_range else JointType.CONTINUOUS
        elif type_str == "slide":
            joint_type = JointType.PRISMATIC
        elif type_str == "ball":
            joint_type = JointType.CONTINUOUS
        elif type_str == "free":
            joint_type = JointType.FLOATING
        else:
            logger.warning("Unknown joint type '%s' in body '%s', treating as fixed", type_str, child_name)
            joint_type = JointType.FIXED

        limit = Limit()
        if has_range:
            lower, upper = self._parse_vector(range_str, 2)
            if type_str == "hinge":
                lower, upper = self._angle(lower), self._angle(upper)
            limit = Limit(lower=lower, upper=upper, **self._get_source_metadata(joint_elem))

        return Joint(
            name=joint_elem.get("name", f"{child_name}_joint"),
            type=joint_type,
            parent=parent_name,
            child=child_name,
            origin=origin,
            axis=normalize(self._parse_vector(attr("axis"), 3, default=(0.0, 0.0, 1.0))),
            limit=limit,
            dynamics=Dynamics(
                damping=self._parse_float(attr("damping"), 0.0),
                friction=self._parse_float(attr("frictionloss"), 0.0),
            ),
            hardware=Hardware(armature=self._parse_float(attr("armature"), 0.0)),
            **self._get_source_metadata(joint_elem),
        )

    def _parse_equality(self, root: etree._Element, joints: dict[str, Joint]):
        """Turn joint equality constraints into mimic couplings

        joint1 = c0 + c1 * joint2 becomes a mimic on joint1 with offset c0 and multiplier c1.
        """
        for equality_elem in root.iterfind("equality/joint"):
            joint1 = equality_elem.get("joint1")
            joint2 = equality_elem.get("joint2")
            if joint1 not in joints or not joint2:
                logger.debug("Skipping joint equality %s = f(%s)", joint1, joint2)
                continue

            coef = self._parse_vector(equality_elem.get("polycoef"), 5, default=(0.0, 1.0, 0.0, 0.0, 0.0))
            if any(coef[2:]):
                logger.warning("Dropping nonlinear terms of joint equality on '%s'", joint1)

            joints[joint1].mimic = Mimic(
                joint=joint2,
                multiplier=coef[1],
                offset=coef[0],
                **self._get_source_metadata(equality_elem),
            )

    def _parse_orientation(self, elem: etree._Element, attr) -> tuple[float, float, float, float]:
        """Orientation from quat, axisangle, euler, xyaxes or zaxis, in that priority"""
        if quat_str := attr("quat"):
            quat = self._parse_vector(quat_str, 4, default=IDENTITY_QUAT)
            norm = math.sqrt(sum(q * q for q in quat))
            return tuple(q / norm for q in quat) if norm > 0 else IDENTITY_QUAT  # ty: ignore[invalid-return-type]

        if axisangle := attr("axisangle"):
            x, y, z, angle = self._parse_vector(axisangle, 4)
            return quat_from_axis_angle((x, y, z), self._angle(angle))

        if euler_str := attr("euler"):
            angles = tuple(self._angle(a) for a in self._parse_vector(euler_str, 3))
            return euler_sequence_to_quat(angles, self._compiler["eulerseq"])

        if xyaxes := attr("xyaxes"):
            values = self._parse_vector(xyaxes, 6)
            x_axis = normalize(values[:3])
            y_raw = values[3:]
            dot = sum(a * b for a, b in zip(x_axis, y_raw))
            y_axis = normalize(tuple(b - dot * a for a, b in zip(x_axis, y_raw)))
            z_axis = (
                x_axis[1] * y_axis[2] - x_axis[2] * y_axis[1],
                x_axis[2] * y_axis[0] - x_axis[0] * y_axis[2],
                x_axis[0] * y_axis[1] - x_axis[1] * y_axis[0],
            )
            matrix = [[x_axis[i], y_axis[i], z_axis[i]] for i in range(3)]
            return matrix_to_quat(matrix)  # ty: ignore[invalid-argument-type]

        if zaxis := attr("zaxis"):
            return quat_between((0.0, 0.0, 1.0), self._parse_vector(zaxis, 3))

        return IDENTITY_QUAT

    def _parse_origin(self, elem: etree._Element, attr) -> Pose:
        """Parse position and orientation from element

        Args:
            elem: Element containing pose information
            attr: Attribute lookup, possibly falling back to class defaults

        Returns:
            Pose object with xyz and rpy
        """
        xyz = self._parse_vector(attr("pos"), 3)
        quat = self._parse_orientation(elem, attr)
        rpy = (0.0, 0.0, 0.0) if quat == IDENTITY_QUAT else quat_to_rpy(quat)

        return Pose(xyz=xyz, rpy=rpy, **self._get_source_metadata(elem))  # ty: ignore[invalid-argument-type]


_USD_DEF = re.compile(r'^def\s+(?:(\w+)\s+)?"([^"]+)"')
_USD_ATTRIBUTE = re.compile(
    r"^(?:uniform\s+)?(?:[\w\[\]]+\s+)?(xformOp:translate|xformOp:rotateXYZ|xformOp:scale|size|radius|height)\s*=\s*(.+)$"
)
_USD_ASSET = re.compile(r"@([^@]+)@")
_USD_DEFAULT_PRIM = re.compile(r'defaultPrim\s*=\s*"([^"]+)"')
_USD_GEOMETRY_TYPES = {"Mesh", "Cube", "Sphere", "Cylinder", "Capsule"}


@dataclass
class _Prim:
    """Prim recorded by the USDA scanner"""

    type: str
    name: str
    line: int
    link: str | None = None
    translate: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotate: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0)
    attributes: dict[str, float] = field(default_factory=dict)
    asset: str | None = None


class USDAParser:
    """Line-oriented scanner for ASCII USD robot descriptions

    This is not a USD reader. It recognizes ``def <Type> "<name>"`` blocks for
    Xform, Mesh, Cube, Sphere, Cylinder and Capsule prims, tracks nesting with an
    explicit stack, and reads transform and size attributes of the enclosing
    prim. Xforms become links, nested Xforms are welded to the enclosing link,
    and geometry prims become the visual and collision of the enclosing link.
    """

    def __init__(self, text: str, source_file: Path | str | None = None):
        """Initialize USDA scanner

        Args:
            text: USDA text
            source_file: Path the text was read from, used for source metadata
        """
        self.text = text
        self.source_file = str(source_file) if source_file is not None else None

    @classmethod
    def from_file(cls, usd_path: Path | str):
        """Create a scanner for the text stored at usd_path

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        usd_path = Path(usd_path)
        if not usd_path.exists():
            raise FileNotFoundError(f"USD file not found: {usd_path}")

        return cls(usd_path.read_text(encoding="utf-8", errors="replace"), source_file=usd_path)

    def parse(self) -> Robot:
        """Scan USDA text into Robot model

        Returns:
            Robot model

        Raises:
            MissingRootError: If no Xform or geometry prim is found
        """
        model_name = "usd_model"
        prims = []
        stack = []
        pending = None
        paren_depth = 0

        for lineno, raw_line in enumerate(self.text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            if match := _USD_DEFAULT_PRIM.search(line):
                if not prims:
                    model_name = match.group(1)

            if match := _USD_DEF.match(line):
                prim_type = match.group(1) or ""
                enclosing = next((p for p in reversed(stack) if p is not None), None)
                prim = _Prim(type=prim_type, name=match.group(2), line=lineno)
                prim.link = self._enclosing_link(enclosing)
                prims.append(prim)
                pending = prim
                rest = line[match.end() :]
            else:
                rest = line
                # metadata between a def and its "{" belongs to the pending prim
                if pending is not None and paren_depth > 0:
                    self._apply_attribute(pending, line)
                elif stack and stack[-1] is not None and paren_depth == 0:
                    self._apply_attribute(stack[-1], line)

            in_string = False
            for char in rest:
                if char == '"':
                    in_string = not in_string
                elif in_string:
                    continue
                elif char == "(":
                    paren_depth += 1
                elif char == ")":
                    paren_depth = max(0, paren_depth - 1)
                elif char == "{":
                    if pending is not None and paren_depth == 0:
                        stack.append(pending)
                        pending = None
                    else:
                        stack.append(stack[-1] if stack else None)
                elif char == "}":
                    if stack:
                        stack.pop()

        return self._build_robot(model_name, prims)

    def _enclosing_link(self, prim: _Prim | None) -> str | None:
        if prim is None:
            return None
        if prim.type == "Xform":
            return prim.name
        return prim.link

    def _apply_attribute(self, prim: _Prim, line: str):
        """Record a transform, size or asset attribute on prim"""
        if prim.type == "Mesh" and (asset := _USD_ASSET.search(line)):
            if "references" in line or "asset" in line or "payload" in line:
                prim.asset = asset.group(1)

        match = _USD_ATTRIBUTE.match(line)
        if not match:
            return

        name, value = match.group(1), match.group(2).strip()
        numbers = [float(n) for n in re.findall(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?", value)]
        if not numbers:
            return

        if name == "xformOp:translate" and len(numbers) >= 3:
            prim.translate = tuple(numbers[:3])  # ty: ignore[invalid-assignment]
        elif name == "xformOp:rotateXYZ" and len(numbers) >= 3:
            prim.rotate = tuple(math.radians(n) for n in numbers[:3])  # ty: ignore[invalid-assignment]
        elif name == "xformOp:scale" and len(numbers) >= 3:
            prim.scale = tuple(numbers[:3])  # ty: ignore[invalid-assignment]
        elif name in ("size", "radius", "height"):
            prim.attributes[name] = numbers[0]

    def _geometry(self, prim: _Prim) -> Geometry | None:
        """Geometry of a scanned prim using USD schema defaults for absent attributes"""
        metadata = self._get_source_metadata(prim)
        sx, sy, sz = prim.scale

        if prim.type == "Cube":
            size = prim.attributes.get("size", 2.0)
            return Box(size=(size * sx, size * sy, size * sz), **metadata)
        if prim.type == "Sphere":
            return Sphere(radius=prim.attributes.get("radius", 1.0) * max(prim.scale), **metadata)
        if prim.type in ("Cylinder", "Capsule"):
            shape = Cylinder if prim.type == "Cylinder" else Capsule
            radius = prim.attributes.get("radius", 1.0) * max(sx, sy)
            return shape(radius=radius, length=prim.attributes.get("height", 2.0) * sz, **metadata)
        if prim.type == "Mesh":
            filename = prim.asset or f"usd:{prim.link or prim.name}/{prim.name}"
            return Mesh(filename=filename, scale=prim.scale, **metadata)
        return None

    def _build_robot(self, model_name: str, prims: list[_Prim]) -> Robot:
        links = {}
        joints = {}

        for prim in prims:
            if prim.type == "Xform" or (prim.type in _USD_GEOMETRY_TYPES and prim.link is None):
                name = prim.name
                if name in links:
                    raise ParseError(f"Duplicate link name: '{name}'", line=prim.line)

                links[name] = Link(name=name, **self._get_source_metadata(prim))
                if prim.type != "Xform":
                    self._attach_geometry(links[name], prim, Pose())
                if prim.link is not None:
                    joints[f"{name}_joint"] = Joint(
                        name=f"{name}_joint",
                        type=JointType.FIXED,
                        parent=prim.link,
                        child=name,
                        origin=Pose(xyz=prim.translate, rpy=prim.rotate),
                        **self._get_source_metadata(prim),
                    )

            elif prim.type in _USD_GEOMETRY_TYPES:
                link = links[prim.link]  # ty: ignore[invalid-argument-type]
                origin = Pose(xyz=prim.translate, rpy=prim.rotate)
                if link.visual.geometry is None:
                    self._attach_geometry(link, prim, origin)
                    continue

                # one visual per link, extra shapes get their own welded link
                name = prim.name
                counter = 1
                while name in links:
                    name = f"{link.name}_{prim.name}" if counter == 1 else f"{link.name}_{prim.name}_{counter}"
                    counter += 1
                links[name] = Link(name=name, **self._get_source_metadata(prim))
                self._attach_geometry(links[name], prim, Pose())
                joints[f"{name}_joint"] = Joint(
                    name=f"{name}_joint",
                    type=JointType.FIXED,
                    parent=link.name,
                    child=name,
                    origin=origin,
                    **self._get_source_metadata(prim),
                )

        if not links:
            raise MissingRootError("No Xform or geometry prims found in USDA text")

        robot = Robot(name=model_name, links=links, joints=joints)
        robot.root = robot.find_root()
        robot.check_mimic_cycles()

        return robot

    def _attach_geometry(self, link: Link, prim: _Prim, origin: Pose):
        geometry = self._geometry(prim)
        link.visual = Visual(origin=origin, geometry=geometry, **self._get_source_metadata(prim))
        link.collision = Collision(name=prim.name, origin=origin, geometry=geometry, **self._get_source_metadata(prim))

    def _get_source_metadata(self, prim: _Prim) -> dict:
        return {
            "_line_number": prim.line,
            "_source_path": f"/{prim.link}/{prim.name}" if prim.link else f"/{prim.name}",
            "_source_file": self.source_file,
        }


class RobotFormat(str, Enum):
    URDF = "urdf"
    XACRO = "xacro"
    MJCF = "mjcf"
    USD = "usd"


_USDC_MAGIC = b"PXR-USDC"
_ZIP_MAGIC = b"PK\x03\x04"


def _is_binary_usd(content: str | bytes) -> bool:
    return isinstance(content, bytes) and (content.startswith(_USDC_MAGIC) or content.startswith(_ZIP_MAGIC))


def _as_text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content


def detect_format(content: str | bytes, filename: str | None = None) -> RobotFormat | None:
    """Identify the dialect of a robot description

    The file extension decides when it is unambiguous; otherwise the content is sniffed.

    Args:
        content: Raw file content
        filename: Name of the file, if known

    Returns:
        Detected format, or None if the content matches no supported dialect
    """
    suffix = Path(filename).suffix.lower() if filename else ""

    if suffix == ".urdf":
        return RobotFormat.URDF
    if suffix == ".xacro":
        return RobotFormat.XACRO
    if suffix in (".usd", ".usda", ".usdc", ".usdz"):
        return RobotFormat.USD

    if _is_binary_usd(content):
        return RobotFormat.USD

    text = _as_text(content)
    is_xacro = "xmlns:xacro" in text or "<xacro:" in text
    if suffix == ".xml":
        if "<mujoco" in text:
            return RobotFormat.MJCF
        if "<robot" in text:
            return RobotFormat.XACRO if is_xacro else RobotFormat.URDF

    if text.lstrip().startswith("#usda") or re.search(r"^def\s+\w+", text, re.MULTILINE) or "defaultPrim" in text:
        return RobotFormat.USD
    if "<mujoco" in text:
        return RobotFormat.MJCF
    if "<robot" in text:
        return RobotFormat.XACRO if is_xacro else RobotFormat.URDF

    return None


_TEXT_PARSERS = {
    RobotFormat.URDF: URDFParser,
    RobotFormat.XACRO: XacroParser,
    RobotFormat.MJCF: MJCFParser,
    RobotFormat.USD: USDAParser,
}


def get_parser(path: Path | str):
    """Get parser based on file extension and content

    Args:
        path: Path to robot description file

    Returns:
        URDFParser, XacroParser, MJCFParser, USDAParser, or USDStageParser instance

    Raises:
        FileNotFoundError: If the file doesn't exist
        UnsupportedFormatError: If the format cannot be identified
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    content = path.read_bytes()
    robot_format = detect_format(content, path.name)
    if robot_format is None:
        raise UnsupportedFormatError(f"Unsupported robot description: {path.name}")

    if robot_format is RobotFormat.USD and (_is_binary_usd(content) or path.suffix.lower() in (".usdc", ".usdz")):
        from .usd_stage import USDStageParser

        return USDStageParser(path)

    return _TEXT_PARSERS[robot_format](_as_text(content), source_file=path)


def load_robot_file(path: Path | str) -> Robot:
    """Parse the robot description stored at path"""
    return get_parser(path).parse()


def load_robot(content: str | bytes, filename: str | None = None) -> Robot:
    """Parse a robot description held in memory

    Binary USD content is written to a temporary file and opened with the USD
    stage loader; everything else goes through the text parsers.

    Args:
        content: Raw file content
        filename: Name of the file, used for format detection

    Returns:
        Robot model

    Raises:
        UnsupportedFormatError: If the format cannot be identified
        ParseError: If the content cannot be parsed
        MimicCycleError: If mimic joints form a loop
    """
    robot_format = detect_format(content, filename)
    if robot_format is None:
        raise UnsupportedFormatError(f"Unsupported robot description: {filename or '<memory>'}")

    suffix = Path(filename).suffix.lower() if filename else ""
    if robot_format is RobotFormat.USD and (_is_binary_usd(content) or suffix in (".usdc", ".usdz")):
        from .usd_stage import USDStageParser

        if not suffix:
            suffix = ".usdz" if isinstance(content, bytes) and content.startswith(_ZIP_MAGIC) else ".usdc"
        data = content if isinstance(content, bytes) else content.encode("utf-8")
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / f"robot{suffix}"
            path.write_bytes(data)
            return USDStageParser(path).parse()

    return _TEXT_PARSERS[robot_format](_as_text(content), source_file=filename).parse()
