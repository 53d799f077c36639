from pathlib import Path

import pytest

from robot_canon.errors import (
    MalformedXMLError,
    MimicCycleError,
    MissingAttributeError,
    MissingRootError,
    ParseError,
)
from robot_canon.model import Box, Cylinder, JointType, MaterialSource, Mesh, Sphere
from robot_canon.parsers import URDFParser, load_robot


@pytest.fixture
def data_dir() -> Path:
    """Path to test data directory"""
    return Path(__file__).parent / "urdf_data"


def test_simple_robot(data_dir: Path) -> None:
    """Test parsing a simple valid robot"""
    robot = URDFParser.from_file(data_dir / "simple_robot.urdf").parse()

    assert robot.name == "simple_robot"
    assert list(robot.links) == ["base_link", "end_link"]
    assert list(robot.joints) == ["joint1"]
    assert robot.root == "base_link"

    joint = robot.joints["joint1"]
    assert joint.type == JointType.REVOLUTE
    assert joint.parent == "base_link"
    assert joint.child == "end_link"
    assert joint.origin.xyz == (0.0, 0.0, 0.1)
    assert joint.axis == (0.0, 0.0, 1.0)
    assert (joint.limit.lower, joint.limit.upper, joint.limit.effort, joint.limit.velocity) == (-1.0, 1.0, 10.0, 2.0)


def test_source_metadata(data_dir: Path) -> None:
    """Test that parsed elements remember where they came from"""
    robot = URDFParser.from_file(data_dir / "simple_robot.urdf").parse()

    joint = robot.joints["joint1"]
    assert joint._line_number == 20
    assert joint._source_path == "/robot/joint"
    assert joint._source_file == str(data_dir / "simple_robot.urdf")


def test_missing_file(data_dir: Path) -> None:
    """Test that missing file raises FileNotFoundError"""
    with pytest.raises(FileNotFoundError, match="XML file not found"):
        URDFParser.from_file(data_dir / "nonexistent.urdf")


def test_joint_types(data_dir: Path) -> None:
    """Test parsing a complex robot with multiple joint types"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()

    assert robot.name == "complex_robot"
    assert robot.joints["arm_joint"].type == JointType.REVOLUTE
    assert robot.joints["slider_joint"].type == JointType.PRISMATIC
    assert robot.joints["wheel_joint"].type == JointType.CONTINUOUS
    assert robot.joints["base_link_collision_joint_1"].type == JointType.FIXED

    assert robot.joints["slider_joint"].parent == "arm_link"
    assert robot.joints["slider_joint"].child == "slider_link"


def test_axis_normalized(data_dir: Path) -> None:
    """Test that joint axes are scaled to unit length"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()

    assert robot.joints["arm_joint"].axis == (0.0, 0.0, 1.0)


def test_joint_dynamics_and_hardware(data_dir: Path) -> None:
    """Test dynamics and the vendor hardware block"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()
    joint = robot.joints["arm_joint"]

    assert joint.dynamics.damping == 0.1
    assert joint.dynamics.friction == 0.05
    assert joint.hardware.motor_type == "XM430"
    assert joint.hardware.motor_id == "3"
    assert joint.hardware.motor_direction == -1
    assert joint.hardware.armature == 0.01


def test_mimic(data_dir: Path) -> None:
    """Test mimic with default offset"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()
    mimic = robot.joints["finger_right_joint"].mimic

    assert mimic is not None
    assert mimic.joint == "finger_left_joint"
    assert mimic.multiplier == -1.0
    assert mimic.offset == 0.0
    assert robot.joints["finger_left_joint"].mimic is None


def test_multiple_collisions_split(data_dir: Path) -> None:
    """Test that a second collision becomes a fixed-joined virtual link"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()

    base = robot.links["base_link"]
    assert base.collision.name == "base_main"
    assert isinstance(base.collision.geometry, Box)

    virtual = robot.links["base_link_collision_1"]
    assert virtual.synthesized
    assert virtual.visual.geometry is None
    assert virtual.inertial.mass == 0.0
    assert isinstance(virtual.collision.geometry, Cylinder)
    assert virtual.collision.origin.xyz == (0.2, 0.0, 0.0)

    joint = robot.joints["base_link_collision_joint_1"]
    assert joint.synthesized
    assert joint.parent == "base_link"
    assert joint.child == "base_link_collision_1"
    assert joint.origin.is_identity()
    assert joint.axis == (0.0, 0.0, 0.0)

    assert [name for name in robot.links if "_collision_" in name] == ["base_link_collision_1"]


def test_inertial(data_dir: Path) -> None:
    """Test inertial origin, mass and tensor"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()
    inertial = robot.links["base_link"].inertial

    assert inertial.origin.xyz == (0.0, 0.0, 0.01)
    assert inertial.mass == 2.5
    assert (inertial.inertia.ixx, inertial.inertia.iyy, inertial.inertia.izz) == (0.1, 0.2, 0.3)


def test_geometry(data_dir: Path) -> None:
    """Test every geometry type and the uniform mesh scale"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()

    mesh = robot.links["arm_link"].visual.geometry
    assert isinstance(mesh, Mesh)
    assert mesh.filename == "package://complex_robot/meshes/Arm.STL"
    assert mesh.scale == (0.001, 0.001, 0.001)

    sphere = robot.links["slider_link"].visual.geometry
    assert isinstance(sphere, Sphere)
    assert sphere.radius == 0.04

    cylinder = robot.links["wheel_link"].visual.geometry
    assert isinstance(cylinder, Cylinder)
    assert (cylinder.radius, cylinder.length) == (0.1, 0.05)

    assert robot.links["slider_link"].collision.geometry is None


def test_material_sources(data_dir: Path) -> None:
    """Test inline, named and Gazebo material resolution"""
    robot = URDFParser.from_file(data_dir / "complex_robot.urdf").parse()

    named = robot.links["base_link"].visual.material
    assert named.source == MaterialSource.NAMED
    assert named.name == "blue"
    assert named.rgba == (0.0, 0.0, 1.0, 1.0)

    inline = robot.links["arm_link"].visual.material
    assert inline.source == MaterialSource.INLINE
    assert inline.rgba == (1.0, 0.0, 0.0, 1.0)

    gazebo = robot.links["wheel_link"].visual.material
    assert gazebo.source == MaterialSource.GAZEBO
    assert gazebo.name == "Gazebo/Black"
    assert gazebo.rgba == (0.0, 0.0, 0.0, 1.0)

    assert robot.links["slider_link"].visual.material is None


def test_inline_color_beats_named() -> None:
    """Test that an inline color wins over a global definition of the same name"""
    urdf = """<robot name="r">
      <material name="paint"><color rgba="0 1 0 1"/></material>
      <link name="base">
        <visual>
          <geometry><sphere radius="1"/></geometry>
          <material name="paint"><color rgba="1 1 0 1"/></material>
        </visual>
      </link>
    </robot>"""
    material = URDFParser(urdf).parse().links["base"].visual.material

    assert material.source == MaterialSource.INLINE
    assert material.rgba == (1.0, 1.0, 0.0, 1.0)


def test_gazebo_palette_hex() -> None:
    """Test that Gazebo colors convert from hex"""
    urdf = """<robot name="r">
      <link name="base"><visual><geometry><sphere radius="1"/></geometry></visual></link>
      <gazebo reference="base"><material>Gazebo/Orange</material></gazebo>
    </robot>"""
    material = URDFParser(urdf).parse().links["base"].visual.material

    assert material.rgba == pytest.approx((1.0, 165 / 255, 0.0, 1.0))


def test_misplaced_prolog(data_dir: Path) -> None:
    """Test that a BOM and a declaration after a comment are tolerated"""
    robot = URDFParser.from_file(data_dir / "misplaced_prolog.urdf").parse()

    assert robot.name == "prolog_robot"
    assert robot.root == "base_link"
    assert robot.joints["tip_joint"].type == JointType.FIXED


def test_malformed_xml(data_dir: Path) -> None:
    """Test that syntax errors carry a location"""
    with pytest.raises(MalformedXMLError, match="Malformed XML") as excinfo:
        URDFParser.from_file(data_dir / "malformed.urdf").parse()

    assert excinfo.value.line is not None
    assert excinfo.value.line >= 4
    assert isinstance(excinfo.value, ParseError)
    assert isinstance(excinfo.value, ValueError)


def test_missing_root() -> None:
    """Test that a document without <robot> is rejected"""
    with pytest.raises(MissingRootError, match="No <robot> element found"):
        URDFParser("<mujoco/>").parse()


def test_nested_root() -> None:
    """Test that <robot> is found inside a wrapper element"""
    robot = URDFParser('<wrapper><robot name="inner"><link name="a"/></robot></wrapper>').parse()

    assert robot.name == "inner"
    assert robot.root == "a"


def test_empty_document() -> None:
    """Test that empty text is rejected"""
    with pytest.raises(MissingRootError):
        URDFParser("   ").parse()


def test_missing_link_name() -> None:
    """Test that a link without name raises MissingAttributeError"""
    with pytest.raises(MissingAttributeError, match="<link> is missing required attribute 'name'") as excinfo:
        URDFParser("<robot name='r'>\n<link/>\n</robot>").parse()

    assert excinfo.value.line == 2


def test_missing_joint_name() -> None:
    """Test that a joint without name raises MissingAttributeError"""
    urdf = "<robot><link name='a'/><joint type='fixed'><parent link='a'/><child link='a'/></joint></robot>"

    with pytest.raises(MissingAttributeError, match="<joint>"):
        URDFParser(urdf).parse()


def test_duplicate_link() -> None:
    """Test that duplicated link names are rejected"""
    with pytest.raises(ParseError, match="Duplicate link name: 'a'"):
        URDFParser("<robot><link name='a'/><link name='a'/></robot>").parse()


def test_unknown_joint_type() -> None:
    """Test that unknown joint types are rejected"""
    urdf = "<robot><link name='a'/><link name='b'/><joint name='j' type='screw'><parent link='a'/><child link='b'/></joint></robot>"

    with pytest.raises(ParseError, match="Unknown joint type 'screw'"):
        URDFParser(urdf).parse()


def test_defaults() -> None:
    """Test defaults for unnamed robot, untyped joint and missing limit, axis and origin"""
    urdf = """<robot>
      <link name="a"/>
      <link name="b"><visual><geometry><cylinder/></geometry></visual></link>
      <joint name="j"><parent link="a"/><child link="b"/></joint>
    </robot>"""
    robot = URDFParser(urdf).parse()
    joint = robot.joints["j"]

    assert robot.name == "imported_robot"
    assert joint.type == JointType.REVOLUTE
    assert joint.axis == (1.0, 0.0, 0.0)
    assert joint.origin.is_identity()
    assert (joint.limit.lower, joint.limit.upper, joint.limit.effort, joint.limit.velocity) == (-1.57, 1.57, 100.0, 10.0)

    cylinder = robot.links["b"].visual.geometry
    assert (cylinder.radius, cylinder.length) == (0.1, 0.5)


def test_lenient_numbers() -> None:
    """Test that unreadable numbers fall back to defaults"""
    urdf = """<robot name="r">
      <link name="a"><visual><origin xyz="1 oops 3"/><geometry><box size="1 1"/></geometry></visual></link>
    </robot>"""
    visual = URDFParser(urdf).parse().links["a"].visual

    assert visual.origin.xyz == (1.0, 0.0, 3.0)
    assert visual.geometry.size == (1.0, 1.0, 0.0)


def test_orphan_joint(data_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Test that a joint with an unknown child is kept but unattached"""
    robot = URDFParser.from_file(data_dir / "orphan_joint.urdf").parse()

    joint = robot.joints["ghost_joint"]
    assert joint.parent == "arm_link"
    assert joint.child is None
    assert joint.is_orphan
    assert robot.root == "base_link"
    assert "ghost_link" in caplog.text


def test_fallback_root(caplog: pytest.LogCaptureFixture) -> None:
    """Test that a cyclic document falls back to the first link"""
    urdf = """<robot name="loop">
      <link name="a"/><link name="b"/>
      <joint name="ab" type="fixed"><parent link="a"/><child link="b"/></joint>
      <joint name="ba" type="fixed"><parent link="b"/><child link="a"/></joint>
    </robot>"""
    robot = URDFParser(urdf).parse()

    assert robot.root == "a"
    assert "No unambiguous root" in caplog.text


def test_empty_robot() -> None:
    """Test that a robot without links has no root"""
    robot = URDFParser("<robot name='empty'/>").parse()

    assert robot.links == {}
    assert robot.root is None


def test_missing_mesh_filename() -> None:
    """Test that a mesh without filename raises MissingAttributeError"""
    urdf = "<robot><link name='a'><visual><geometry><mesh/></geometry></visual></link></robot>"

    with pytest.raises(MissingAttributeError, match="'filename'"):
        URDFParser(urdf).parse()


MIMIC_LOOP = """<robot name="loop">
  <link name="base"/>
  <link name="l1"/>
  <link name="l2"/>
  <link name="l3"/>
  <joint name="j1" type="revolute">
    <parent link="base"/>
    <child link="l1"/>
    <mimic joint="j3"/>
  </joint>
  <joint name="j2" type="revolute">
    <parent link="l1"/>
    <child link="l2"/>
    <mimic joint="j1"/>
  </joint>
  <joint name="j3" type="revolute">
    <parent link="l2"/>
    <child link="l3"/>
    <mimic joint="j2"/>
  </joint>
</robot>
"""


def test_mimic_loop_fails_load() -> None:
    """Test that mimic joints forming a loop are rejected when the document is loaded"""
    with pytest.raises(MimicCycleError, match="j1 -> j2 -> j3 -> j1") as excinfo:
        load_robot(MIMIC_LOOP, "r.urdf")

    assert excinfo.value.joints == ["j1", "j2", "j3", "j1"]

    with pytest.raises(MimicCycleError):
        URDFParser(MIMIC_LOOP).parse()
