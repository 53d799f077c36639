from pathlib import Path

import pytest
from lxml import etree

from robot_canon.errors import UnsupportedFormatError
from robot_canon.generators import MJCFGenerator, URDFGenerator, generate
from robot_canon.model import Box, Collision, Joint, JointType, Link, Pose, Robot, Visual
from robot_canon.parsers import MJCFParser, RobotFormat, URDFParser, USDAParser


@pytest.fixture
def data_dir() -> Path:
    """Path to test data directory"""
    return Path(__file__).parent


@pytest.fixture
def complex_robot(data_dir: Path) -> Robot:
    return URDFParser.from_file(data_dir / "urdf_data" / "complex_robot.urdf").parse()


@pytest.fixture
def arm(data_dir: Path) -> Robot:
    return MJCFParser.from_file(data_dir / "mjcf_data" / "simple_arm.xml").parse()


def _xml(text: str) -> etree._Element:
    return etree.fromstring(text.encode("utf-8"))


def test_urdf_round_trip(complex_robot: Robot) -> None:
    """Test that parsing generated URDF reproduces the model"""
    text = URDFGenerator(complex_robot, extended=True).generate()
    reparsed = URDFParser(text).parse()

    assert text.startswith("<?xml")
    assert reparsed.name == complex_robot.name
    assert reparsed.root == complex_robot.root
    assert list(reparsed.links) == list(complex_robot.links)
    assert list(reparsed.joints) == list(complex_robot.joints)
    assert reparsed.links == complex_robot.links
    assert reparsed.joints == complex_robot.joints


def test_urdf_folds_virtual_collision_links(complex_robot: Robot) -> None:
    """Test that split collisions are written back as extra collisions"""
    root = _xml(URDFGenerator(complex_robot).generate())

    assert root.find("link[@name='base_link_collision_1']") is None
    assert root.find("joint[@name='base_link_collision_joint_1']") is None

    collisions = root.findall("link[@name='base_link']/collision")
    assert [c.get("name") for c in collisions] == ["base_main", "base_bumper"]
    assert collisions[1].find("origin").get("xyz") == "0.2 0 0"


def test_urdf_materials(complex_robot: Robot) -> None:
    """Test named, inline and Gazebo material output"""
    root = _xml(URDFGenerator(complex_robot).generate())

    assert root.find("material[@name='blue']/color").get("rgba") == "0 0 1 1"
    assert root.find("link[@name='base_link']/visual/material").get("name") == "blue"
    assert root.find("link[@name='base_link']/visual/material/color") is None

    inline = root.find("link[@name='arm_link']/visual/material")
    assert inline.get("name") == "arm_red"
    assert inline.find("color").get("rgba") == "1 0 0 1"

    assert root.find("link[@name='wheel_link']/visual/material") is None
    assert root.find("gazebo[@reference='wheel_link']/material").text == "Gazebo/Black"


def test_urdf_omits_defaults(complex_robot: Robot) -> None:
    """Test that elements equal to parser defaults are not written"""
    root = _xml(URDFGenerator(complex_robot).generate())

    wheel = root.find("joint[@name='wheel_joint']")
    assert wheel.find("limit") is None
    assert wheel.find("dynamics") is None
    assert wheel.find("origin").get("rpy") == "1.5708 0 0"

    slider = root.find("joint[@name='slider_joint']")
    assert slider.find("axis") is None
    assert slider.find("origin").get("rpy") is None
    assert dict(slider.find("limit").attrib) == {"lower": "0", "upper": "0.2", "effort": "50", "velocity": "0.5"}

    mimic = root.find("joint[@name='finger_right_joint']/mimic")
    assert dict(mimic.attrib) == {"joint": "finger_left_joint", "multiplier": "-1"}

    assert root.find("link[@name='slider_link']/collision") is None
    assert root.find("link[@name='base_link']/visual/origin") is None
    assert root.find(".//hardware") is None


def test_urdf_extended_hardware(complex_robot: Robot) -> None:
    """Test the vendor hardware block"""
    root = _xml(URDFGenerator(complex_robot, extended=True).generate())

    hardware = root.find("joint[@name='arm_joint']/hardware")
    assert hardware.findtext("motorType") == "XM430"
    assert hardware.findtext("motorId") == "3"
    assert hardware.findtext("motorDirection") == "-1"
    assert hardware.findtext("armature") == "0.01"

    assert root.find("joint[@name='wheel_joint']/hardware/motorType").text == "None"
    assert root.find("joint[@name='base_link_collision_joint_1']") is None


def test_urdf_folds_by_name() -> None:
    """Test that a hand-written "{parent}_collision_{n}" holder is folded with its joint offset"""
    robot = Robot(
        name="r",
        links={
            "base": Link(name="base", visual=Visual(geometry=Box(size=(1.0, 1.0, 1.0)))),
            "base_collision_1": Link(name="base_collision_1", collision=Collision(geometry=Box(size=(0.1, 0.1, 0.1)))),
        },
        joints={
            "holder": Joint(
                name="holder",
                type=JointType.FIXED,
                parent="base",
                child="base_collision_1",
                origin=Pose(xyz=(0.0, 0.0, 0.5)),
            )
        },
        root="base",
    )
    root = _xml(URDFGenerator(robot).generate())

    assert root.find("joint") is None
    assert root.find("link[@name='base']/collision/origin").get("xyz") == "0 0 0.5"


def test_urdf_keeps_holder_with_visual() -> None:
    """Test that a visible link is never folded"""
    robot = Robot(
        name="r",
        links={
            "base": Link(name="base"),
            "base_collision_1": Link(name="base_collision_1", visual=Visual(geometry=Box(size=(1.0, 1.0, 1.0)))),
        },
        joints={"j": Joint(name="j", type=JointType.FIXED, parent="base", child="base_collision_1")},
        root="base",
    )
    root = _xml(URDFGenerator(robot).generate())

    assert root.find("link[@name='base_collision_1']") is not None
    assert root.find("joint[@name='j']") is not None


def test_urdf_skips_orphans(data_dir: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Test that unattached joints are left out"""
    robot = URDFParser.from_file(data_dir / "urdf_data" / "orphan_joint.urdf").parse()
    root = _xml(URDFGenerator(robot).generate())

    assert [j.get("name") for j in root.findall("joint")] == ["arm_joint"]
    assert "ghost_joint" in caplog.text


def test_mjcf_round_trip(arm: Robot) -> None:
    """Test that parsing generated MJCF keeps links, joints and wiring"""
    reparsed = MJCFParser(MJCFGenerator(arm).generate()).parse()

    assert reparsed.name == arm.name
    assert reparsed.root == "world"
    assert list(reparsed.links) == list(arm.links)
    assert list(reparsed.joints) == list(arm.joints)

    for name, joint in arm.joints.items():
        other = reparsed.joints[name]
        assert (other.type, other.parent, other.child) == (joint.type, joint.parent, joint.child)
        assert other.origin.xyz == pytest.approx(joint.origin.xyz)
        assert other.origin.rpy == pytest.approx(joint.origin.rpy, abs=1e-9)

    assert reparsed.joints["shoulder"].limit.upper == pytest.approx(arm.joints["shoulder"].limit.upper)
    assert reparsed.joints["elbow"].mimic == arm.joints["elbow"].mimic
    capsule = reparsed.links["upper_arm_geom_1"].collision.geometry
    assert (capsule.radius, capsule.length) == pytest.approx((0.02, 0.3))
    assert reparsed.links["world"].collision.geometry == Box(size=(4.0, 4.0, 0.001))


def test_mjcf_structure(arm: Robot) -> None:
    """Test worldbody, assets, geoms and equality output"""
    root = _xml(MJCFGenerator(arm).generate())

    assert root.find("compiler").get("angle") == "radian"
    assert [m.get("name") for m in root.findall("asset/mesh")] == ["upper_arm", "forearm"]
    assert root.find("asset/material[@name='steel']").get("rgba") == "0.6 0.6 0.6 1"

    upper = root.find(".//body[@name='upper_arm']")
    assert dict(upper.find("joint").attrib) == {
        "name": "shoulder",
        "type": "hinge",
        "axis": "0 1 0",
        "limited": "true",
        "range": "-1.570796327 1.570796327",
        "damping": "0.5",
    }
    geoms = upper.findall("geom")
    assert len(geoms) == 3
    assert geoms[0].get("group") == "1"
    assert geoms[0].get("rgba") == "1 0 0 1"
    assert geoms[2].get("type") == "capsule"

    assert root.find(".//body[@name='ball']/freejoint").get("name") == "ball_free"
    assert root.find(".//body[@name='base']/joint") is None
    assert root.find(".//body[@name='forearm']/joint").get("limited") == "false"

    equality = root.find("equality/joint")
    assert dict(equality.attrib) == {"joint1": "elbow", "joint2": "shoulder", "polycoef": "0.1 2 0 0 0"}


def test_mjcf_extended_armature(arm: Robot) -> None:
    """Test that armature is only written in extended mode"""
    plain = _xml(MJCFGenerator(arm).generate())
    extended = _xml(MJCFGenerator(arm, extended=True).generate())

    assert plain.find(".//joint[@name='shoulder']").get("armature") is None
    assert extended.find(".//joint[@name='shoulder']").get("armature") == "0.02"


def test_mjcf_from_urdf(complex_robot: Robot) -> None:
    """Test that a URDF root becomes the top-level body and collisions fold into geoms"""
    root = _xml(generate(complex_robot, RobotFormat.MJCF))

    top = root.find("worldbody/body")
    assert top.get("name") == "base_link"
    assert root.find(".//body[@name='base_link_collision_1']") is None
    assert len(top.findall("geom")) == 3
    assert root.find(".//body[@name='wheel_link']/joint").get("limited") == "false"
    assert root.find("asset/mesh").get("scale") == "0.001 0.001 0.001"


def test_generate_from_usda(data_dir: Path) -> None:
    """Test converting a scanned USDA model"""
    robot = USDAParser.from_file(data_dir / "usd_data" / "rover.usda").parse()
    reparsed = URDFParser(generate(robot, "urdf")).parse()

    assert list(reparsed.links) == list(robot.links)
    assert reparsed.joints["mast_joint"].origin.rpy == pytest.approx(robot.joints["mast_joint"].origin.rpy)


def test_generate_unsupported(complex_robot: Robot) -> None:
    """Test that there is no USD writer"""
    with pytest.raises(UnsupportedFormatError, match="No generator for format"):
        generate(complex_robot, RobotFormat.USD)

    with pytest.raises(UnsupportedFormatError):
        generate(complex_robot, "sdf")
