import math
from pathlib import Path

import pytest

pytest.importorskip("xacrodoc")

from robot_canon.errors import ParseError  # noqa: E402
from robot_canon.model import Box, JointType  # noqa: E402
from robot_canon.parsers import RobotFormat, XacroParser, detect_format, get_parser, load_robot  # noqa: E402

GRIPPER = """<?xml version="1.0"?>
<robot name="gripper" xmlns:xacro="http://www.ros.org/wiki/xacro">
  <xacro:property name="finger_length" value="0.05"/>
  <xacro:macro name="finger" params="side">
    <link name="${side}_finger"/>
    <joint name="${side}_finger_joint" type="prismatic">
      <parent link="palm"/>
      <child link="${side}_finger"/>
      <origin xyz="0 0 ${finger_length}"/>
      <limit lower="0" upper="${finger_length / 2}" effort="5" velocity="0.1"/>
    </joint>
  </xacro:macro>
  <link name="palm"/>
  <xacro:finger side="left"/>
  <xacro:finger side="right"/>
</robot>
"""


@pytest.fixture
def data_dir() -> Path:
    """Path to test data directory"""
    return Path(__file__).parent / "xacro_data"


def test_includes_and_macros(data_dir: Path) -> None:
    """Test that included macros expand into links and joints"""
    robot = XacroParser.from_file(data_dir / "walker.urdf.xacro").parse()

    assert robot.name == "walker"
    assert robot.root == "base_link"
    assert list(robot.links) == ["base_link", "left_leg", "right_leg", "head"]
    assert list(robot.joints) == ["left_leg_joint", "right_leg_joint", "head_joint"]

    left = robot.joints["left_leg_joint"]
    assert left.type == JointType.REVOLUTE
    assert left.parent == "base_link"
    assert left.origin.xyz == pytest.approx((0.0, 0.2, 0.0))
    assert robot.joints["right_leg_joint"].origin.xyz == pytest.approx((0.0, -0.2, 0.0))
    assert (left.limit.lower, left.limit.upper) == pytest.approx((-math.pi / 2, math.pi / 2))


def test_property_substitution(data_dir: Path) -> None:
    """Test that ${} expressions are evaluated against properties"""
    robot = XacroParser.from_file(data_dir / "walker.urdf.xacro").parse()

    base = robot.links["base_link"].visual.geometry
    leg = robot.links["left_leg"].visual.geometry
    assert isinstance(base, Box)
    assert base.size == pytest.approx((0.4, 0.4, 0.1))
    assert leg.size == pytest.approx((0.2, 0.1, 0.4))


def test_conditional_argument(data_dir: Path) -> None:
    """Test that <xacro:if> follows argument values"""
    robot = XacroParser.from_file(data_dir / "walker.urdf.xacro", args={"with_head": "false"}).parse()

    assert "head" not in robot.links
    assert "head_joint" not in robot.joints
    assert len(robot.links) == 3


def test_source_file_kept(data_dir: Path) -> None:
    """Test that source metadata points at the Xacro file"""
    path = data_dir / "walker.urdf.xacro"
    robot = XacroParser.from_file(path).parse()

    assert robot.links["base_link"]._source_file == str(path)


def test_expand_text() -> None:
    """Test expanding Xacro held in memory"""
    robot = XacroParser(GRIPPER).parse()

    assert list(robot.links) == ["palm", "left_finger", "right_finger"]
    joint = robot.joints["right_finger_joint"]
    assert joint.type == JointType.PRISMATIC
    assert joint.origin.xyz == pytest.approx((0.0, 0.0, 0.05))
    assert joint.limit.upper == pytest.approx(0.025)


def test_undefined_property() -> None:
    """Test that expansion failures raise ParseError"""
    text = '<robot name="r" xmlns:xacro="http://www.ros.org/wiki/xacro"><link name="${missing}"/></robot>'

    with pytest.raises(ParseError, match="Xacro expansion failed"):
        XacroParser(text).parse()


def test_detect_and_dispatch(data_dir: Path) -> None:
    """Test that Xacro is recognized by extension and namespace"""
    path = data_dir / "walker.urdf.xacro"

    assert detect_format("", "robot.urdf.xacro") == RobotFormat.XACRO
    assert detect_format(GRIPPER) == RobotFormat.XACRO
    assert detect_format(GRIPPER, "gripper.xml") == RobotFormat.XACRO
    assert isinstance(get_parser(path), XacroParser)
    assert list(get_parser(path).parse().links)[0] == "base_link"
    assert list(load_robot(GRIPPER, "gripper.xacro").joints) == ["left_finger_joint", "right_finger_joint"]
