import math
from pathlib import Path

import pytest

from robot_canon.errors import MissingRootError
from robot_canon.model import Box, Cylinder, JointType, Mesh, Sphere
from robot_canon.parsers import USDAParser


@pytest.fixture
def data_dir() -> Path:
    """Path to test data directory"""
    return Path(__file__).parent / "usd_data"


@pytest.fixture
def rover(data_dir: Path):
    return USDAParser.from_file(data_dir / "rover.usda").parse()


def test_model_name_and_links(rover) -> None:
    """Test that the default prim names the model and Xforms become links"""
    assert rover.name == "rover"
    assert rover.root == "rover"
    assert list(rover.links) == ["rover", "chassis", "mast", "sensor", "shell"]


def test_nested_xform_is_welded(rover) -> None:
    """Test that a nested Xform gets a fixed joint with its translation"""
    joint = rover.joints["chassis_joint"]

    assert joint.type == JointType.FIXED
    assert joint.parent == "rover"
    assert joint.child == "chassis"
    assert joint.origin.xyz == (0.0, 0.0, 0.2)


def test_rotation_in_degrees(rover) -> None:
    """Test that rotateXYZ is read in degrees"""
    joint = rover.joints["mast_joint"]

    assert joint.parent == "chassis"
    assert joint.origin.xyz == (0.1, 0.0, 0.3)
    assert joint.origin.rpy == pytest.approx((0.0, 0.0, math.pi / 2))


def test_first_geometry_is_link_visual(rover) -> None:
    """Test that the first shape inside an Xform becomes its visual and collision"""
    chassis = rover.links["chassis"]

    assert chassis.visual.geometry == Box(size=(0.5, 0.5, 0.5))
    assert chassis.collision.geometry == Box(size=(0.5, 0.5, 0.5))
    assert chassis.collision.name == "body"

    pole = rover.links["mast"].visual.geometry
    assert isinstance(pole, Cylinder)
    assert (pole.radius, pole.length) == (0.02, 0.6)


def test_extra_geometry_gets_own_link(rover) -> None:
    """Test that further shapes become welded links placed by their transform"""
    sensor = rover.links["sensor"]
    assert isinstance(sensor.visual.geometry, Sphere)
    assert sensor.visual.geometry.radius == 0.05
    assert sensor.visual.origin.is_identity()

    joint = rover.joints["sensor_joint"]
    assert joint.parent == "chassis"
    assert joint.origin.xyz == (0.25, 0.0, 0.0)


def test_mesh_reference(rover) -> None:
    """Test that a referenced asset becomes the mesh filename"""
    shell = rover.links["shell"].visual.geometry

    assert isinstance(shell, Mesh)
    assert shell.filename == "./meshes/shell.usd"
    assert rover.joints["shell_joint"].parent == "chassis"


def test_source_metadata(rover) -> None:
    """Test line and path tracking for scanned prims"""
    mast = rover.links["mast"]

    assert mast._line_number == 22
    assert mast._source_path == "/chassis/mast"


def test_schema_defaults() -> None:
    """Test USD fallback sizes for shapes without attributes"""
    usda = """#usda 1.0
def Xform "bot"
{
    def Cube "box"
    {
    }
    def Sphere "ball"
    {
    }
    def Mesh "hull"
    {
    }
}
"""
    robot = USDAParser(usda).parse()

    assert robot.name == "usd_model"
    assert robot.links["bot"].visual.geometry == Box(size=(2.0, 2.0, 2.0))
    assert robot.links["ball"].visual.geometry == Sphere(radius=1.0)
    assert robot.links["hull"].visual.geometry.filename == "usd:bot/hull"


def test_scale_applies_to_shapes() -> None:
    """Test that xformOp:scale multiplies shape sizes"""
    usda = """def Xform "bot"
{
    def Cube "box"
    {
        double size = 1
        float3 xformOp:scale = (0.5, 2, 3)
    }
}
"""
    robot = USDAParser(usda).parse()

    assert robot.links["bot"].visual.geometry == Box(size=(0.5, 2.0, 3.0))


def test_top_level_geometry() -> None:
    """Test that a top-level shape becomes its own root link"""
    robot = USDAParser('def Sphere "marble"\n{\n    double radius = 0.01\n}\n').parse()

    assert robot.root == "marble"
    assert robot.links["marble"].visual.geometry == Sphere(radius=0.01)


def test_braces_inside_strings() -> None:
    """Test that braces in string values do not change nesting"""
    usda = """def Xform "bot"
{
    string note = "{ not a block"
    def Xform "arm"
    {
    }
}
def Xform "other"
{
}
"""
    robot = USDAParser(usda).parse()

    assert robot.joints["arm_joint"].parent == "bot"
    assert "other_joint" not in robot.joints


def test_no_prims() -> None:
    """Test that text without prims is rejected"""
    with pytest.raises(MissingRootError, match="No Xform or geometry prims"):
        USDAParser("#usda 1.0\n").parse()


def test_missing_file(data_dir: Path) -> None:
    """Test that a missing file raises FileNotFoundError"""
    with pytest.raises(FileNotFoundError, match="USD file not found"):
        USDAParser.from_file(data_dir / "nonexistent.usda")


def test_repeated_shape_names() -> None:
    """Test that same-named extra shapes each get a distinct welded link"""
    shapes = "".join(f'    def Cube "part"\n    {{\n        double size = {size}\n    }}\n' for size in (1, 2, 3, 4))
    robot = USDAParser(f'def Xform "base"\n{{\n{shapes}}}\n').parse()

    assert list(robot.links) == ["base", "part", "base_part", "base_part_2"]
    assert list(robot.joints) == ["part_joint", "base_part_joint", "base_part_2_joint"]
    assert robot.links["base"].visual.geometry == Box(size=(1.0, 1.0, 1.0))
    assert robot.links["base_part_2"].visual.geometry == Box(size=(4.0, 4.0, 4.0))
    assert robot.joints["base_part_2_joint"].parent == "base"
