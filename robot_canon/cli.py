import logging
import sys
from enum import Enum
from pathlib import Path

import tyro

from .errors import KinematicError, ParseError
from .generators import generate
from .model import Robot
from .parsers import RobotFormat, get_parser
from .validation import validate_robot


class TargetFormat(Enum):
    urdf = RobotFormat.URDF
    mjcf = RobotFormat.MJCF


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(path: Path) -> Robot:
    """Parse path, exiting with a one-line message on failure

    Raises:
        SystemExit: If the file cannot be parsed or its mimic joints loop
    """
    try:
        robot = get_parser(path).parse()
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(1)
    except (ParseError, KinematicError) as e:
        print(f"error: {path}: {e}", file=sys.stderr)
        raise SystemExit(1)

    return robot


def convert(
    input: Path,
    /,
    to: TargetFormat,
    output: Path | None = None,
    extended: bool = False,
    verbose: bool = False,
) -> None:
    """Convert a robot description between formats.
    Reads URDF (.urdf), MJCF (.xml) and USD (.usd, .usda, .usdc, .usdz) files.

    Args:
        input: Path to the robot description
        to: Output format
        output: Path to write, stdout if omitted
        extended: Write vendor hardware metadata (URDF hardware block, MJCF armature)
        verbose: Log debug messages
    """
    _configure_logging(verbose)

    robot = _load(input)
    text = generate(robot, to.value, extended=extended)

    if output is None:
        print(text)
    else:
        output.write_text(text, encoding="utf-8")


def inspect(input: Path, /, verbose: bool = False) -> None:
    """Print the kinematic tree of a robot description and any structural issues.

    Args:
        input: Path to the robot description
        verbose: Log debug messages
    """
    _configure_logging(verbose)

    robot = _load(input)

    print(f"robot: {robot.name}")
    print(f"root: {robot.root}")
    print(f"links: {len(robot.links)}  joints: {len(robot.joints)}")

    shown = set()

    def show(link_name: str, depth: int) -> None:
        shown.add(link_name)
        for joint in robot.child_joints(link_name):
            print(f"{'  ' * depth}{joint.child} ({joint.name}, {joint.type.value})")
            if joint.child not in shown:
                show(joint.child, depth + 1)  # ty: ignore[invalid-argument-type]

    if robot.root is not None:
        print(robot.root)
        show(robot.root, 1)

    issues = validate_robot(robot)
    for issue in issues:
        print(issue)


def tyro_cli():
    tyro.extras.subcommand_cli_from_dict({"convert": convert, "inspect": inspect}, prog="robot-canon")


if __name__ == "__main__":
    tyro_cli()
