from .errors import KinematicError, MimicCycleError, ParseError
from .generators import MJCFGenerator, URDFGenerator, generate
from .kinematics import KinematicModel
from .model import Joint, JointType, Link, Robot
from .parsers import (
    MJCFParser,
    RobotFormat,
    URDFParser,
    USDAParser,
    XacroParser,
    detect_format,
    get_parser,
    load_robot,
)

__all__ = [
    "Robot",
    "Link",
    "Joint",
    "JointType",
    "URDFParser",
    "XacroParser",
    "MJCFParser",
    "USDAParser",
    "RobotFormat",
    "detect_format",
    "get_parser",
    "load_robot",
    "URDFGenerator",
    "MJCFGenerator",
    "generate",
    "KinematicModel",
    "ParseError",
    "KinematicError",
    "MimicCycleError",
]
