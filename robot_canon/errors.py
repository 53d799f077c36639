__all__ = [
    "ParseError",
    "MalformedXMLError",
    "MissingRootError",
    "MissingAttributeError",
    "UnsupportedFormatError",
    "KinematicError",
    "MimicCycleError",
]


class ParseError(ValueError):
    """Base class for errors raised while turning source text into a Robot

    Attributes:
        line: 1-based line number of the offending markup, if known
        column: 1-based column number of the offending markup, if known
    """

    def __init__(self, message: str, line: int | None = None, column: int | None = None):
        self.line = line
        self.column = column
        if line is not None:
            location = f"line {line}" if column is None else f"line {line}, column {column}"
            message = f"{message} ({location})"
        super().__init__(message)


class MalformedXMLError(ParseError):
    """Source text is not well-formed markup"""


class MissingRootError(ParseError):
    """Document has no root element of the expected kind"""


class MissingAttributeError(ParseError):
    """Element lacks an attribute that the model cannot default

    Attributes:
        element: Tag of the element
        attribute: Name of the missing attribute
    """

    def __init__(self, element: str, attribute: str, line: int | None = None):
        self.element = element
        self.attribute = attribute
        super().__init__(f"<{element}> is missing required attribute '{attribute}'", line=line)


class UnsupportedFormatError(ParseError):
    """Input could not be identified as URDF, MJCF or USD"""


class KinematicError(Exception):
    """Base class for errors in the kinematic joint model"""


class MimicCycleError(KinematicError):
    """Mimic relationships loop back onto a joint

    Attributes:
        joints: Joint names along the detected loop, starting and ending with the revisited joint
    """

    def __init__(self, joints: list[str]):
        self.joints = joints
        super().__init__(f"Detected an infinite loop of mimic joints: {' -> '.join(joints)}")
