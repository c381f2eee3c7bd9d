"""reqchain errors - exception types shared across the package."""


class ReqchainError(Exception):
    """Base class for all reqchain errors."""


class VariableError(ReqchainError):
    """A placeholder could not be resolved.

    Raised by namespace lookups and system functions. The variable
    processor catches it and leaves the placeholder text in place.
    """

    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}")


class ParseError(ReqchainError):
    """A request file block could not be parsed."""

    def __init__(self, message: str, line: int = 0):
        self.line = line
        super().__init__(message)


class ValidationError(ReqchainError):
    """A fully resolved request is not fit to send."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))
