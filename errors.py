from typing import List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

PathPart = Union[str, int]


def _is_union_tag(part) -> bool:
    return isinstance(part, str) and part[:1].isupper() and not part.isupper()


class AppError(Exception):
    pass


class ParseError(AppError):
    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class NotFoundError(AppError):
    pass


class AlreadyExistsError(AppError):
    pass


class UpstreamError(AppError):
    pass


class Issue:
    def __init__(self, path: Sequence[PathPart], message: str):
        self.path: Tuple[PathPart, ...] = tuple(path)
        self.message = message

    def format_path(self) -> str:
        if not self.path:
            return "root"
        text = ""
        for index, part in enumerate(self.path):
            if isinstance(part, int):
                text += f"[{part}]"
            elif index == 0:
                text += part
            else:
                text += f".{part}"
        return text

    def to_dict(self):
        return {"path": list(self.path), "message": self.message}

    def __eq__(self, other):
        return isinstance(other, Issue) and (self.path, self.message) == (other.path, other.message)

    def __repr__(self):
        return f"Issue({self.format_path()!r}, {self.message!r})"

    def __str__(self):
        return f"{self.format_path()}: {self.message}"


class ValidationError(AppError):
    def __init__(self, issues: List[Issue], source: Optional[str] = None):
        message = "; ".join(str(issue) for issue in issues)
        super().__init__(f"{source}: {message}" if source else message)
        self.issues = issues
        self.source = source

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError, source: Optional[str] = None):
        issues = []
        for detail in error.errors():
            # Union members add their class name to the location
            loc = [part for part in detail["loc"] if not _is_union_tag(part)]
            message = detail["msg"]
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            issues.append(Issue(loc, message))
        return cls(issues, source)
