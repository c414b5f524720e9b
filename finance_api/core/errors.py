from typing import Dict, Iterable, List, NamedTuple


class FieldError(NamedTuple):
    field: str
    kind: str


class ValidationError(ValueError):
    """Caller-correctable failure carrying every (field, kind) violation found."""

    def __init__(self, errors: Iterable[FieldError]):
        self.errors: List[FieldError] = list(errors)
        super().__init__(", ".join(f"{e.field} {e.kind}" for e in self.errors))

    def as_dict(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for error in self.errors:
            grouped.setdefault(error.field, []).append(error.kind)
        return grouped

    def has(self, field: str, kind: str) -> bool:
        return FieldError(field, kind) in self.errors


class InvariantViolationError(RuntimeError):
    """Stored data breaks an invariant the application is supposed to maintain."""
