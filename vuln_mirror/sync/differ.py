"""
Field level change tracking between a persistent object and a reported one.

A Differ walks a declarative list of FieldSpec entries, copies every changed
value from the reported object onto the existing one, and remembers what it
changed so callers can log it and decide whether anything happened at all.
"""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional


class OverwritePolicy(Enum):
    ALWAYS = "always"
    # Only overwrite with a value that is present; never clear a stored value
    IF_PRESENT = "if_present"


@dataclass(frozen=True)
class Diff:
    before: Any
    after: Any

    def __str__(self):
        return f"{self.before!r} -> {self.after!r}"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    policy: OverwritePolicy = OverwritePolicy.ALWAYS
    getter: Optional[Callable[[Any], Any]] = None
    setter: Optional[Callable[[Any, Any], None]] = None

    def get(self, obj) -> Any:
        if self.getter is not None:
            return self.getter(obj)
        return operator.attrgetter(self.name)(obj)

    def set(self, obj, value):
        if self.setter is not None:
            self.setter(obj, value)
        else:
            setattr(obj, self.name, value)


class Differ:
    """Applies reported values onto an existing object, one field at a time"""

    def __init__(self, existing, reported):
        self.existing = existing
        self.reported = reported
        self.diffs: Dict[str, Diff] = {}

    def apply(self, spec: FieldSpec) -> bool:
        before = spec.get(self.existing)
        after = spec.get(self.reported)

        if spec.policy is OverwritePolicy.IF_PRESENT and after is None:
            return False
        if before == after:
            return False

        spec.set(self.existing, after)
        self.diffs[spec.name] = Diff(before, after)
        return True

    def apply_if_changed(self, name: str, getter=None, setter=None) -> bool:
        return self.apply(FieldSpec(name, OverwritePolicy.ALWAYS, getter, setter))

    def apply_if_present_and_changed(self, name: str, getter=None, setter=None) -> bool:
        return self.apply(FieldSpec(name, OverwritePolicy.IF_PRESENT, getter, setter))

    def apply_all(self, specs: Iterable[FieldSpec]) -> Dict[str, Diff]:
        """
        Evaluate specs in order; order matters when setters have side effects.

        Diffs are recorded against the values from before the first spec ran, so
        a field cleared by another field's setter and then restored to its old
        value does not count as changed.
        """
        specs = list(specs)
        snapshot = {spec.name: spec.get(self.existing) for spec in specs}
        for spec in specs:
            self.apply(spec)

        for spec in specs:
            before, after = snapshot[spec.name], spec.get(self.existing)
            if before == after:
                self.diffs.pop(spec.name, None)
            else:
                self.diffs[spec.name] = Diff(before, after)
        return self.diffs

    @property
    def changed(self) -> bool:
        return bool(self.diffs)
