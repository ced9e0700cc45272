# variables.py
# Placeholder parsing and per-execution shared state.
#
# A string param such as "Hi {contact.name}, {summary}" is parsed into
# Literal / VariableRef segments before anything is substituted, so an
# unresolved reference is a typed outcome rather than a regex miss.

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Union

import structlog

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Template segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class VariableRef:
    key: str
    field: str | None = None

    @property
    def placeholder(self) -> str:
        if self.field is None:
            return "{" + self.key + "}"
        return "{" + self.key + "." + self.field + "}"


Segment = Union[Literal, VariableRef]


def _is_identifier(name: str) -> bool:
    if not name:
        return False
    if not (name[0].isalpha() or name[0] == "_"):
        return False
    return all(ch.isalnum() or ch in "_-" for ch in name)


def _parse_reference(body: str) -> VariableRef | None:
    key, dot, field_name = body.partition(".")
    if not _is_identifier(key):
        return None
    if not dot:
        return VariableRef(key=key)
    if not _is_identifier(field_name):
        return None
    return VariableRef(key=key, field=field_name)


def parse_template(text: str) -> list[Segment]:
    """
    Split a string into literal text and variable references.

    Only `{key}` and `{key.field}` with identifier-like names become
    references; any other brace usage (JSON snippets, "{}") stays literal.
    Adjacent literal text is merged.
    """
    segments: list[Segment] = []
    buffer: list[str] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch == "{":
            close = text.find("}", i + 1)
            if close != -1:
                ref = _parse_reference(text[i + 1:close])
                if ref is not None:
                    if buffer:
                        segments.append(Literal("".join(buffer)))
                        buffer = []
                    segments.append(ref)
                    i = close + 1
                    continue
        buffer.append(ch)
        i += 1

    if buffer:
        segments.append(Literal("".join(buffer)))
    return segments


# ---------------------------------------------------------------------------
# Shared state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepOutput:
    """What a completed step publishes under its outputKey."""

    formatted: str
    fields: dict[str, Any] = field(default_factory=dict)

    def lookup(self, name: str) -> Any:
        return self.fields.get(name)


class SharedState:
    """
    Keyed store of step outputs for exactly one plan execution.

    Append-only per key: a second publish under the same key adds a new
    version rather than replacing the first. Reads see the latest version.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._versions: dict[str, list[StepOutput]] = {}

    def publish(self, key: str, output: StepOutput) -> None:
        with self._lock:
            history = self._versions.setdefault(key, [])
            if history:
                logger.warning("shared_state.key_republished", key=key, versions=len(history) + 1)
            history.append(output)

    def get(self, key: str) -> StepOutput | None:
        with self._lock:
            history = self._versions.get(key)
            return history[-1] if history else None

    def history(self, key: str) -> list[StepOutput]:
        with self._lock:
            return list(self._versions.get(key, []))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._versions)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._versions

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass
class Resolution:
    params: dict[str, Any]
    unresolved: list[str] = field(default_factory=list)


def _render(segment: Segment, state: SharedState, unresolved: list[str]) -> str:
    if isinstance(segment, Literal):
        return segment.text

    output = state.get(segment.key)
    if output is None:
        if segment.placeholder not in unresolved:
            unresolved.append(segment.placeholder)
        return segment.placeholder

    if segment.field is not None:
        value = output.lookup(segment.field)
        if value is not None:
            return str(value)
    return output.formatted


def resolve_string(text: str, state: SharedState, unresolved: list[str] | None = None) -> str:
    sink = unresolved if unresolved is not None else []
    return "".join(_render(seg, state, sink) for seg in parse_template(text))


def _resolve_value(value: Any, state: SharedState, unresolved: list[str]) -> Any:
    if isinstance(value, str):
        return resolve_string(value, state, unresolved)
    if isinstance(value, dict):
        return {k: _resolve_value(v, state, unresolved) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_value(v, state, unresolved) for v in value]
    if isinstance(value, tuple):
        return tuple(_resolve_value(v, state, unresolved) for v in value)
    return copy.deepcopy(value)


def resolve_params(params: dict[str, Any], state: SharedState) -> Resolution:
    """
    Return a deep copy of `params` with every placeholder substituted.

    Missing keys leave the placeholder text in place and are listed in
    `Resolution.unresolved`. The input mapping is never modified.
    """
    unresolved: list[str] = []
    resolved = _resolve_value(params, state, unresolved)
    if unresolved:
        logger.warning("variables.unresolved", placeholders=unresolved)
    return Resolution(params=resolved, unresolved=unresolved)
