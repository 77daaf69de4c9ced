"""Label selector parsing, matching and memoization."""

from __future__ import annotations

import json
import re
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Mapping, Sequence, Tuple

from .exceptions import InvalidSelector
from .resources import LabelSelector

IN = "In"
NOT_IN = "NotIn"
EXISTS = "Exists"
DOES_NOT_EXIST = "DoesNotExist"

_OPERATORS = (IN, NOT_IN, EXISTS, DOES_NOT_EXIST)

_NAME_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]$")
_VALUE_RE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")
_DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

_MAX_NAME_LENGTH = 63
_MAX_PREFIX_LENGTH = 253

DEFAULT_CACHE_SIZE = 1024


def _validate_key(key: str) -> None:
    prefix, _, name = key.rpartition("/")
    if "/" in key:
        if not prefix or len(prefix) > _MAX_PREFIX_LENGTH:
            raise InvalidSelector(f"invalid label key {key!r}: bad prefix")
        if not all(_DNS_LABEL_RE.match(part) for part in prefix.split(".")):
            raise InvalidSelector(
                f"invalid label key {key!r}: prefix must be a DNS subdomain"
            )
    if not name or len(name) > _MAX_NAME_LENGTH or not _NAME_RE.match(name):
        raise InvalidSelector(f"invalid label key {key!r}")


def _validate_value(key: str, value: str) -> None:
    if len(value) > _MAX_NAME_LENGTH or not _VALUE_RE.match(value):
        raise InvalidSelector(f"invalid label value {value!r} for key {key!r}")


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: str
    values: frozenset

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator == IN:
            return present and labels[self.key] in self.values
        if self.operator == NOT_IN:
            return not present or labels[self.key] not in self.values
        if self.operator == EXISTS:
            return present
        return not present


class Selector:
    """A parsed selector: a conjunction of requirements.

    Instances are immutable and therefore safe to share between threads.
    """

    def __init__(self, requirements: Sequence[Requirement]) -> None:
        self._requirements: Tuple[Requirement, ...] = tuple(requirements)

    @property
    def requirements(self) -> Tuple[Requirement, ...]:
        return self._requirements

    def empty(self) -> bool:
        return not self._requirements

    def matches(self, labels: Mapping[str, str]) -> bool:
        return all(req.matches(labels) for req in self._requirements)


def parse_selector(selector: LabelSelector) -> Selector:
    """Validate ``selector`` and compile it into a :class:`Selector`.

    Raises :class:`InvalidSelector` if any key, value or operator is not
    acceptable to the cluster API.
    """

    requirements = []
    for key, value in selector.match_labels.items():
        _validate_key(key)
        _validate_value(key, value)
        requirements.append(Requirement(key, IN, frozenset([value])))

    for expr in selector.match_expressions:
        if expr.operator not in _OPERATORS:
            raise InvalidSelector(
                f"{expr.operator!r} is not a valid label selector operator"
            )
        _validate_key(expr.key)
        values = list(expr.values)
        if expr.operator in (IN, NOT_IN) and not values:
            raise InvalidSelector(
                f"values must be non-empty for operator {expr.operator!r} on {expr.key!r}"
            )
        if expr.operator in (EXISTS, DOES_NOT_EXIST) and values:
            raise InvalidSelector(
                f"values must be empty for operator {expr.operator!r} on {expr.key!r}"
            )
        for value in values:
            _validate_value(expr.key, value)
        requirements.append(Requirement(expr.key, expr.operator, frozenset(values)))

    requirements.sort(key=lambda r: (r.key, r.operator, sorted(r.values)))
    return Selector(requirements)


def canonical_form(selector: LabelSelector) -> str:
    """Return a stable string key for ``selector``.

    Label order and expression order do not change the key.
    """

    expressions = sorted(
        [expr.key, expr.operator, sorted(expr.values)]
        for expr in selector.match_expressions
    )
    return json.dumps(
        {"matchLabels": dict(selector.match_labels), "matchExpressions": expressions},
        sort_keys=True,
        separators=(",", ":"),
    )


def format_selector(labels: Mapping[str, str]) -> str:
    """Render equality requirements in ``labelSelector`` query form."""

    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class SelectorCache:
    """Bounded LRU of parsed selectors keyed by their canonical form.

    The cache is shared by concurrent admission requests.  It only memoizes
    parsing, so dropping it never changes results.  Failed parses are not
    stored.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE) -> None:
        if maxsize < 1:
            raise ValueError("selector cache size must be positive")
        self._maxsize = maxsize
        self._entries: "OrderedDict[str, Selector]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, selector: LabelSelector) -> Selector:
        key = canonical_form(selector)
        with self._lock:
            parsed = self._entries.get(key)
            if parsed is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return parsed
            self.misses += 1

        parsed = parse_selector(selector)

        with self._lock:
            self._entries[key] = parsed
            self._entries.move_to_end(key)
            while len(self._entries) > self._maxsize:
                self._entries.popitem(last=False)
        return parsed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
