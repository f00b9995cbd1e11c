"""Flat key/value records exchanged between every suitey component.

A record is an ordered mapping of string keys to string values. Two
conventions sit on top of the flat map:

* Arrays: an array ``A`` is stored as ``A_0 .. A_{n-1}`` plus ``A_count=n``.
  A missing or non-numeric count means the array is empty. Arrays of
  structured items use nested prefixes (``suites_0_name``, ``suites_0_files_0``).
* Multi-line values: serialized as a heredoc block, ``key<<EOF`` followed by
  the value lines and a closing line equal to ``EOF``.

Every operation returns a new ``Record``; instances are never mutated after
construction, so records can be handed across threads freely.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from errors import RecordValidationError

HEREDOC_SENTINEL = "EOF"
HEREDOC_MARKER = "<<"
COUNT_SUFFIX = "_count"

_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_LINE_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_.\-]*)=(.*)$")
_HEREDOC_START = re.compile(r"^([A-Za-z_][A-Za-z0-9_.\-]*)<<" + HEREDOC_SENTINEL + r"$")


def _is_ignorable(line: str) -> bool:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return True
    return stripped.startswith("[") and stripped.endswith("]")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def _check_multiline(key: str, value: str) -> None:
    if any(line == HEREDOC_SENTINEL for line in value.split("\n")):
        raise RecordValidationError(
            f"Value for '{key}' contains the heredoc sentinel line '{HEREDOC_SENTINEL}'",
            suggestions=["Indent or escape the sentinel line before storing the value"],
            error_code="HEREDOC_SENTINEL",
        )


class Record:
    """Immutable, ordered string-to-string record."""

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping[str, object]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (data or {}).items():
            text = _to_str(value)
            if "\n" in text:
                _check_multiline(str(key), text)
            self._data[str(key)] = text

    # Construction and serialization

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Record":
        return cls(data)

    @classmethod
    def parse(cls, text: str) -> "Record":
        """Parse serialized text, raising ``RecordValidationError`` on malformed input."""
        data: Dict[str, str] = {}
        lines = text.split("\n")
        i = 0
        while i < len(lines):
            line = lines[i].rstrip("\r")
            i += 1
            if _is_ignorable(line):
                continue

            heredoc = _HEREDOC_START.match(line)
            if heredoc:
                body: List[str] = []
                while i < len(lines) and lines[i].rstrip("\r") != HEREDOC_SENTINEL:
                    body.append(lines[i].rstrip("\r"))
                    i += 1
                if i >= len(lines):
                    raise RecordValidationError(
                        f"Unterminated heredoc for '{heredoc.group(1)}'",
                        error_code="UNTERMINATED_HEREDOC",
                    )
                i += 1
                data.pop(heredoc.group(1), None)
                data[heredoc.group(1)] = "\n".join(body)
                continue

            match = _LINE_PATTERN.match(line)
            if not match:
                raise RecordValidationError(f"Malformed record line: {line!r}", error_code="MALFORMED_LINE")
            data.pop(match.group(1), None)
            data[match.group(1)] = _strip_quotes(match.group(2))
        return cls(data)

    def to_text(self) -> str:
        lines = []
        for key, value in self._data.items():
            if "\n" in value:
                lines.append(f"{key}{HEREDOC_MARKER}{HEREDOC_SENTINEL}")
                lines.extend(value.split("\n"))
                lines.append(HEREDOC_SENTINEL)
            elif len(value) >= 2 and value[0] == '"' and value[-1] == '"':
                lines.append(f'{key}="{value}"')
            else:
                lines.append(f"{key}={value}")
        return "\n".join(lines) + ("\n" if lines else "")

    def to_dict(self) -> Dict[str, str]:
        return dict(self._data)

    # Scalar access

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def get_multiline(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._data.get(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes")

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self._data.get(key, ""))
        except ValueError:
            return default

    def has(self, key: str) -> bool:
        return key in self._data

    def set(self, key: str, value: object) -> "Record":
        """Return a copy with ``key`` set, replacing any earlier single-line or heredoc value."""
        if not _KEY_PATTERN.match(key):
            raise RecordValidationError(f"Invalid record key: {key!r}", error_code="INVALID_KEY")
        text = _to_str(value)
        if "\n" in text:
            _check_multiline(key, text)
        data = dict(self._data)
        data[key] = text
        return Record(data)

    def set_multiline(self, key: str, value: str) -> "Record":
        _check_multiline(key, value)
        return self.set(key, value)

    def delete(self, key: str) -> "Record":
        data = dict(self._data)
        data.pop(key, None)
        return Record(data)

    def merge(self, other: "Record") -> "Record":
        """Combine two records; keys in ``other`` win."""
        data = dict(self._data)
        data.update(other._data)
        return Record(data)

    # Arrays

    def array_count(self, name: str) -> int:
        count = self.get_int(f"{name}{COUNT_SUFFIX}", 0)
        return count if count > 0 else 0

    def get_array(self, name: str) -> List[str]:
        return [self._data.get(f"{name}_{i}", "") for i in range(self.array_count(name))]

    def append_to_array(self, name: str, value: object) -> "Record":
        n = self.array_count(name)
        return self.set(f"{name}_{n}", value).set(f"{name}{COUNT_SUFFIX}", n + 1)

    def replace_array(self, name: str, values: Iterable[object]) -> "Record":
        element = re.compile(rf"^{re.escape(name)}_\d+$")
        data = {k: v for k, v in self._data.items() if not element.match(k) and k != f"{name}{COUNT_SUFFIX}"}
        record = Record(data)
        values = list(values)
        for i, value in enumerate(values):
            record = record.set(f"{name}_{i}", value)
        return record.set(f"{name}{COUNT_SUFFIX}", len(values))

    def get_items(self, name: str) -> List["Record"]:
        """Structured array items, each as a sub-record with the item prefix removed."""
        return [self.extract(f"{name}_{i}") for i in range(self.array_count(name))]

    def append_item(self, name: str, item: "Record") -> "Record":
        n = self.array_count(name)
        return self.merge(item.prefixed(f"{name}_{n}")).set(f"{name}{COUNT_SUFFIX}", n + 1)

    # Prefix helpers

    def extract(self, prefix: str) -> "Record":
        lead = f"{prefix}_"
        return Record({k[len(lead):]: v for k, v in self._data.items() if k.startswith(lead)})

    def prefixed(self, prefix: str) -> "Record":
        return Record({f"{prefix}_{k}": v for k, v in self._data.items()})

    # Mapping protocol

    def keys(self) -> List[str]:
        return list(self._data)

    def items(self) -> List[Tuple[str, str]]:
        return list(self._data.items())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._data == other._data

    def __hash__(self):
        return hash(tuple(self._data.items()))

    def __repr__(self) -> str:
        return f"Record({self._data!r})"


def _to_str(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def escape_sentinel(text: str) -> str:
    """Make captured output storable as a heredoc value by indenting sentinel lines."""
    return "\n".join(f" {line}" if line == HEREDOC_SENTINEL else line for line in text.split("\n"))


def validate(text: str) -> bool:
    """Check that every meaningful line of serialized text is ``key=value``."""
    in_heredoc = False
    for raw in text.split("\n"):
        line = raw.rstrip("\r")
        if in_heredoc:
            if line == HEREDOC_SENTINEL:
                in_heredoc = False
            continue
        if _is_ignorable(line):
            continue
        if _HEREDOC_START.match(line):
            in_heredoc = True
            continue
        if not _LINE_PATTERN.match(line):
            return False
    return not in_heredoc
