"""
Format descriptions and parsed units — the data handed to us by the parser.

The parser is a black box.  It gives the database layer two things:

  - a FormatDescription: ordered line types, each an ordered list of typed
    captures, some of which "provide" extra derived fields;
  - a stream of ParsedUnit objects: one logical request, made of the parsed
    lines that belong to it.

Both can be built from plain JSON-able dicts so the driver script can read
them from disk.  Names used here become SQL identifiers, so they are
validated up front and a bad one raises SchemaError.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from logdb.errors import SchemaError

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Columns every line table carries before its captures.
RESERVED_LINE_COLUMNS = frozenset({"id", "request_id", "line_number", "file_id"})


def validate_identifier(name: str, what: str) -> str:
    """Return *name* if it is a safe SQL identifier, else raise SchemaError."""
    if not isinstance(name, str) or not IDENTIFIER.match(name):
        raise SchemaError(f"Invalid {what} name: {name!r}")
    return name


# ── Format description ────────────────────────────────────────────────────────


@dataclass
class Capture:
    """One named, typed field extracted from a line."""

    name: str
    type: Any = "string"
    indexed: bool = False
    provides: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Capture":
        """Build a capture from ``{"name": ..., "type": ...}`` or ``{name: type}``."""
        if "name" not in data:
            if len(data) != 1:
                raise SchemaError(f"Cannot interpret capture spec: {dict(data)!r}")
            (name, tag), = data.items()
            return cls(name=name, type=tag)
        provides = data.get("provides") or {}
        if not isinstance(provides, Mapping):
            raise SchemaError(f"'provides' of capture {data['name']!r} must be a mapping")
        return cls(
            name=data["name"],
            type=data.get("type", "string"),
            indexed=bool(data.get("indexed", False)),
            provides=dict(provides),
        )


@dataclass
class LineDefinition:
    """Ordered captures for one line type."""

    name: str
    captures: list[Capture] = field(default_factory=list)

    def validate(self) -> None:
        """Check names are usable as columns and unique within the line."""
        validate_identifier(self.name, "line type")
        seen: set[str] = set()
        for capture in self.captures:
            for col in [capture.name, *capture.provides]:
                validate_identifier(col, f"column in line type {self.name!r}")
                if col in RESERVED_LINE_COLUMNS:
                    raise SchemaError(
                        f"Capture {col!r} in line type {self.name!r} "
                        f"clashes with a reserved column"
                    )
                if col in seen:
                    raise SchemaError(
                        f"Duplicate capture {col!r} in line type {self.name!r}"
                    )
                seen.add(col)


@dataclass
class FormatDescription:
    """Ordered mapping of line-type name -> LineDefinition."""

    line_definitions: dict[str, LineDefinition] = field(default_factory=dict)

    def validate(self) -> None:
        for name, definition in self.line_definitions.items():
            if name != definition.name:
                raise SchemaError(
                    f"Line type key {name!r} does not match definition {definition.name!r}"
                )
            definition.validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormatDescription":
        """Build a format description from JSON-able data.

        Accepts ``{"line_types": {name: [capture, ...]}}`` or the inner
        mapping directly.
        """
        line_types = data.get("line_types", data) if isinstance(data, Mapping) else None
        if not isinstance(line_types, Mapping):
            raise SchemaError("Format description must map line types to captures")
        definitions: dict[str, LineDefinition] = {}
        for name, captures in line_types.items():
            if isinstance(captures, Mapping):
                captures = captures.get("captures", [])
            if not isinstance(captures, list):
                raise SchemaError(f"Captures of line type {name!r} must be a list")
            definitions[name] = LineDefinition(
                name=name,
                captures=[Capture.from_dict(c) for c in captures],
            )
        fmt = cls(line_definitions=definitions)
        fmt.validate()
        return fmt

    @classmethod
    def load_json(cls, path) -> "FormatDescription":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


# ── Parsed units ──────────────────────────────────────────────────────────────


@dataclass
class ParsedLine:
    """One parsed line: its type, source file and captured values."""

    line_type: str
    filename: str
    fields: dict[str, Any] = field(default_factory=dict)
    line_number: int | None = None
    content_hash: str | None = None

    def digest_source(self) -> str:
        if self.content_hash:
            return self.content_hash
        return f"{self.line_type}:{json.dumps(self.fields, sort_keys=True, default=str)}"


@dataclass
class ParsedUnit:
    """One logical request: the lines that belong together."""

    first_line_number: int
    last_line_number: int
    lines: list[ParsedLine] = field(default_factory=list)
    content_hash: str | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        if self.filename is None and self.lines:
            self.filename = self.lines[0].filename
        if self.content_hash is None:
            digest = hashlib.sha1()
            for line in self.lines:
                digest.update(line.digest_source().encode("utf-8"))
                digest.update(b"\n")
            self.content_hash = digest.hexdigest()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParsedUnit":
        """Build a unit from the JSON-lines stream format.

        Each line is ``{"line_type": ..., "filename": ..., "lineno": ...,
        "hash": ..., <field>: <value>, ...}``; anything that is not one of
        the bookkeeping keys is treated as a captured field.

        Raises:
            ValueError: The unit or one of its lines is not shaped like that.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Unit must be an object, got {type(data).__name__}")
        default_file = data.get("filename")
        raw_lines = data.get("lines", [])
        if not isinstance(raw_lines, list):
            raise ValueError("'lines' of a unit must be a list")
        lines = []
        for index, raw in enumerate(raw_lines):
            if not isinstance(raw, Mapping):
                raise ValueError(f"Line {index} of unit is not an object: {raw!r}")
            raw = dict(raw)
            if "line_type" not in raw:
                raise ValueError(f"Line {index} of unit has no line_type: {raw!r}")
            line_type = raw.pop("line_type")
            filename = raw.pop("filename", default_file)
            line_number = raw.pop("line_number", raw.pop("lineno", None))
            content_hash = raw.pop("content_hash", raw.pop("hash", None))
            fields = raw.pop("fields", None)
            if fields is None:
                fields = raw
            elif not isinstance(fields, Mapping):
                raise ValueError(f"'fields' of line {index} must be an object")
            lines.append(ParsedLine(
                line_type=line_type,
                filename=filename,
                fields=dict(fields),
                line_number=line_number,
                content_hash=content_hash,
            ))
        first = data.get("first_line_number", data.get("first_lineno"))
        last = data.get("last_line_number", data.get("last_lineno"))
        if first is None:
            first = lines[0].line_number if lines else 0
        if last is None:
            last = lines[-1].line_number if lines else first
        return cls(
            first_line_number=first,
            last_line_number=last,
            lines=lines,
            content_hash=data.get("content_hash"),
            filename=default_file,
        )
