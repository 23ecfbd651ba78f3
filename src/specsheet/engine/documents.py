"""Loading check documents and turning their entries into validated specs.

A document is TOML whose top-level keys are check types, each holding an
array of tables::

    [[cmd]]
    name = "greeting"
    tags = ["smoke"]
    shell = "echo hi"
    stdout = { regex = "hi" }

Loading happens in two stages. ``read_document`` parses the source and fails
the whole document with ``LoadError`` on I/O or syntax problems.
``DocumentLoader.build`` then selects entries with the filter, validates the
survivors against their family's schema and applies the rewrite rules,
collecting one ``ReadError`` per entry that does not validate.
"""

from __future__ import annotations

import sys
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

import structlog

from specsheet.checks.base import DEFAULT_CHECK_REGISTRY, CheckRegistry, CheckSpec
from specsheet.checks.params import ParameterError, display_value
from specsheet.constants import NAME_KEY, STDIN_INPUT, TAGS_KEY
from specsheet.engine.filter import CheckFilter
from specsheet.engine.rewrite import Rewrites
from specsheet.errors import LoadError


@dataclass(frozen=True, slots=True)
class RawEntry:
    """One table from a document, with its metadata split off."""

    check_type: str
    table: Mapping[str, object]
    index: int
    tags: frozenset[str] = frozenset()
    name: str | None = None
    metadata_error: str | None = None


@dataclass(frozen=True, slots=True)
class ReadError:
    """An entry that could not become a check."""

    check_type: str
    message: str
    index: int = 0

    def __str__(self) -> str:
        return f"[{self.check_type}] {self.message}"

    def to_dict(self) -> dict[str, object]:
        return {"type": self.check_type, "message": self.message}


@dataclass(frozen=True, slots=True)
class Document:
    source: str
    entries: tuple[RawEntry, ...]
    directory: Path | None = None


@dataclass(frozen=True, slots=True)
class LoadedDocument:
    """A document's runnable specs and the errors found reading it."""

    source: str
    specs: tuple[CheckSpec, ...] = ()
    read_errors: tuple[ReadError, ...] = ()
    directory: Path | None = None
    load_error: LoadError | None = None

    @property
    def has_errors(self) -> bool:
        return self.load_error is not None or bool(self.read_errors)


def read_document(source: str, *, stdin: IO[str] | None = None) -> Document:
    """Read and parse one input, ``-`` meaning standard input."""

    if source == STDIN_INPUT:
        stream = stdin if stdin is not None else sys.stdin
        try:
            text = stream.read()
        except OSError as exc:
            raise LoadError(source, str(exc)) from exc
        return parse_document(source, text, directory=Path.cwd())

    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        reason = exc.strerror if isinstance(exc, OSError) and exc.strerror else str(exc)
        raise LoadError(source, reason) from exc
    return parse_document(source, text, directory=path.resolve().parent)


def parse_document(source: str, text: str, *, directory: Path | None = None) -> Document:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise LoadError(source, str(exc)) from exc

    entries: list[RawEntry] = []
    for check_type, tables in data.items():
        if not isinstance(tables, list) or not all(isinstance(t, dict) for t in tables):
            raise LoadError(source, f"{check_type!r} must be an array of tables")
        for table in tables:
            entries.append(_split_metadata(check_type, table, len(entries)))
    return Document(source=source, entries=tuple(entries), directory=directory)


def _split_metadata(check_type: str, table: dict[str, Any], index: int) -> RawEntry:
    params = {key: value for key, value in table.items() if key not in (NAME_KEY, TAGS_KEY)}
    problems: list[str] = []

    name = table.get(NAME_KEY)
    if name is not None and not isinstance(name, str):
        problems.append(
            ParameterError.invalid(NAME_KEY, name, "it must be a string").message
        )
        name = None

    raw_tags = table.get(TAGS_KEY, [])
    tags: frozenset[str] = frozenset()
    if isinstance(raw_tags, str):
        tags = frozenset({raw_tags})
    elif isinstance(raw_tags, list) and all(isinstance(tag, str) for tag in raw_tags):
        tags = frozenset(raw_tags)
    else:
        problems.append(
            f"Parameter '{TAGS_KEY}' value '{display_value(raw_tags)}' is invalid "
            "(it must be a string or an array of strings)"
        )

    return RawEntry(
        check_type=check_type,
        table=params,
        index=index,
        tags=tags,
        name=name,
        metadata_error="; ".join(problems) or None,
    )


@dataclass(slots=True)
class DocumentLoader:
    """Turns parsed documents into runnable specs under one filter and rewrite set."""

    registry: CheckRegistry = field(default_factory=lambda: DEFAULT_CHECK_REGISTRY)
    check_filter: CheckFilter = field(default_factory=CheckFilter)
    rewrites: Rewrites = field(default_factory=Rewrites)
    logger: Any | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = structlog.get_logger(__name__)

    def load(self, source: str, *, stdin: IO[str] | None = None) -> LoadedDocument:
        """Read and build one input, capturing a load error instead of raising it."""

        try:
            document = read_document(source, stdin=stdin)
        except LoadError as exc:
            self.logger.debug("document_load_failed", source=source, error=exc.message)
            return LoadedDocument(source=source, load_error=exc)
        return self.build(document)

    def build(self, document: Document) -> LoadedDocument:
        specs: list[CheckSpec] = []
        errors: list[ReadError] = []

        for entry in document.entries:
            if not self.check_filter.accepts(entry.check_type, entry.tags):
                continue
            if entry.metadata_error is not None:
                errors.append(ReadError(entry.check_type, entry.metadata_error, entry.index))
                continue
            if not self.registry.contains(entry.check_type):
                errors.append(
                    ReadError(
                        entry.check_type,
                        f'Unknown check type "{entry.check_type}"',
                        entry.index,
                    )
                )
                continue

            outcome = self.registry.get(entry.check_type).read(entry.table)
            if not outcome.ok:
                errors.extend(
                    ReadError(entry.check_type, error.message, entry.index)
                    for error in outcome.errors
                )
                continue

            spec = CheckSpec(
                check_type=entry.check_type,
                params=outcome.values,
                tags=entry.tags,
                name=entry.name,
                source=document.source,
                index=entry.index,
            )
            specs.append(self.rewrites.apply(spec))

        self.logger.debug(
            "document_loaded",
            source=document.source,
            checks=len(specs),
            read_errors=len(errors),
        )
        return LoadedDocument(
            source=document.source,
            specs=tuple(specs),
            read_errors=tuple(errors),
            directory=document.directory,
        )


__all__ = [
    "Document",
    "DocumentLoader",
    "LoadedDocument",
    "RawEntry",
    "ReadError",
    "parse_document",
    "read_document",
]
