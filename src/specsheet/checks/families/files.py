"""Local filesystem checks: ``fs`` and ``hash``.

Metadata lookups and file reads are blocking calls, so each probe runs its
filesystem work in a worker thread.
"""

from __future__ import annotations

import asyncio
import grp
import hashlib
import os
import pwd
import stat
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Final

from specsheet.checks.base import Check, DataPoint, Step, register_check
from specsheet.checks.contents import ContentsMatcher, MatcherKind, as_contents
from specsheet.checks.params import (
    Parameter,
    ParameterErrors,
    ParameterSchema,
    RawTable,
    as_boolean,
    as_string,
    as_string_or_integer,
    full_match,
    non_empty,
    one_of,
)

if TYPE_CHECKING:
    from specsheet.checks.execution import CheckContext

_PERMISSIONS = (full_match(r"\+x|[0-7]{3,4}", "it must be a permissions string"),)
_KIND_CHOICES: Final = ("file", "directory", "symlink")
_ALGORITHMS: Final[dict[str, str]] = {
    "md5": "MD5",
    "sha1": "SHA1",
    "sha224": "SHA224",
    "sha256": "SHA256",
    "sha384": "SHA384",
    "sha512": "SHA512",
}


def _algorithm(value: object) -> str | None:
    if isinstance(value, str) and value.lower() in _ALGORITHMS:
        return None
    return "it must be an algorithm such as 'MD5', 'SHA256'..."


@register_check()
class FilesystemCheck(Check):
    """Existence, kind, ownership, permissions and contents of one path."""

    check_type = "fs"
    schema = ParameterSchema(
        (
            Parameter("path", as_string, required=True, predicates=(non_empty(),)),
            Parameter("kind", as_string, predicates=(one_of(*_KIND_CHOICES),)),
            Parameter("state", as_string, predicates=(one_of("present", "missing"),)),
            Parameter("permissions", as_string, predicates=_PERMISSIONS),
            Parameter("mode", as_string, predicates=_PERMISSIONS),
            Parameter("owner", as_string_or_integer, predicates=(non_empty(),)),
            Parameter("group", as_string_or_integer, predicates=(non_empty(),)),
            Parameter("link_target", as_string, predicates=(non_empty(),)),
            Parameter("contents", as_contents),
            Parameter("follow", as_boolean),
        )
    )

    @classmethod
    def cross_check(
        cls, values: Mapping[str, object], table: RawTable, errors: ParameterErrors
    ) -> None:
        if "permissions" in table and "mode" in table:
            errors.alias_clash("permissions", "mode")

        if values.get("state") == "missing":
            for key in ("kind", "link_target", "contents"):
                if key in table:
                    errors.conflict(key, "state", "missing")
            return

        kind = values.get("kind")
        if kind == "file":
            if "link_target" in table:
                errors.conflict("link_target", "kind", kind)
        elif kind == "directory":
            for key in ("contents", "link_target"):
                if key in table:
                    errors.conflict(key, "kind", kind)
        elif kind == "symlink":
            if "contents" in table:
                errors.conflict("contents", "kind", kind)
        elif "link_target" in table and "contents" in table:
            errors.conflict("contents", "link_target")

    @property
    def path(self) -> str:
        return str(self.spec.params["path"])

    @property
    def expected_kind(self) -> str | None:
        kind = self.spec.get("kind")
        if kind is not None:
            return str(kind)
        if "link_target" in self.spec.params:
            return "symlink"
        if "contents" in self.spec.params:
            return "file"
        return None

    @property
    def mode(self) -> str | None:
        value = self.spec.get("permissions", self.spec.get("mode"))
        return str(value) if value is not None else None

    def describe(self) -> str:
        text = f"File '{self.path}'"
        if self.spec.get("state") == "missing":
            return text + " does not exist"

        kind = self.expected_kind
        contents = self.spec.get("contents")
        owner = self.spec.get("owner")
        group = self.spec.get("group")
        mode = self.mode

        if kind == "file":
            if "kind" in self.spec.params:
                text += " is a regular file"
                if contents is not None:
                    text += " that"
            if isinstance(contents, ContentsMatcher):
                text += " " + _describe_file_contents(contents)
        elif kind == "directory":
            text += " is a directory"
        elif kind == "symlink":
            target = self.spec.get("link_target")
            text += " is a symbolic link" + (f" to '{target}'" if target else "")

        if owner is not None:
            text += " and" if kind is not None else " has"
            text += f" owner ID '{owner}'" if isinstance(owner, int) else f" owner '{owner}'"
        if group is not None:
            text += " and" if owner is not None else " has"
            text += f" group ID '{group}'" if isinstance(group, int) else f" group '{group}'"
        if mode is not None:
            if kind is not None or owner is not None or group is not None:
                text += " and"
            text += " is executable" if mode == "+x" else f" has permissions '{mode}'"

        if kind is None and owner is None and group is None and mode is None:
            text += " exists"
        if self.spec.get("follow"):
            text += " (following symlinks)"
        return text

    def properties(self) -> tuple[DataPoint, ...]:
        points = [DataPoint("path", self.path)]
        if self.spec.get("state") != "missing":
            owner = self.spec.get("owner")
            group = self.spec.get("group")
            if isinstance(owner, str):
                points.append(DataPoint("user", owner))
            if isinstance(group, str):
                points.append(DataPoint("group", group))
        return tuple(points)

    async def run(self, context: CheckContext) -> list[Step]:
        path = context.resolve_path(self.path)
        return await asyncio.to_thread(self._inspect, path, context.working_directory)

    def _inspect(self, path: Path, base: Path | None) -> list[Step]:
        follow = bool(self.spec.get("follow"))
        exists = path.exists() if follow else os.path.lexists(path)

        if self.spec.get("state") == "missing":
            return [Step.passed("it is missing") if not exists else Step.failed("a file exists")]
        if not exists:
            return [Step.failed("it is missing")]

        steps = [Step.passed("it exists")]
        try:
            info = path.stat() if follow else path.lstat()
        except OSError as exc:
            return [*steps, Step.errored(f"error reading metadata: {exc.strerror or exc}")]

        kind = self.expected_kind
        if kind is not None:
            steps.extend(self._check_kind(path, info, kind, base))
        if self.mode is not None:
            steps.append(_check_mode(info.st_mode, self.mode))

        owner = self.spec.get("owner")
        if owner is not None:
            steps.extend(_check_owner(info.st_uid, owner))
        group = self.spec.get("group")
        if group is not None:
            steps.extend(_check_group(info.st_gid, group))
        return steps

    def _check_kind(
        self, path: Path, info: os.stat_result, kind: str, base: Path | None
    ) -> list[Step]:
        actual = _actual_kind(info.st_mode)
        if kind == "file":
            if actual != "regular file":
                return [Step.failed(f"it is a {actual}")]
            steps = [Step.passed("it is a regular file")]
            contents = self.spec.get("contents")
            if isinstance(contents, ContentsMatcher):
                try:
                    data = path.read_bytes()
                except OSError as exc:
                    reason = exc.strerror or exc
                    steps.append(Step.failed(f"IO error reading file {path}: {reason}"))
                else:
                    steps.append(contents.check(data, "its contents", base=base))
            return steps

        if kind == "directory":
            if actual != "directory":
                return [Step.failed(f"it is a {actual}")]
            return [Step.passed("it is a directory")]

        if actual != "link":
            return [Step.failed(f"it is a {actual}")]
        steps = [Step.passed("it is a link")]
        expected_target = self.spec.get("link_target")
        if expected_target is not None:
            try:
                target = os.readlink(path)
            except OSError as exc:
                steps.append(Step.failed(f"error reading link: {exc.strerror or exc}"))
            else:
                if target == expected_target:
                    steps.append(Step.passed("it links to the right place"))
                else:
                    steps.append(Step.failed(f"it actually links to {target}"))
        return steps


@register_check()
class HashCheck(Check):
    """Digest of a file's contents, computed in-process."""

    check_type = "hash"
    schema = ParameterSchema(
        (
            Parameter("path", as_string, required=True, predicates=(non_empty(),)),
            Parameter("algorithm", as_string, required=True, predicates=(_algorithm,)),
            Parameter("hash", as_string, required=True, predicates=(non_empty(),)),
        )
    )

    @property
    def algorithm(self) -> str:
        return str(self.spec.params["algorithm"]).lower()

    def describe(self) -> str:
        return (
            f"File '{self.spec.params['path']}' has {_ALGORITHMS[self.algorithm]} "
            f"hash '{self.spec.params['hash']}'"
        )

    def properties(self) -> tuple[DataPoint, ...]:
        return (DataPoint("path", str(self.spec.params["path"])),)

    async def run(self, context: CheckContext) -> list[Step]:
        path = context.resolve_path(str(self.spec.params["path"]))
        try:
            digest = await asyncio.to_thread(_file_digest, path, self.algorithm)
        except FileNotFoundError:
            return [Step.failed("it is missing")]
        except OSError as exc:
            return [Step.failed(f"IO error reading file {path}: {exc.strerror or exc}")]

        expected = str(self.spec.params["hash"]).strip().lower()
        if digest == expected:
            return [Step.passed("hashes match")]
        return [Step.failed(f"hash mismatch (got '{digest}')")]


def _file_digest(path: Path, algorithm: str) -> str:
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, algorithm).hexdigest()


def _describe_file_contents(matcher: ContentsMatcher) -> str:
    if matcher.kind is MatcherKind.REGEX:
        verb = "matches" if matcher.matches else "does not match"
        return f"{verb} regex '/{matcher.value}/'"
    if matcher.kind is MatcherKind.STRING:
        verb = "contains" if matcher.matches else "does not contain"
        return f"{verb} string '{matcher.value}'"
    if matcher.kind is MatcherKind.FILE:
        return f"has the contents of file '{matcher.value}'"
    if matcher.kind is MatcherKind.EMPTY:
        return "is empty"
    return "is not empty"


def _actual_kind(mode: int) -> str:
    if stat.S_ISDIR(mode):
        return "directory"
    if stat.S_ISLNK(mode):
        return "link"
    if stat.S_ISREG(mode):
        return "regular file"
    return "other"


def _check_mode(mode: int, expected: str) -> Step:
    permissions = stat.S_IMODE(mode)
    if expected == "+x":
        ok = bool(permissions & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
    else:
        ok = permissions == int(expected, 8)
    if ok:
        return Step.passed("it has the right permissions")
    return Step.failed(f"it has the wrong permissions ({permissions:04o})")


def _check_owner(uid: int, expected: str | int) -> list[Step]:
    actual = _user_name(uid)
    if isinstance(expected, int):
        if uid == expected:
            return [Step.passed("it has the right owner")]
        return [_owner_mismatch(uid, actual)]
    if actual == expected:
        return [Step.passed("it has the right owner")]
    steps = [_owner_mismatch(uid, actual)]
    try:
        pwd.getpwnam(expected)
    except KeyError:
        steps.append(Step.failed(f"user '{expected}' does not exist"))
    return steps


def _check_group(gid: int, expected: str | int) -> list[Step]:
    actual = _group_name(gid)
    if isinstance(expected, int):
        if gid == expected:
            return [Step.passed("it has the right group")]
        return [_group_mismatch(gid, actual)]
    if actual == expected:
        return [Step.passed("it has the right group")]
    steps = [_group_mismatch(gid, actual)]
    try:
        grp.getgrnam(expected)
    except KeyError:
        steps.append(Step.failed(f"group '{expected}' does not exist"))
    return steps


def _owner_mismatch(uid: int, name: str | None) -> Step:
    if name is None:
        return Step.failed(f"it is actually owned by an unknown user ({uid})")
    return Step.failed(f"it is actually owned by '{name}' ({uid})")


def _group_mismatch(gid: int, name: str | None) -> Step:
    if name is None:
        return Step.failed(f"it actually has an unknown group ({gid})")
    return Step.failed(f"it actually has group '{name}' ({gid})")


def _user_name(uid: int) -> str | None:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return None


def _group_name(gid: int) -> str | None:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


__all__ = ["FilesystemCheck", "HashCheck"]
