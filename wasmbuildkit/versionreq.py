"""Version requirements with caret, tilde, comparison and wildcard operators."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

import semver

log = logging.getLogger(__name__)

NAME = "wasmbuildkit"
VERSION = "0.1.0"

_COMPARATOR = re.compile(r"(>=|<=|>|<|=|~|\^)?\s*(\S+)")
_PRERELEASE = re.compile(r"[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*")
_WILDCARDS = {"*", "x", "X"}


class VersionMismatchError(Exception):
    """The running version does not satisfy the project's requirement."""


class _Op(enum.Enum):
    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


def _pre_key(pre: str | None) -> semver.Version:
    return semver.Version(0, 0, 0, prerelease=pre or None)


@dataclass(frozen=True)
class _Comparator:
    op: _Op
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: str | None = None

    def __str__(self) -> str:
        prefix = "" if self.op is _Op.WILDCARD else self.op.value
        text = f"{prefix}{self.major}"
        if self.minor is None:
            return text + (".*" if self.op is _Op.WILDCARD else "")
        text += f".{self.minor}"
        if self.patch is None:
            return text + (".*" if self.op is _Op.WILDCARD else "")
        text += f".{self.patch}"
        return f"{text}-{self.pre}" if self.pre else text

    def _same_pre_ge(self, version: semver.Version) -> bool:
        return _pre_key(version.prerelease) >= _pre_key(self.pre)

    def _exact(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return False
        return (v.prerelease or None) == (self.pre or None)

    def _greater(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.prerelease) > _pre_key(self.pre)

    def _less(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _pre_key(v.prerelease) < _pre_key(self.pre)

    def _tilde(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return self._same_pre_ge(v)

    def _caret(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is None:
            return True
        minor = self.minor
        if self.patch is None:
            return v.minor >= minor if self.major > 0 else v.minor == minor
        patch = self.patch
        if self.major > 0:
            if v.minor != minor:
                return v.minor > minor
            if v.patch != patch:
                return v.patch > patch
        elif minor > 0:
            if v.minor != minor:
                return False
            if v.patch != patch:
                return v.patch > patch
        elif v.minor != minor or v.patch != patch:
            return False
        return self._same_pre_ge(v)

    def matches(self, v: semver.Version) -> bool:
        match self.op:
            case _Op.EXACT | _Op.WILDCARD:
                return self._exact(v)
            case _Op.GREATER:
                return self._greater(v)
            case _Op.GREATER_EQ:
                return self._exact(v) or self._greater(v)
            case _Op.LESS:
                return self._less(v)
            case _Op.LESS_EQ:
                return self._exact(v) or self._less(v)
            case _Op.TILDE:
                return self._tilde(v)
            case _Op.CARET:
                return self._caret(v)
        return False

    def allows_prerelease_of(self, v: semver.Version) -> bool:
        return (
            self.major == v.major
            and self.minor == v.minor
            and self.patch == v.patch
            and bool(self.pre)
        )


def _as_version(version: semver.Version | str) -> semver.Version:
    if isinstance(version, semver.Version):
        return version
    return semver.Version.parse(version.strip())


@dataclass(frozen=True)
class VersionReq:
    """A set of comparators that a version must all satisfy."""

    comparators: tuple[_Comparator, ...] = ()

    def is_star(self) -> bool:
        """True for the requirement that accepts any release."""
        return not self.comparators

    def matches(self, version: semver.Version | str) -> bool:
        """Check a version against every comparator, applying the pre-release rule."""
        v = _as_version(version)
        if not all(c.matches(v) for c in self.comparators):
            return False
        if not v.prerelease:
            return True
        return any(c.allows_prerelease_of(v) for c in self.comparators)

    def __str__(self) -> str:
        if self.is_star():
            return "*"
        return ", ".join(str(c) for c in self.comparators)


def _parse_number(text: str, source: str) -> int:
    if not text.isdigit() or (len(text) > 1 and text.startswith("0")):
        raise ValueError(f"invalid version number {text!r} in requirement {source!r}")
    return int(text)


def _parse_comparator(part: str) -> _Comparator:
    found = _COMPARATOR.fullmatch(part)
    if found is None:
        raise ValueError(f"invalid version requirement: {part!r}")
    symbol, rest = found.groups()
    rest = rest.split("+", 1)[0]
    core, dash, pre = rest.partition("-")
    if dash and not _PRERELEASE.fullmatch(pre):
        raise ValueError(f"invalid pre-release in requirement {part!r}")

    fields = core.split(".")
    if not 1 <= len(fields) <= 3:
        raise ValueError(f"invalid version requirement: {part!r}")

    numbers: list[int | None] = []
    wildcard = False
    for field in fields:
        if field in _WILDCARDS:
            wildcard = True
            numbers.append(None)
        elif wildcard:
            raise ValueError(f"unexpected number after wildcard in {part!r}")
        else:
            numbers.append(_parse_number(field, part))
    if numbers[0] is None:
        raise ValueError(f"unexpected wildcard in {part!r}")
    while len(numbers) < 3:
        numbers.append(None)
    major, minor, patch = numbers

    if wildcard:
        if symbol not in (None, "=", "^"):
            raise ValueError(f"unexpected wildcard after operator in {part!r}")
        if dash:
            raise ValueError(f"unexpected pre-release after wildcard in {part!r}")
        return _Comparator(_Op.WILDCARD, major, minor, patch)

    if dash and patch is None:
        raise ValueError(f"pre-release requires a patch version in {part!r}")
    op = _Op(symbol) if symbol else _Op.CARET
    return _Comparator(op, major, minor, patch, pre if dash else None)


def parse_requirement(text: str) -> VersionReq:
    """Parse a comma separated requirement such as ``>=1.2, <2``."""
    stripped = text.strip()
    if not stripped:
        raise ValueError("empty version requirement")
    if stripped in _WILDCARDS:
        return VersionReq()
    parts = [part.strip() for part in stripped.split(",")]
    if any(not part for part in parts):
        raise ValueError(f"empty comparator in requirement {text!r}")
    return VersionReq(tuple(_parse_comparator(part) for part in parts))


def enforce_version_with(
    required: VersionReq | str, actual: semver.Version | str
) -> None:
    """Raise VersionMismatchError unless ``actual`` satisfies ``required``."""
    if isinstance(required, str):
        required = parse_requirement(required)
    version = _as_version(actual)
    log.debug("Enforce version - actual: %s, required: %s", version, required)

    if required.is_star():
        # Accepts pre-releases too, which a plain match would reject.
        return

    outcome = required.matches(version)
    log.debug(
        "Current version: %s, required version: %s, matches: %s",
        version,
        required,
        outcome,
    )
    if not outcome:
        raise VersionMismatchError(
            f"Project requires a version of '{required}', "
            f"the current version is: '{version}'"
        )