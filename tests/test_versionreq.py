import pytest
import semver

from wasmbuildkit.versionreq import (
    VersionMismatchError,
    VersionReq,
    enforce_version_with,
    parse_requirement,
)

CASES = [
    ("*", "0.19.0", True),
    ("*", "0.19.0-alpha.1", True),
    ("0.19", "0.19.0", True),
    ("0.19.0", "0.19.0", True),
    ("0.19.0", "0.19.1", True),
    ("0.20.0", "0.19.0", False),
    ("0.19.0-alpha.2", "0.19.0-alpha.1", False),
    ("0.19.0-alpha.2", "0.19.0-alpha.2", True),
    ("0.19.0-alpha.2", "0.19.0-alpha.3", True),
    ("0.19.0-alpha.2", "0.19.0", True),
    ("0.19.0-alpha.2", "0.19.1", True),
    ("0.19.0-alpha.2", "0.20.0", False),
    ("0.19.1", "0.19.0", False),
    ("0.19.1", "0.19.0-alpha.1", False),
    ("0.19.1", "0.19.1-alpha.1", False),
    ("0.20.0", "0.19.0-alpha.1", False),
    ("0.20.0", "0.19.0", False),
    ("0.20.0", "0.19.1-alpha.1", False),
    ("0.20.0", "0.19.1", False),
    (">=0.19.0", "0.19.0", True),
    (">=0.19.0", "0.19.1", True),
    (">=0.19.0", "0.20.0", True),
    (">=0.19.0-alpha.2", "0.19.0-alpha.1", False),
    (">=0.19.0-alpha.2", "0.19.0-alpha.2", True),
    (">=0.19.0-alpha.2", "0.19.0-rc.1", True),
    (">=0.19.0-alpha.2", "0.19.0", True),
    (">=0.19.0-alpha.2", "0.20.0-alpha.1", False),
    (">=0.19.0-alpha.2", "0.20.0", True),
]


@pytest.mark.parametrize("required, actual, expected", CASES)
def test_requires(required, actual, expected):
    requirement = parse_requirement(required)
    version = semver.Version.parse(actual)
    if expected:
        assert enforce_version_with(requirement, version) is None
    else:
        with pytest.raises(VersionMismatchError):
            enforce_version_with(requirement, version)


def test_enforce_accepts_strings():
    with pytest.raises(VersionMismatchError) as info:
        enforce_version_with("0.20.0", "0.19.0")
    assert "0.19.0" in str(info.value)


def test_star_is_star():
    assert parse_requirement("*").is_star()
    assert not parse_requirement("0.19").is_star()
    assert parse_requirement("*") == VersionReq()


def test_plain_star_rejects_prerelease_when_matched_directly():
    assert parse_requirement("*").matches("0.19.0") is True
    assert parse_requirement("*").matches("0.19.0-alpha.1") is False


def test_multiple_comparators():
    requirement = parse_requirement(">=0.19.0, <0.21")
    assert requirement.matches("0.20.5")
    assert not requirement.matches("0.21.0")
    assert not requirement.matches("0.18.9")


def test_wildcard_and_tilde():
    assert parse_requirement("0.19.*").matches("0.19.7")
    assert not parse_requirement("0.19.*").matches("0.20.0")
    assert parse_requirement("~1.2.3").matches("1.2.9")
    assert not parse_requirement("~1.2.3").matches("1.3.0")


def test_caret_above_one():
    assert parse_requirement("1.2").matches("1.9.0")
    assert not parse_requirement("1.2").matches("2.0.0")


def test_display_round_trip():
    requirement = parse_requirement(">=0.19.0-alpha.2, <1")
    assert parse_requirement(str(requirement)) == requirement


@pytest.mark.parametrize(
    "text", ["", "abc", "1.2.3.4", ">=1.*", "01.2.3", "1.2-alpha", "*.1", "1.2.3,"]
)
def test_invalid_requirements(text):
    with pytest.raises(ValueError):
        parse_requirement(text)