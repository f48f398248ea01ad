import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import semver

from wasmbuildkit.update_check import (
    Versions,
    announce_version,
    most_recent,
    need_check,
    newest_versions,
    perform_update_check,
    record_checked,
    state_file,
    update_check,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def v(text):
    return semver.Version.parse(text)


def test_versions_dict_round_trip():
    versions = Versions(release=v("1.2.3"), prerelease=v("1.3.0-rc.1"))
    assert Versions.from_dict(versions.to_dict()) == versions


def test_versions_to_dict_omits_missing():
    assert Versions().to_dict() == {}
    assert Versions(release=v("1.2.3")).to_dict() == {"release": "1.2.3"}


def test_state_file_name():
    assert state_file().name == "update.json"


def test_newest_versions_skips_invalid():
    result = newest_versions(["1.0.0", "1.1.0-rc.1", "0.9.0", "junk"])
    assert result.release == v("1.0.0")
    assert result.prerelease == v("1.1.0-rc.1")


def test_newest_versions_empty():
    assert newest_versions([]) == Versions()


def test_need_check_missing_file(tmp_path):
    assert need_check(tmp_path / "update.json", NOW) is None


def test_record_then_need_check(tmp_path):
    path = tmp_path / "nested" / "update.json"
    versions = Versions(release=v("2.0.0"))
    record_checked(versions, path, NOW)
    assert need_check(path, NOW + timedelta(hours=3)) == versions


def test_need_check_after_period(tmp_path):
    path = tmp_path / "update.json"
    record_checked(Versions(release=v("2.0.0")), path, NOW)
    assert need_check(path, NOW + timedelta(days=2)) is None


def test_need_check_accepts_z_suffix(tmp_path):
    path = tmp_path / "update.json"
    path.write_text(
        json.dumps({"last_check": "2024-03-01T12:00:00Z", "versions": {}})
    )
    assert need_check(path, NOW) == Versions()


def test_need_check_corrupt_file(tmp_path):
    path = tmp_path / "update.json"
    path.write_text("not json")
    assert need_check(path, NOW) is None


def test_need_check_unreadable_path(tmp_path):
    assert need_check(tmp_path, NOW) == Versions()


def test_announce_newer_release():
    versions = Versions(release=v("0.2.0"), prerelease=v("0.3.0-alpha.1"))
    assert announce_version(versions, "0.1.0") == v("0.2.0")


def test_announce_prerelease_track():
    versions = Versions(release=v("0.2.0"), prerelease=v("0.3.0-alpha.1"))
    assert announce_version(versions, "0.2.0-alpha.1") == v("0.3.0-alpha.1")


def test_announce_nothing_newer():
    versions = Versions(release=v("0.1.0"))
    assert announce_version(versions, "0.1.0") is None
    assert announce_version(Versions(), "0.1.0") is None
    assert announce_version(versions, "not-a-version") is None


def test_most_recent_ignores_yanked():
    def handler(request):
        releases = {
            "1.0.0": [{"yanked": False}],
            "1.1.0": [{"yanked": True}],
            "1.2.0-rc.1": [{"yanked": False}],
        }
        return httpx.Response(200, json={"releases": releases})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = most_recent(client)
    assert result == Versions(release=v("1.0.0"), prerelease=v("1.2.0-rc.1"))


def test_most_recent_http_error():
    def handler(request):
        return httpx.Response(404)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            most_recent(client)


def test_perform_uses_recorded_state(tmp_path):
    path = tmp_path / "update.json"
    record_checked(Versions(release=v("999.0.0")), path)
    assert perform_update_check(path) == v("999.0.0")


def test_update_check_skipped():
    assert update_check(True) is None