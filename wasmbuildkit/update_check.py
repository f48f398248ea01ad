"""Background check for newer published releases, at most once a day."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

import httpx
import platformdirs
import semver

from wasmbuildkit.versionreq import NAME, VERSION

log = logging.getLogger(__name__)

CHECK_PERIOD = timedelta(days=1)
INDEX_URL = f"https://pypi.org/pypi/{NAME}/json"


@dataclass(frozen=True)
class Versions:
    """Most recent release and most recent version including pre-releases."""

    release: semver.Version | None = None
    prerelease: semver.Version | None = None

    def to_dict(self) -> dict[str, str]:
        data = {}
        if self.release is not None:
            data["release"] = str(self.release)
        if self.prerelease is not None:
            data["prerelease"] = str(self.prerelease)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Versions:
        def parse(key: str) -> semver.Version | None:
            value = data.get(key)
            return None if value is None else semver.Version.parse(value)

        return cls(release=parse("release"), prerelease=parse("prerelease"))


def state_file() -> Path:
    """Location of the file recording the last update check."""
    return platformdirs.user_state_path(NAME) / "update.json"


def _parse_timestamp(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    stamp = datetime.fromisoformat(text)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def need_check(
    path: Path | None = None, now: datetime | None = None
) -> Versions | None:
    """Return the recorded versions, or None when a fresh check is due."""
    path = state_file() if path is None else path
    now = datetime.now(timezone.utc) if now is None else now
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as err:
        log.debug("Failed to check update state file (%s), skipping: %s", path, err)
        return Versions()

    try:
        state = json.loads(raw)
        last_check = _parse_timestamp(state["last_check"])
        versions = Versions.from_dict(state["versions"])
    except (ValueError, KeyError, TypeError, AttributeError):
        # Unreadable state: check again and rewrite it.
        return None

    diff = now - last_check
    log.debug("Time since last check: %s", diff)
    return None if diff > CHECK_PERIOD else versions


def record_checked(
    versions: Versions, path: Path | None = None, now: datetime | None = None
) -> None:
    """Record that a check was performed; errors are logged and ignored."""
    path = state_file() if path is None else path
    now = datetime.now(timezone.utc) if now is None else now
    payload = json.dumps(
        {"last_check": now.isoformat(), "versions": versions.to_dict()}
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        log.debug(
            "Failed to create parent directory for update state (%s): %s",
            path.parent,
            err,
        )
        return
    try:
        path.write_text(payload, encoding="utf-8")
    except OSError as err:
        log.debug("Failed to write update state file (%s): %s", path, err)


def newest_versions(numbers: Iterable[str]) -> Versions:
    """Pick the newest release and newest overall version, skipping invalid ones."""
    parsed = []
    for number in numbers:
        try:
            parsed.append(semver.Version.parse(number))
        except (ValueError, TypeError):
            continue
    releases = [v for v in parsed if not v.prerelease]
    return Versions(
        release=max(releases, default=None),
        prerelease=max(parsed, default=None),
    )


def _published(releases: Mapping[str, list[dict[str, Any]]]) -> Iterable[str]:
    for number, files in releases.items():
        if files and all(f.get("yanked", False) for f in files):
            continue
        yield number


def most_recent(client: httpx.Client | None = None) -> Versions:
    """Query the package index for the newest published versions."""
    log.debug("Checking for updates")
    if client is None:
        with httpx.Client(
            timeout=1.0, headers={"User-Agent": f"{NAME}/{VERSION}"}
        ) as own_client:
            return most_recent(own_client)
    response = client.get(INDEX_URL)
    response.raise_for_status()
    releases = response.json()["releases"]
    return newest_versions(_published(releases))


def announce_version(
    versions: Versions, current: semver.Version | str = VERSION
) -> semver.Version | None:
    """Log and return the newer version, if one is newer than ``current``."""
    try:
        running = (
            current
            if isinstance(current, semver.Version)
            else semver.Version.parse(current)
        )
    except ValueError:
        log.debug("Failed to parse the current version (%s)", current)
        return None

    newest = versions.prerelease if running.prerelease else versions.release
    if newest is None:
        return None
    log.debug("Current: %s, Most recent: %s", running, newest)
    if newest > running:
        log.info("Found an update of %s: %s -> %s", NAME, running, newest)
        return newest
    return None


def perform_update_check(path: Path | None = None) -> semver.Version | None:
    """Run the check, refreshing the recorded state when it is stale."""
    log.debug("Performing update check")
    versions = need_check(path)
    if versions is None:
        try:
            versions = most_recent()
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as err:
            log.debug("Failed to check for new version: %s", err)
            return None
        log.debug("New versions: %s", versions)
        record_checked(versions, path)
    else:
        log.debug("No refresh needed")
    return announce_version(versions)


def update_check(skip: bool) -> threading.Thread | None:
    """Start the update check in a background thread unless skipped."""
    if skip:
        return None
    log.debug("Spawning update check")
    thread = threading.Thread(
        target=perform_update_check, name="update-check", daemon=True
    )
    thread.start()
    return thread