"""Locate external tools, downloading and installing them when they are missing."""

from __future__ import annotations

import logging
import os
import shutil
import ssl
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

import httpx
import platformdirs

from wasmbuildkit.application import Application, UnsupportedPlatformError
from wasmbuildkit.archive import Archive, ArchiveError, ArchiveKind
from wasmbuildkit.versionreq import NAME

log = logging.getLogger(__name__)


class ToolError(Exception):
    """A tool could not be located, downloaded or installed."""


@dataclass
class HttpClientOptions:
    """How the HTTP client used for downloads is set up.

    ``root_certificate`` adds a PEM root certificate to the trusted set, which
    helps behind proxies with their own certificate authority.
    ``accept_invalid_certificates`` disables verification altogether and opens
    the door to man-in-the-middle attacks. ``transport`` replaces the network
    layer of the client.
    """

    root_certificate: Path | None = None
    accept_invalid_certificates: bool = False
    transport: httpx.BaseTransport | None = None


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _archive_kind(app: Application) -> ArchiveKind:
    if app is Application.SASS and sys.platform.startswith("win"):
        return ArchiveKind.ZIP
    if app is Application.TAILWIND_CSS:
        return ArchiveKind.NONE
    return ArchiveKind.TAR_GZ


def cache_dir() -> Path:
    """The cache directory for downloaded tools, created if missing."""
    path = Path(platformdirs.user_cache_path(NAME))
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise ToolError(f"failed creating cache directory: {err}") from err
    return path


def _detect_system(app: Application) -> tuple[Path, str]:
    found = shutil.which(app.value)
    if found is None:
        raise ToolError(f"{app.value} not found")
    path = Path(found)
    result = subprocess.run(
        [str(path), app.version_test()], capture_output=True, check=False
    )
    if result.returncode != 0:
        raise ToolError(f"running command `{path} {app.version_test()}` failed")
    text = result.stdout.decode("utf-8", errors="replace")
    version = app.format_version_output(text)
    log.debug("system version found for %s: %s", app, version)
    return path, version


def find_system(app: Application) -> tuple[Path, str] | None:
    """Find a system-wide installation of ``app`` and its version, if any."""
    try:
        return _detect_system(app)
    except (OSError, subprocess.SubprocessError, ValueError, ToolError) as err:
        log.debug("failed to detect system tool: %s", err)
        return None


def _http_client(options: HttpClientOptions) -> httpx.Client:
    context: ssl.SSLContext | None = None
    if options.root_certificate is not None:
        certificate = Path(options.root_certificate)
        context = ssl.create_default_context()
        try:
            context.load_verify_locations(cafile=str(certificate))
        except FileNotFoundError as err:
            raise ToolError(
                f"Error reading certificate: file not found: {certificate}"
            ) from err
        except (OSError, ssl.SSLError) as err:
            raise ToolError(f"Error adding root certificate: {err}") from err

    verify: bool | ssl.SSLContext
    if options.accept_invalid_certificates:
        verify = False
    else:
        verify = context if context is not None else True

    if options.transport is not None:
        return httpx.Client(
            verify=verify, follow_redirects=True, transport=options.transport
        )
    return httpx.Client(verify=verify, follow_redirects=True)


def download(
    app: Application,
    version: str,
    client_options: HttpClientOptions | None = None,
    cache_directory: str | os.PathLike[str] | None = None,
) -> Path:
    """Download the release of ``app`` into a temporary file and return its path."""
    options = HttpClientOptions() if client_options is None else client_options
    log.info("downloading %s (version %s)", app, version)
    if options.accept_invalid_certificates:
        log.warning(
            "Accept Invalid Certificates is set to true. "
            "This can open you up to MITM attacks."
        )

    if cache_directory is None:
        directory = cache_dir()
    else:
        directory = Path(cache_directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise ToolError(f"failed creating cache directory: {err}") from err

    temp_out = directory / f"{app.value}-{version}.tmp"
    url = app.url(version)

    try:
        out = open(temp_out, "wb")
    except OSError as err:
        raise ToolError(f"failed creating temporary output file: {err}") from err

    with out, _http_client(options) as client:
        try:
            with client.stream("GET", url) as response:
                if not response.is_success:
                    raise ToolError(
                        f"error downloading archive file: {response.status_code}\n{url}"
                    )
                for chunk in response.iter_bytes():
                    out.write(chunk)
        except httpx.HTTPError as err:
            raise ToolError(f"error sending HTTP request: {err}") from err
        except OSError as err:
            raise ToolError(f"error writing download: {err}") from err

    return temp_out


def install(
    app: Application,
    archive_path: str | os.PathLike[str],
    target_directory: str | os.PathLike[str],
) -> Path:
    """Extract ``app`` from a downloaded archive into ``target_directory``."""
    log.info("installing %s", app)
    target = Path(target_directory)

    try:
        archive = Archive(archive_path, _archive_kind(app))
        archive.extract_file(app.path(), target)
    except ArchiveError as err:
        raise ToolError(f"Could not extract files: {err}") from err

    for extra in app.extra_paths():
        try:
            archive.extract_file(extra, target)
        except ArchiveError:
            log.warning(
                "attempted to extract '%s' from %s archive, but it is not present, "
                "this could be due to version updates",
                extra,
                app,
            )

    main_executable = target / app.path()
    if not main_executable.exists():
        raise ToolError(
            f"Extracted application binary {main_executable} could not be found."
        )
    if not main_executable.is_file():
        raise ToolError(f"Extracted application binary {main_executable} is not a file")
    if not os.access(main_executable, os.X_OK):
        raise ToolError(
            f"Extracted application binary {main_executable} is not executable."
        )
    return main_executable


class AppCache:
    """Tracks the tools installed during this run so each is fetched only once."""

    def __init__(self) -> None:
        self._installed: set[tuple[Application, str]] = set()
        self._lock = threading.Lock()

    def install_once(
        self,
        app: Application,
        version: str,
        app_dir: str | os.PathLike[str],
        client_options: HttpClientOptions | None = None,
    ) -> None:
        """Download and install ``app`` into ``app_dir`` unless already done."""
        key = (app, version)
        target = Path(app_dir)
        with self._lock:
            if key in self._installed:
                return
            try:
                archive_path = download(app, version, client_options, target.parent)
            except (ToolError, UnsupportedPlatformError) as err:
                raise ToolError(f"failed downloading release archive: {err}") from err
            install(app, archive_path, target)
            try:
                archive_path.unlink()
            except OSError as err:
                raise ToolError(f"failed deleting temporary archive: {err}") from err
            self._installed.add(key)


_GLOBAL_APP_CACHE = AppCache()


def get(
    app: Application,
    version: str | None = None,
    offline: bool = False,
    client_options: HttpClientOptions | None = None,
) -> Path:
    """Locate ``app``, downloading the wanted version when it is missing."""
    log.debug("Getting tool %s", app)

    found = find_system(app)
    if found is not None:
        path, detected = found
        if version is None:
            return path
        if version == detected:
            log.debug("using system installed binary (%s): %s", detected, path)
            return path
        if offline:
            raise ToolError(
                f"couldn't find the required version ({version}) of the application "
                f"{app} (found: {detected}), unable to download in offline mode"
            )
        log.info(
            "tool version mismatch (required: %s, system: %s)", version, detected
        )

    if offline:
        raise ToolError(
            f"couldn't find application {app} "
            f"(version: {version if version is not None else '<any>'}), "
            "unable to download in offline mode"
        )

    directory = cache_dir()
    wanted = app.default_version() if version is None else version
    app_dir = directory / f"{app.value}-{wanted}"
    bin_path = app_dir / app.path()

    if not _is_executable(bin_path):
        _GLOBAL_APP_CACHE.install_once(app, wanted, app_dir, client_options)

    log.debug("Using %s (%s) from: %s", app, wanted, bin_path)
    return bin_path