"""The external tools that can be located or downloaded for a build."""

from __future__ import annotations

import enum
import platform
import sys

_OPERATING_SYSTEMS = ("windows", "macos", "linux")
_ARCHITECTURES = ("x86_64", "aarch64")
_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
}


class UnsupportedPlatformError(Exception):
    """No release of a tool exists for the operating system or architecture."""


def _host_os() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def current_os() -> str:
    """Name of the running operating system as used in release names."""
    name = _host_os()
    if name not in _OPERATING_SYSTEMS:
        raise UnsupportedPlatformError("unsupported OS")
    return name


def current_arch() -> str:
    """Name of the running CPU architecture as used in release names."""
    arch = _ARCH_ALIASES.get(platform.machine().lower())
    if arch is None:
        raise UnsupportedPlatformError("unsupported target architecture")
    return arch


def _malformed(text: str) -> ValueError:
    return ValueError(f"missing or malformed version output: {text}")


class Application(enum.Enum):
    """A tool used in the build pipeline; the value is its executable base name."""

    SASS = "sass"
    TAILWIND_CSS = "tailwindcss"
    WASM_BINDGEN = "wasm-bindgen"
    WASM_OPT = "wasm-opt"

    def __str__(self) -> str:
        return self.value

    def path(self, target_os: str | None = None) -> str:
        """Path of the executable within the downloaded archive."""
        target_os = _host_os() if target_os is None else target_os
        if target_os == "windows":
            return {
                Application.SASS: "sass.bat",
                Application.TAILWIND_CSS: "tailwindcss.exe",
                Application.WASM_BINDGEN: "wasm-bindgen.exe",
                Application.WASM_OPT: "bin/wasm-opt.exe",
            }[self]
        return {
            Application.SASS: "sass",
            Application.TAILWIND_CSS: "tailwindcss",
            Application.WASM_BINDGEN: "wasm-bindgen",
            Application.WASM_OPT: "bin/wasm-opt",
        }[self]

    def extra_paths(self, target_os: str | None = None) -> tuple[str, ...]:
        """Further archive files the main executable needs to run."""
        target_os = _host_os() if target_os is None else target_os
        if self is Application.SASS:
            if target_os == "windows":
                return ("src/dart.exe", "src/sass.snapshot")
            return ("src/dart", "src/sass.snapshot")
        if self is Application.WASM_OPT and target_os == "macos":
            return ("lib/libbinaryen.dylib",)
        return ()

    def default_version(self) -> str:
        """Version used when none is requested."""
        return {
            Application.SASS: "1.69.5",
            Application.TAILWIND_CSS: "3.3.5",
            Application.WASM_BINDGEN: "0.2.89",
            Application.WASM_OPT: "version_116",
        }[self]

    def url(
        self,
        version: str,
        target_os: str | None = None,
        target_arch: str | None = None,
    ) -> str:
        """Download location of the release for the given platform."""
        target_os = current_os() if target_os is None else target_os
        target_arch = current_arch() if target_arch is None else target_arch
        if target_os not in _OPERATING_SYSTEMS:
            raise UnsupportedPlatformError("unsupported OS")
        if target_arch not in _ARCHITECTURES:
            raise UnsupportedPlatformError("unsupported target architecture")

        unix = target_os in ("macos", "linux")
        match self:
            case Application.SASS:
                base = f"https://github.com/sass/dart-sass/releases/download/{version}"
                if target_os == "windows" and target_arch == "x86_64":
                    return f"{base}/dart-sass-{version}-windows-x64.zip"
                if unix and target_arch == "x86_64":
                    return f"{base}/dart-sass-{version}-{target_os}-x64.tar.gz"
                if unix and target_arch == "aarch64":
                    return f"{base}/dart-sass-{version}-{target_os}-arm64.tar.gz"
                raise UnsupportedPlatformError(
                    f"Unable to download Sass for {target_os} {target_arch}"
                )
            case Application.TAILWIND_CSS:
                base = (
                    "https://github.com/tailwindlabs/tailwindcss/releases/download/"
                    f"v{version}"
                )
                if target_os == "windows" and target_arch == "x86_64":
                    return f"{base}/tailwindcss-windows-x64.exe"
                if unix and target_arch == "x86_64":
                    return f"{base}/tailwindcss-{target_os}-x64"
                if unix and target_arch == "aarch64":
                    return f"{base}/tailwindcss-{target_os}-arm64"
                raise UnsupportedPlatformError(
                    f"Unable to download tailwindcss for {target_os} {target_arch}"
                )
            case Application.WASM_BINDGEN:
                base = (
                    "https://github.com/rustwasm/wasm-bindgen/releases/download/"
                    f"{version}/wasm-bindgen-{version}"
                )
                triples = {
                    ("windows", "x86_64"): "x86_64-pc-windows-msvc",
                    ("macos", "x86_64"): "x86_64-apple-darwin",
                    ("macos", "aarch64"): "aarch64-apple-darwin",
                    ("linux", "x86_64"): "x86_64-unknown-linux-musl",
                    ("linux", "aarch64"): "aarch64-unknown-linux-gnu",
                }
                triple = triples.get((target_os, target_arch))
                if triple is None:
                    raise UnsupportedPlatformError(
                        f"Unable to download wasm-bindgen for {target_os} {target_arch}"
                    )
                return f"{base}-{triple}.tar.gz"
            case Application.WASM_OPT:
                base = (
                    "https://github.com/WebAssembly/binaryen/releases/download/"
                    f"{version}/binaryen-{version}"
                )
                if target_os == "macos" and target_arch == "aarch64":
                    return f"{base}-arm64-macos.tar.gz"
                return f"{base}-{target_arch}-{target_os}.tar.gz"
        raise UnsupportedPlatformError(f"no download for {self.value}")

    def version_test(self) -> str:
        """Command line argument that makes the tool print its version."""
        return "--help" if self is Application.TAILWIND_CSS else "--version"

    def format_version_output(self, text: str) -> str:
        """Extract the version from the output of the version check."""
        text = text.strip()
        match self:
            case Application.SASS:
                words = text.split()
                if not words:
                    raise _malformed(text)
                return words[0]
            case Application.TAILWIND_CSS:
                line = next((line for line in text.splitlines() if line), None)
                pieces = line.split(" v") if line is not None else []
                if len(pieces) < 2:
                    raise _malformed(text)
                return pieces[1]
            case Application.WASM_BINDGEN:
                pieces = text.split(" ")
                if len(pieces) < 2:
                    raise _malformed(text)
                return pieces[1]
            case Application.WASM_OPT:
                pieces = text.split(" ")
                if len(pieces) < 3:
                    raise _malformed(text)
                return f"version_{pieces[2]}"
        raise _malformed(text)