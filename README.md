# wasmbuildkit

Building blocks for a WebAssembly web build pipeline:

- **Tool management** (`wasmbuildkit.tools`, `wasmbuildkit.application`,
  `wasmbuildkit.archive`): finds `sass`, `tailwindcss`, `wasm-bindgen` and
  `wasm-opt` on the system. If a tool is missing or has the wrong version, it
  downloads the release for the running platform into a per-user cache and
  unpacks it.
- **File watching** (`wasmbuildkit.watch`): a `WatchSystem` that runs a build
  callable when files below the watched paths change. It debounces events, skips
  ignored and blacklisted paths (`.git`, `.DS_Store`) and can hold off new builds
  for a cooldown after each build.
- **Live reload** (`wasmbuildkit.ws`): turns build states into the JSON messages
  sent to the browser over a websocket.
- **Version checks** (`wasmbuildkit.versionreq`, `wasmbuildkit.update_check`):
  checks a version requirement against a version, and looks for newer releases
  of this package at most once a day.

## Installation

```
pip install wasmbuildkit
```

## Getting a tool

```python
from wasmbuildkit.application import Application
from wasmbuildkit.tools import HttpClientOptions, get

path = get(Application.WASM_BINDGEN, "0.2.89", offline=False, client_options=HttpClientOptions())
print(path)
```

`get` first looks for the tool on `PATH` and runs it with its version argument
(`--version`, or `--help` for tailwindcss) to learn its version:

- with no version requested, any system installation is returned;
- a system installation of the requested version is returned;
- otherwise the release is downloaded into
  `<user cache dir>/<tool>-<version>/` and the path of the executable there is
  returned. Without a requested version, `Application.default_version()` is used.

In offline mode a missing tool, or one with the wrong version, raises
`ToolError` instead of downloading. Each tool and version is downloaded at most
once per process.

`HttpClientOptions` configures downloads: `root_certificate` adds a PEM root
certificate to the trusted set, `accept_invalid_certificates` turns off
certificate verification (with a logged warning), and `transport` replaces the
`httpx` transport.

Lower-level pieces are available too: `find_system(app)`,
`download(app, version, client_options, cache_directory)`,
`install(app, archive_path, target_directory)` and `cache_dir()` in
`wasmbuildkit.tools`; `Application.url(version, target_os, target_arch)`,
`Application.path(target_os)` and `Application.format_version_output(text)` in
`wasmbuildkit.application`. `Archive(path, ArchiveKind.TAR_GZ)` extracts single
files from an archive, dropping the top-level folder of each entry name.
Unsupported platforms raise `UnsupportedPlatformError`.

## Watching for changes

```python
import asyncio
from pathlib import Path
from wasmbuildkit.watch import WatchSystem

async def build():
    ...  # a plain function works as well

async def main():
    shutdown = asyncio.Event()
    watcher = WatchSystem(
        [Path("src").resolve()],
        build,
        ignored_paths=[Path("dist").resolve()],
        ws_state=print,
    )
    await watcher.build()
    await watcher.run(shutdown)  # returns once shutdown is set

asyncio.run(main())
```

Only creations, removals, renames and content or write-time changes count. Event
paths are resolved before they are compared, so ignored paths should be given as
resolved absolute paths; `update_ignore_list(path)` resolves the path itself.
A change while a build is running starts one more build when it finishes. With
the cooldown on (the default), changes reported within one second after a build
finished do not start a new build. Pass `poll` (seconds or a `timedelta`) to use
a polling observer.

After each build, `ws_state` is called with `State.ok()` or with
`State.failed(reason)`, where the reason comes from `build_error_reason(error)`
and lists the chain of causes. Failures are not reported when
`no_error_reporting` is set.

## Live-reload messages

```python
from wasmbuildkit.ws import State, messages

for message in messages([State.ok(), State.failed("boom"), State.ok()]):
    print(message.to_json())
# {"type":"buildFailure","data":{"reason":"boom"}}
# {"type":"reload"}
```

The first ok state is dropped, so the browser does not reload right after it
connects; a failed build is always reported. `ClientMessage.from_json` reads the
messages back.

`handle_ws(websocket, states)` forwards an async iterable of states to a
websocket object with async `recv`, `send` and `close` methods. `recv` returns
`None` when the connection is gone, or a `CloseFrame`, which is echoed back
before the socket is closed. Other received messages are ignored.

## Version requirements

```python
from wasmbuildkit.versionreq import enforce_version_with, parse_requirement

enforce_version_with(parse_requirement(">=0.19.0"), "0.20.0")  # passes
enforce_version_with("0.20.0", "0.19.0")  # raises VersionMismatchError
```

Requirements use comma-separated comparators with `=`, `>`, `>=`, `<`, `<=`,
`~`, `^` and wildcards; a bare version means `^`. Pre-release versions match
only comparators that name the same major, minor and patch with a pre-release.
`*` accepts every version, pre-releases included.

## Update check

`update_check(skip)` starts a background thread (unless `skip` is true) that
reads the newest published versions of this package from the Python package
index, at most once a day, and logs a message at info level when a newer one
exists. The time of the last check and the versions found are kept in
`update.json` in the user state directory (`state_file()`).

## What it does not do

There is no command-line program and no HTTP or websocket server: `handle_ws`
works with a websocket object supplied by the caller, and `WatchSystem` runs a
build callable that the caller provides rather than building anything itself.