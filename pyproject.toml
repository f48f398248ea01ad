[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wasmbuildkit"
version = "0.1.0"
description = "Tool download management, file watching, live-reload messages and version checks for WebAssembly web build pipelines"
requires-python = ">=3.10"
keywords = [
    "wasm",
    "webassembly",
    "build",
    "wasm-bindgen",
    "wasm-opt",
    "sass",
    "tailwindcss",
    "watch",
    "live-reload",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "httpx",
    "platformdirs",
    "semver",
    "watchdog",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["wasmbuildkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
