"""Tool downloads, file watching, live-reload messages and version checks for WebAssembly web builds."""

__version__ = "0.1.0"