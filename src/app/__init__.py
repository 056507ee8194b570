"""Composition root wiring store, credentials, HTTP client, auth façade and session."""

from .core import AppCore, build_core, build_core_from_env

__all__ = ["AppCore", "build_core", "build_core_from_env"]
