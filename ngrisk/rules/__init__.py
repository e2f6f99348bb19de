"""Registry of structural rule procedures.

A catalogue entry with ``procedure: <name>`` is bound to the function
registered here under that name. Procedures take ``(file, ctx)`` and return
a list of :class:`~ngrisk.core.models.Hit`.
"""
from __future__ import annotations

from typing import Callable

_PROCEDURES: dict[str, Callable] = {}


def structural_rule(name: str) -> Callable[[Callable], Callable]:
    """Register a structural procedure under ``name``."""
    def register(func: Callable) -> Callable:
        if name in _PROCEDURES:
            raise ValueError(f"structural procedure '{name}' registered twice")
        _PROCEDURES[name] = func
        return func
    return register


def get_procedure(name: str) -> Callable | None:
    return _PROCEDURES.get(name)


def registered_procedures() -> list[str]:
    return sorted(_PROCEDURES)


from . import structural  # noqa: E402,F401  (registers the bundled procedures)
