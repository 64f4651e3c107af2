"""
Style catalog collaborator.

The catalog itself (styles table, search, autocomplete) lives outside the
ledger.  The ledger only needs an existence check, expressed as a Protocol
so any object with ``style_exists`` can be injected.
"""

from collections.abc import Iterable
from typing import Protocol, runtime_checkable


@runtime_checkable
class StyleCatalog(Protocol):
    """Existence check against the external style catalog."""

    def style_exists(self, style_ref: str) -> bool:
        ...


class InMemoryStyleCatalog:
    """Set-backed catalog for tests and local tooling."""

    def __init__(self, style_refs: Iterable[str] = ()):
        self._styles = {ref.strip().upper() for ref in style_refs}

    def add(self, style_ref: str) -> None:
        self._styles.add(style_ref.strip().upper())

    def style_exists(self, style_ref: str) -> bool:
        return style_ref.strip().upper() in self._styles
