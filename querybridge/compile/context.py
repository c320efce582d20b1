"""Compilation context value objects.

``CompilationContext`` carries the static settings shared by every
sub-builder of one build; ``RuntimeContext`` accumulates the warnings and
metadata produced while building.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from querybridge.schema.profile import ConversionProfile


@dataclass(frozen=True)
class CompilationContext:
    """Immutable context for a single build.

    Attributes:
        profile: Conversion profile in effect.
        table: Main table of the query being built.
    """

    profile: ConversionProfile
    table: str


@dataclass
class RuntimeContext:
    """Warnings and metadata gathered during one build."""

    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def annotate(self, key: str, value: str) -> None:
        """Set ``metadata[key]``, joining repeated values with ``; ``."""
        existing = self.metadata.get(key)
        self.metadata[key] = f"{existing}; {value}" if existing else value
