"""
Carrier descriptors.

Workers resolve a carrier once at the task edge and pass the descriptor
down explicitly; nothing below the edge reads carrier config directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.config import Settings


@dataclass(frozen=True)
class CarrierDescriptor:
    code: str
    id: int
    terminal_phrases: tuple[str, ...] = field(default_factory=tuple)

    def is_terminal(self, description: str | None) -> bool:
        """True if the lower-cased description is in this carrier's terminal list."""
        if not description:
            return False
        return description.strip().lower() in self.terminal_phrases


def get_carrier(code: str, settings: Settings | None = None) -> CarrierDescriptor:
    if settings is None:
        from core.config import get_settings

        settings = get_settings()
    key = code.strip().lower()
    entry = settings.carriers.get(key)
    if entry is None:
        raise ValueError(f"Unknown carrier code: {code}")
    return CarrierDescriptor(
        code=key,
        id=int(entry["id"]),
        terminal_phrases=tuple(p.strip().lower() for p in entry.get("terminal_phrases", [])),
    )
