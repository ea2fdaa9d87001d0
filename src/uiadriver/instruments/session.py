"""Runtime records shared by the instruments session components."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProcessExit:
    """Exit notification delivered to process listeners."""

    pid: int
    returncode: int
    expected: bool


@dataclass(frozen=True, slots=True)
class CrashRecord:
    """Set-once diagnostic captured when instruments dies unexpectedly."""

    reason: str
    returncode: int | None = None
    output_tail: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.returncode is None:
            return self.reason
        return f"{self.reason} (rc={self.returncode})"
