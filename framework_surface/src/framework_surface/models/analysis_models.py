# --- Results produced by the analysis ----------------------------------------
from dataclasses import dataclass

from framework_surface.src.framework_surface.models.program_models import CallSite, JavaMethod


@dataclass(frozen=True)
class CallEdge:
    """A resolved call: call site -> target method."""
    call_site: CallSite
    target: JavaMethod

    @property
    def source(self) -> str:
        return self.call_site.caller


@dataclass(frozen=True)
class PathTrace:
    """
    One linear record of a call chain, from an entry method down to the
    return instruction that completed it. `terminus` is the method owning
    that return; it is the entry itself for top-level returns.
    """
    entry: JavaMethod
    terminus: JavaMethod
    steps: tuple[str, ...]

    def __len__(self):
        return len(self.steps)


@dataclass(frozen=True)
class Diagnostic:
    """A call site the entry-point scan could not use."""
    method: str
    line: int
    message: str

    def __str__(self):
        return f"{self.method}:{self.line}: {self.message}"
