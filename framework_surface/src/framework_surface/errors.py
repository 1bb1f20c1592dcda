class AnalysisError(Exception):
    """Base class for errors that stop an analysis run."""


class NoEntryPointsError(AnalysisError):
    """
    Neither the registration heuristics nor the fallback found a single entry
    method. Call-graph construction and path extraction cannot run.
    """

    def __init__(self, diagnostics=None):
        self.diagnostics = list(diagnostics or [])
        message = "No entry points found; the analysis cannot proceed"
        if self.diagnostics:
            message += f" ({len(self.diagnostics)} call sites could not be resolved)"
        super().__init__(message)
