class UnrecoverableError(ValueError):
    """Base class for all unrecoverable errors in the pages relay."""

    pass


class InvalidPipelineError(UnrecoverableError):
    """Raised when a pipeline definition cannot be loaded or is malformed."""

    pass


class PipelineError(RuntimeError):
    """Base class for failures that abort a pipeline run at a given stage."""

    def __init__(self, message: str, *, stage: str, output: str = ""):
        super().__init__(message)
        self.stage = stage
        self.output = output


class CheckoutFailure(PipelineError):
    """Raised when the source cannot be acquired at the branch head."""

    pass


class EnvironmentBuildFailure(PipelineError):
    """Raised when the execution environment image cannot be built."""

    pass


class DependencyInstallFailure(PipelineError):
    """Raised when a dependency install step exits non-zero."""

    pass


class BuildFailure(PipelineError):
    """Raised when a site generation step exits non-zero."""

    pass


class ArtifactPublishFailure(PipelineError):
    """Raised when the generated tree cannot be copied to the destination."""

    pass
