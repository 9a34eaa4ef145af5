"""
Module: sd_sampler.errors
Purpose: Exception hierarchy for pipeline setup and generation failures

Setup failures happen while building the pipeline (vocabulary or model
resources). Generation failures happen inside a single generate() call and
abort it without producing an image.
"""


class SamplerError(Exception):
    """Base class for all recoverable sd_sampler errors."""


class SetupError(SamplerError):
    """Raised while constructing the pipeline or its resources."""


class ResourceLoadFailure(SetupError):
    """A vocabulary or model resource is missing or corrupt."""

    def __init__(self, resource: str, reason: str):
        self.resource = resource
        self.reason = reason
        super().__init__(f"Could not load {resource}: {reason}")


class GenerationError(SamplerError):
    """Raised while running a generation request."""


class ShapeMismatch(GenerationError):
    """An inference call received or returned a tensor of unexpected shape."""

    def __init__(self, what: str, expected: tuple, actual: tuple):
        self.what = what
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"{what}: expected shape {self.expected}, got {self.actual}"
        )


class InferenceFailure(GenerationError):
    """An external inference engine failed internally."""

    def __init__(self, stage: str, message: str, step: int = None):
        self.stage = stage
        self.step = step
        where = f"{stage} (step {step})" if step is not None else stage
        super().__init__(f"Inference failed during {where}: {message}")


class InvariantViolation(AssertionError):
    """
    Programming-level fatal condition, e.g. a schedule table index out of range.

    Not a SamplerError; generate() callers let it propagate.
    """
