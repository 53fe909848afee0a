"""Error taxonomy for the opportunity pipeline.

- ContractViolation: malformed input/output at a stage boundary. Terminal for
  the message: logged and dropped, never retried.
- CollaboratorFailure: model service, reputation/search or store unavailable.
  Retryable through transport redelivery.
- JoinTimeout: a verification branch missed its deadline. Handled inside the
  join coordinator by the degraded-default path.
- MissingIdentifier / ReviewEntryNotFound: client errors on the correction API.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ContractViolation(PipelineError):
    """A record failed validation against a named schema."""

    def __init__(self, schema: str, fields: list[str], message: str):
        self.schema = schema
        self.fields = fields
        self.message = message
        super().__init__(f"{schema}: {message}")


class CollaboratorFailure(PipelineError):
    """An external collaborator failed or was unreachable."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class JoinTimeout(PipelineError):
    """A correlation entry waited longer than the join deadline."""

    def __init__(self, key: str, missing: list[str], waited_seconds: float):
        self.key = key
        self.missing = missing
        self.waited_seconds = waited_seconds
        super().__init__(
            f"join timed out for {key} after {waited_seconds:.0f}s "
            f"(missing: {', '.join(missing)})"
        )


class MissingIdentifier(PipelineError):
    """A correction was submitted without the manual-review entry id."""


class ReviewEntryNotFound(PipelineError):
    """No manual-review entry exists for the given id."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Manual review entry not found: {entry_id}")
