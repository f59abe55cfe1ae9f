"""
Error kinds raised by the harness.

Only configuration problems leave the core. Broker-side failures are caught
inside the trial runners and counted on the RunRecord.
"""


class HarnessError(Exception):
    """Base class for every error the harness raises on purpose."""


class ConfigInvalid(HarnessError):
    """The configuration cannot produce a runnable scenario matrix."""


class EmptySelection(HarnessError):
    """The operator filter matched no scenarios."""


class SchemaNotCached(HarnessError):
    """A schema subject was requested before the cache was prepared."""

    def __init__(self, subject: str, path):
        super().__init__(
            f"Schema cache file not found for subject '{subject}' ({path}). "
            "Run with --refresh-schemas or prepare the cache first."
        )
        self.subject = subject
        self.path = path


class ProduceFailed(HarnessError):
    """The client refused to enqueue a message."""

    def __init__(self, reason: str, code: str = "ProduceFailed"):
        super().__init__(reason)
        self.code = code
        self.reason = reason


class ConsumeFailure(HarnessError):
    """A poll returned an error instead of a record."""

    def __init__(self, reason: str, code: str = "ConsumeFailure"):
        super().__init__(reason)
        self.code = code
        self.reason = reason


class DecodeFailure(ConsumeFailure):
    """A record's payload could not be decoded."""

    def __init__(self, reason: str):
        super().__init__(reason, code="DecodeFailure")


class CommitFailed(HarnessError):
    """A synchronous offset commit was rejected."""
