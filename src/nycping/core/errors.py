"""
Exception hierarchy for the curation engine.
"""


class NYCPingError(Exception):
    """Base class for all engine errors."""


class ConfigError(NYCPingError):
    """Configuration file is missing or malformed."""


class SourceFetchError(NYCPingError):
    """A scraper could not reach or read its upstream feed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class EnhancedDigestError(NYCPingError):
    """The LLM collaborator returned nothing usable."""


class LockUnavailable(NYCPingError):
    """Another run holds the job lock."""

    def __init__(self, job_name: str):
        super().__init__(f"lock {job_name} is held by another run")
        self.job_name = job_name
