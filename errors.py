class TrafficCollectorError(Exception):
    """Base class for errors raised by the collector."""


class ConfigurationError(TrafficCollectorError):
    """A required setting (e.g. the Google Maps API key) is missing or invalid."""


class JobNotFound(TrafficCollectorError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class UpstreamError(TrafficCollectorError):
    """The Directions/Geocoding service answered with a non-OK status."""

    def __init__(self, status: str, message: str | None = None):
        super().__init__(message or status or "Directions API error")
        self.status = status
