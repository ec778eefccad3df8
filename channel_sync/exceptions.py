"""
Error taxonomy for a sync run.

Row-level errors never leave the canonicalizer; everything else aborts the
run and reaches the trigger, which turns it into an error response.
"""
from typing import Any, Optional


class SyncError(Exception):
    """Base class for every error raised by the pipeline."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "SYNC_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(SyncError):
    """Missing credentials or invalid run parameters. Never retried."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        details = {"missing": missing} if missing else None
        super().__init__(message, 400, "CONFIGURATION_ERROR", details)


class ChannelError(SyncError):
    """An upstream channel API failed. Carries the upstream status and body."""

    def __init__(
        self,
        channel: str,
        message: str,
        upstream_status: Optional[int] = None,
        body: Optional[str] = None,
        error_code: str = "CHANNEL_ERROR",
    ):
        self.channel = channel
        self.upstream_status = upstream_status
        self.body = body
        text = f"{channel}: {message}"
        if upstream_status is not None:
            text += f" (HTTP {upstream_status})"
        if body:
            text += f": {body}"
        super().__init__(
            text,
            502,
            error_code,
            {"channel": channel, "upstream_status": upstream_status, "body": body},
        )


class TransientChannelError(ChannelError):
    """Rate limiting or connection trouble that outlasted the retry budget."""

    def __init__(self, channel, message, upstream_status=None, body=None):
        super().__init__(channel, message, upstream_status, body, "CHANNEL_TRANSIENT")


class PermanentChannelError(ChannelError):
    """Auth failure, malformed request or malformed response."""

    def __init__(self, channel, message, upstream_status=None, body=None):
        super().__init__(channel, message, upstream_status, body, "CHANNEL_PERMANENT")


class ReportGenerationError(PermanentChannelError):
    """A report job ended in a terminal failure state (FATAL, CANCELLED)."""


class ReportTimeoutError(ChannelError):
    """A report job did not finish within the maximum wait."""

    def __init__(self, channel, message):
        super().__init__(channel, message, error_code="REPORT_TIMEOUT")


class RowError(SyncError):
    """A single raw record cannot be canonicalized."""

    def __init__(self, message: str):
        super().__init__(message, 422, "ROW_ERROR")


class WarehouseError(SyncError):
    """The durable store rejected an operation."""

    def __init__(self, message: str, error_code: str = "WAREHOUSE_ERROR", details=None):
        super().__init__(message, 500, error_code, details)


class StagingError(WarehouseError):
    """Creating or populating a staging table failed."""

    def __init__(self, message: str, details=None):
        super().__init__(message, "STAGING_ERROR", details)


class VisibilityWindowError(WarehouseError):
    """A merge was attempted before staged rows became visible to the sink."""

    def __init__(self, message: str, details=None):
        super().__init__(message, "VISIBILITY_WINDOW", details)


class CleanupError(WarehouseError):
    """Dropping a staging table failed. Logged, never escalated."""

    def __init__(self, message: str, details=None):
        super().__init__(message, "CLEANUP_ERROR", details)


class RunLockError(SyncError):
    """Another run holds the lease for this channel."""

    def __init__(self, channel: str, holder: str):
        super().__init__(
            f"Channel '{channel}' is locked by run {holder}",
            409,
            "RUN_LOCKED",
            {"channel": channel, "holder": holder},
        )
