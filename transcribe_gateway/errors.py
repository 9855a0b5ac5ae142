class GatewayError(Exception):
    """Base for every failure surfaced to the client as an error envelope."""

    summary = "AI processing failed."
    status_code = 500


class ConfigError(GatewayError):
    summary = "Gateway is not configured."


class StorageUploadError(GatewayError):
    summary = "Could not stage the upload in object storage."


class JobSubmissionError(GatewayError):
    pass


class JobStatusError(GatewayError):
    pass


class JobFailedError(GatewayError):
    pass


class JobTimeoutError(GatewayError):
    pass


class MissingResultError(GatewayError):
    pass


class ResultFetchError(GatewayError):
    pass


class BackendRelayError(GatewayError):
    summary = "Backend relay failed."
    status_code = 502
