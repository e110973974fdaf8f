class RecordStoreError(Exception):
    """Base class for failures talking to the remote record store."""


class ConfigurationError(RecordStoreError):
    """Record store endpoint is unset or malformed. Blocks all data operations."""


class TransportError(RecordStoreError):
    """The request did not complete (connection failure, timeout, non-2xx)."""


class RemoteError(RecordStoreError):
    """The store answered with ``status: error``."""


class ParseError(RecordStoreError):
    """The response body is not in the expected shape."""

    default_message = (
        "The app received invalid data from the record store. This is usually caused "
        "by an error in the remote script or because it was not re-deployed after "
        "changes. Check the deployment and deploy it again."
    )

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(self.default_message)
