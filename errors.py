class EditError(Exception):
    """Base class for failures of a single edit request."""


class UpstreamError(EditError):
    """The call to the image model failed (network, auth, quota, bad request)."""


class NoImageReturned(EditError):
    """The model answered but none of its parts carried image data."""

    def __init__(self, message="No image data found in the response."):
        super().__init__(message)
