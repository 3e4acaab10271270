"""
Error taxonomy. Every component raises one of these; the request handler maps
`status` onto the HTTP response and puts `str(exc)` in the error envelope, so
messages must stay human-readable and free of file paths.
"""


class BirdsongError(Exception):
    status = 500


# -------- client errors --------
class ValidationError(BirdsongError):
    status = 400


class RequestTooLargeError(ValidationError):
    status = 413


class InvalidJSONError(ValidationError):
    pass


class InvalidRateError(ValidationError):
    pass


class AuthError(BirdsongError):
    status = 401


# -------- audio decoding --------
class DecodeError(BirdsongError):
    pass


class DecodeProcessError(DecodeError):
    """The transcoder could not be started or did not finish in time."""


class DecodeFormatError(DecodeError):
    """The transcoder rejected the input (non-zero exit)."""


class DecodeTruncatedError(DecodeError):
    """The transcoder produced partial or empty PCM output."""


# -------- model artifacts --------
class ArtifactLoadError(BirdsongError):
    pass


class LabelsUnavailableError(ArtifactLoadError):
    pass


class ModelUnavailableError(ArtifactLoadError):
    pass


# -------- inference --------
class InferenceError(BirdsongError):
    pass


class InferenceFailedError(InferenceError):
    pass


class SpectrogramShapeError(InferenceError):
    pass
