from __future__ import annotations


class UndistortionError(Exception):
    pass


class PreconditionError(UndistortionError, ValueError):
    """
    Caller error or corrupt input state (invalid options, wrong parameter
    arity, mismatched image/camera sizes, unsupported camera model).

    Never recovered from: a batch that hits one stops as a whole.
    """


class OptionsValidationError(PreconditionError):
    pass


class ImageReadError(UndistortionError, OSError):
    """Input image missing or unreadable. The job is skipped, the batch continues."""

    def __init__(self, path: object, reason: str = "") -> None:
        self.path = path
        msg = f"Cannot read image at path {path}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class ModelFormatError(UndistortionError, ValueError):
    pass
