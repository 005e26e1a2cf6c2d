"""
Image Optimizer Errors

Exception hierarchy shared by the store adapter, the transform pipeline
and the routes:

- ConfigurationError: required store credential missing
- StoreError / StoreInitError: durable store could not be prepared
- TransformFailure: origin fetch, decode, resize or encode failed
"""

from typing import Optional


class ImageOptimizerError(Exception):
    """Base class for all image optimizer errors."""


class ConfigurationError(ImageOptimizerError):
    """A required configuration value is absent."""


class StoreError(ImageOptimizerError):
    """Durable store failure that the caller has to see."""


class StoreInitError(StoreError):
    """The store handle (client + container) could not be built."""


class TransformFailure(ImageOptimizerError):
    """
    A stage of the transform pipeline failed.

    Attributes:
        stage: "fetch", "decode", "resize" or "encode"
        cause: Human readable description of what went wrong
    """

    stage = "transform"

    def __init__(self, cause: str, stage: Optional[str] = None):
        if stage is not None:
            self.stage = stage
        self.cause = cause
        super().__init__(f"{self.stage} failed: {cause}")


class OriginFetchError(TransformFailure):
    stage = "fetch"


class DecodeError(TransformFailure):
    stage = "decode"


class EncodeError(TransformFailure):
    stage = "encode"
