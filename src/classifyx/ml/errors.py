"""Exception hierarchy for the classification pipeline.

Every stage raises its own error type. The adapter facade wraps them in
``ClassifyError`` and chains the original as ``__cause__``.
"""

from __future__ import annotations


class ClassifyXError(Exception):
    """Base class for all ClassifyX errors."""


class ModelLoadError(ClassifyXError):
    """The model directory is missing or does not hold a loadable model."""


class ModelNotFoundError(ModelLoadError):
    """No serialized model exists at the expected location."""


class LabelLoadError(ClassifyXError):
    """The label definition file is missing or malformed."""


class DecodeError(ClassifyXError):
    """The input buffer could not be decoded into an image tensor."""


class UnknownImageFormatError(DecodeError):
    """The input buffer is not in any recognized image format."""


class InferenceError(ClassifyXError):
    """The model could not be run on the given tensor."""


class ClassifyError(ClassifyXError):
    """Raised by the classification facade, wrapping the underlying failure."""
