"""
Exception types raised by bandscope.
"""


class BandscopeError(Exception):
    """Base class for all bandscope errors."""


class DecodeError(BandscopeError):
    """The image source could not be materialized into a matrix."""


class UnsupportedTransformError(BandscopeError):
    """No backend is registered for the requested transform type."""

    def __init__(self, transform_type):
        self.transform_type = transform_type
        super().__init__(f"Unsupported transform type: {transform_type!r}")


class InvalidFilterSpec(BandscopeError):
    """A filter specification could not be interpreted at all."""
