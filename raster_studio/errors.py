"""
Exception taxonomy shared by the Qt-free core and the UI.

Every failure that reaches the user derives from ``RasterStudioError`` so
the batch runner and the main window can catch one type per image.
"""


class RasterStudioError(RuntimeError):
    """Base class for user-visible processing failures."""


class ImageLoadError(RasterStudioError):
    """An image could not be opened or decoded."""


class SurfaceUnavailableError(RasterStudioError):
    """A drawing surface could not be allocated or activated."""


class EncodeError(RasterStudioError):
    """Encoding an export result failed."""
