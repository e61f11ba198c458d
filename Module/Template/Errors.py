from Utility.PrettyPrint import Logger


class TemplateContractError(ValueError):
    """
    Raised when the caller of the template data breaks an input contract (dtype, shape, channel count).

    Geometric invalidity (a point projecting outside of the image) is *not* a contract error, it is
    reported through the per-point validity flag.
    """
    def __init__(self, msg: str) -> None:
        Logger.write("error", f"{self.__class__.__name__}: {msg}")
        super().__init__(msg)


class DisparityTypeError(TemplateContractError):
    """Disparity map is not stored as floating point."""


class ChannelCountMismatch(TemplateContractError):
    """Number of channels does not agree with the template."""


class ImageTooSmall(TemplateContractError):
    """Image cannot hold the selection border or the bilinear interpolation footprint."""


class ShapeMismatch(TemplateContractError):
    """Pose, disparity map or output buffer does not have the expected shape."""
