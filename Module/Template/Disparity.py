import torch

from .Errors import DisparityTypeError, ShapeMismatch


def scale_intrinsic(K: torch.Tensor, pyr_level: int) -> torch.Tensor:
    """
    Intrinsic matrix of pyramid level `pyr_level` given the level-0 intrinsic, where every level
    halves the image resolution.
    """
    K_level = K.clone()
    scale   = 1. / (1 << pyr_level)
    K_level[:2, :] *= scale
    return K_level


class DisparityPyramidLevel:
    """
    Read-only view on a full resolution disparity map as if it were sampled at pyramid level
    `pyr_level`. Pixel (y, x) of the level maps to (y * 2^l, x * 2^l) on the full resolution map and
    its disparity is divided by 2^l.

    Non-positive or non-finite values mark pixels with no valid disparity.
    """
    def __init__(self, D: torch.Tensor, pyr_level: int) -> None:
        if not D.is_floating_point():
            raise DisparityTypeError(f"Disparity map must be floating point, get {D.dtype}")
        if D.dim() == 3 and D.size(0) == 1: D = D[0]
        if D.dim() != 2:
            raise ShapeMismatch(f"Disparity map must be HxW, get {tuple(D.shape)}")
        if pyr_level < 0:
            raise ShapeMismatch(f"Pyramid level must be non-negative, get {pyr_level}")

        self.D         = D
        self.pyr_level = pyr_level
        self.scale     = 1 << pyr_level
        self.inv_scale = 1. / self.scale

    def as_tensor(self) -> torch.Tensor:
        return self.D[::self.scale, ::self.scale] * self.inv_scale
