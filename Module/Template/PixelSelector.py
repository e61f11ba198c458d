import torch
import torch.nn.functional as F
from dataclasses import dataclass

from .Disparity import DisparityPyramidLevel
from .Errors import ImageTooSmall, ShapeMismatch


@dataclass
class PixelLocations:
    index    : torch.Tensor     # N, torch.long, linear (row-major) index into the saliency map
    disparity: torch.Tensor     # N, disparity at the pyramid level

    def __len__(self) -> int: return self.index.size(0)


def strict_local_max(smap: torch.Tensor, radius: int) -> torch.Tensor:
    """
    True where smap is strictly greater than every other value in the (2r+1)x(2r+1) window
    centered on it. Two pixels closer than `radius` can therefore never both be True.
    """
    H, W   = smap.shape
    kernel = 2 * radius + 1
    padded  = F.pad(smap.view(1, 1, H, W), (radius, radius, radius, radius), value=float("-inf"))
    patches = F.unfold(padded, kernel_size=kernel)      # 1 x k*k x H*W
    patches[:, (kernel * kernel) // 2] = float("-inf")  # exclude the center itself
    neighbor_max = patches.max(dim=1).values.view(H, W)
    return smap > neighbor_max


class ValidPixelPredicate:
    """
    A pixel is valid when it has a positive, finite disparity and, if `nms_radius >= 0`, it is a
    strict local maximum of the saliency map within that radius.
    """
    def __init__(self, dmap: torch.Tensor, smap: torch.Tensor, nms_radius: int) -> None:
        mask = torch.isfinite(dmap) & (dmap > 0.)
        if nms_radius >= 0:
            mask &= strict_local_max(smap, nms_radius)
        self.mask = mask


def get_valid_pixel_locations(dmap: DisparityPyramidLevel, smap: torch.Tensor,
                              nms_radius: int, do_nonmax_supp: bool) -> PixelLocations:
    """
    Scan the saliency map in row-major order and return all valid pixels away from the border,
    together with their disparity.

    The border is `max(2, nms_radius)` on the top / left edge and one more pixel on the bottom /
    right edge, so that the central difference gradient and the NMS window stay inside the image.
    """
    rows, cols = smap.shape
    disparity  = dmap.as_tensor()
    if disparity.size(0) < rows or disparity.size(1) < cols:
        raise ShapeMismatch(f"Disparity at level {dmap.pyr_level} is {tuple(disparity.shape)}, smaller than saliency map {(rows, cols)}")
    disparity = disparity[:rows, :cols].to(smap.device)

    border = max(2, nms_radius)
    if rows - border - 1 <= border or cols - border - 1 <= border:
        raise ImageTooSmall(f"Image of {(rows, cols)} cannot hold a selection border of {border} pixels")

    is_pixel_valid = ValidPixelPredicate(disparity, smap, nms_radius if do_nonmax_supp else -1)
    border_mask = torch.zeros_like(is_pixel_valid.mask)
    border_mask[border : rows - border - 1, border : cols - border - 1] = True

    selected = torch.nonzero(is_pixel_valid.mask & border_mask, as_tuple=False)
    y, x     = selected[:, 0], selected[:, 1]
    return PixelLocations(index=y * cols + x, disparity=disparity[y, x])
