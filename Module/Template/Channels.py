import math
import torch
import torch.nn.functional as F
from abc import ABC, abstractmethod
from types import SimpleNamespace
from typing import ClassVar

from Utility.Extensions import ConfigTestableSubclass
from .Errors import ChannelCountMismatch, ShapeMismatch


def gaussian_blur(planes: torch.Tensor, sigma: float) -> torch.Tensor:
    """
    Separable gaussian blur on a CxHxW tensor with replicated border. No-op when sigma <= 0.
    """
    if sigma <= 0.: return planes
    radius = max(1, int(math.ceil(3. * sigma)))
    offset = torch.arange(-radius, radius + 1, dtype=planes.dtype, device=planes.device)
    kernel = torch.exp(-0.5 * (offset / sigma).square())
    kernel = kernel / kernel.sum()

    x = planes.unsqueeze(1)   # C x 1 x H x W
    x = F.conv2d(F.pad(x, (radius, radius, 0, 0), mode="replicate"), kernel.view(1, 1, 1, -1))
    x = F.conv2d(F.pad(x, (0, 0, radius, radius), mode="replicate"), kernel.view(1, 1, -1, 1))
    return x.squeeze(1)


def gradient_abs_sum(planes: torch.Tensor) -> torch.Tensor:
    """
    |Ix| + |Iy| with central difference, summed over the channels of a CxHxW tensor. Zero on the
    outermost ring of pixels.
    """
    C, H, W = planes.shape
    saliency = torch.zeros((H, W), dtype=planes.dtype, device=planes.device)
    if H < 3 or W < 3: return saliency
    Ix = planes[:, 1:-1, 2:] - planes[:, 1:-1, :-2]
    Iy = planes[:, 2:, 1:-1] - planes[:, :-2, 1:-1]
    saliency[1:-1, 1:-1] = (Ix.abs() + Iy.abs()).sum(dim=0)
    return saliency


class IChannels(ABC, ConfigTestableSubclass):
    """
    Multi-channel view of a single grayscale image.

    `IChannels(image: HxW tensor, config) -> IChannels`

    * data                  - CxHxW tensor, contiguous, row-major with the same stride for all channels
    * channel_data(c)       - flat (H*W) view on channel c
    * compute_saliency_map  - HxW score used to prefer well-textured pixels during pixel selection

    `NumChannels` is fixed per implementation and is what the template data checks against.
    """
    NumChannels: ClassVar[int] = 0

    def __init__(self, image: torch.Tensor, config: SimpleNamespace | None = None) -> None:
        self.config = config if config is not None else SimpleNamespace()
        if image.dim() == 3 and image.size(0) == 1: image = image[0]
        if image.dim() != 2:
            raise ShapeMismatch(f"{self.name()} expects a single HxW grayscale image, get {tuple(image.shape)}")
        if not image.is_floating_point(): image = image.float()

        self.data = self.compute(image).contiguous()
        if self.data.size(0) != self.NumChannels:
            raise ChannelCountMismatch(f"{self.name()} should produce {self.NumChannels} channels, get {self.data.size(0)}")

    @abstractmethod
    def compute(self, image: torch.Tensor) -> torch.Tensor: ...

    def compute_saliency_map(self) -> torch.Tensor:
        return gradient_abs_sum(self.data)

    def channel_data(self, c: int) -> torch.Tensor:
        return self.data[c].view(-1)

    def size(self) -> int: return self.data.size(0)
    def __len__(self) -> int: return self.data.size(0)
    def __getitem__(self, c: int) -> torch.Tensor: return self.data[c]

    @property
    def rows(self) -> int: return self.data.size(1)
    @property
    def cols(self) -> int: return self.data.size(2)
    @property
    def stride(self) -> int: return self.data.size(2)
    @property
    def dtype(self) -> torch.dtype: return self.data.dtype

    def __repr__(self) -> str:
        return f"{self.name()}(C={len(self)}, H={self.rows}, W={self.cols})"


class RawIntensity(IChannels):
    """
    The image itself as the only channel.
    """
    NumChannels = 1

    def compute(self, image: torch.Tensor) -> torch.Tensor:
        return image.unsqueeze(0).clone()

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None: return


class BitPlanes(IChannels):
    """
    Bit-planes descriptor. The (optionally smoothed) image is census transformed on a 3x3
    neighborhood and each of the 8 comparison bits becomes one channel, smoothed again to make
    the channels differentiable.

    config
    * sigma_ct  - gaussian sigma applied to the image before the census transform (0 to disable)
    * sigma_bp  - gaussian sigma applied to each bit-plane (0 to disable)
    """
    NumChannels = 8
    NEIGHBORS: ClassVar[list[tuple[int, int]]] = [
        (-1, -1), (-1, 0), (-1, 1),
        ( 0, -1),          ( 0, 1),
        ( 1, -1), ( 1, 0), ( 1, 1),
    ]

    def compute(self, image: torch.Tensor) -> torch.Tensor:
        H, W   = image.shape
        sigma_ct = getattr(self.config, "sigma_ct", 0.75)
        sigma_bp = getattr(self.config, "sigma_bp", 1.618)

        center = gaussian_blur(image.unsqueeze(0), sigma_ct)
        padded = F.pad(center.unsqueeze(0), (1, 1, 1, 1), mode="replicate")[0, 0]
        center = center[0]

        planes = torch.stack([
            (padded[1 + dy : 1 + dy + H, 1 + dx : 1 + dx + W] >= center).to(image.dtype)
            for dy, dx in self.NEIGHBORS
        ], dim=0)
        return gaussian_blur(planes, sigma_bp)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, {
            "sigma_ct": lambda s: isinstance(s, (int, float)) and s >= 0.,
            "sigma_bp": lambda s: isinstance(s, (int, float)) and s >= 0.,
        })
