"""
Storage of the template: points, reference pixels and steepest descent Jacobians kept as three
parallel arrays (structure of arrays) that are always resized together.

For N points and C channels

* points     - N records of shape (point_dim,)
* pixels     - N*C scalar records
* jacobians  - N*C records of shape (P,), followed by `pad` all-zero records

The pixel / jacobian of (point i, channel c) lives at flat offset `layout.offset(i, c)`. The
layout is a policy, `ChannelMajorStorage` (c*N + i) is what the residual evaluation is tuned for.
"""
import torch
from abc import ABC, abstractmethod
from types import SimpleNamespace

from Utility.Extensions import ConfigTestableSubclass, TensorArena
from .Errors import ShapeMismatch


_PAD_SPEC = {
    "pad": lambda v: isinstance(v, int) and v >= 0,
}


class ITemplateStorage(ABC, ConfigTestableSubclass):
    """
    config
    * pad   - number of zero Jacobian records kept after the last real one. Use the width of the
              widest vector load done by the consumer of `jacobians`, 1 reproduces a single sentinel.
    """
    def __init__(self, num_channels: int, num_params: int, point_dim: int,
                 config: SimpleNamespace | None = None,
                 dtype: torch.dtype = torch.float32, device: torch.device | str = "cpu") -> None:
        self.config       = config if config is not None else SimpleNamespace()
        self.num_channels = num_channels
        self.num_params   = num_params

        pad = getattr(self.config, "pad", 1)
        self._points    = TensorArena((point_dim,), pad=0, dtype=dtype, device=device)
        self._pixels    = TensorArena((), pad=0, dtype=dtype, device=device)
        self._jacobians = TensorArena((num_params,), pad=pad, dtype=dtype, device=device)

    ### Layout policy
    @abstractmethod
    def offset(self, i: int, c: int) -> int: ...

    @abstractmethod
    def _flatten(self, planes: torch.Tensor) -> torch.Tensor:
        """CxNx... channel-major planes -> (N*C)x... records in this layout."""
        ...

    @abstractmethod
    def _unflatten(self, records: torch.Tensor) -> torch.Tensor:
        """(N*C)x... records in this layout -> CxNx... view."""
        ...

    ### Sizes
    @property
    def num_points(self) -> int: return self._points.current_size
    @property
    def num_pixels(self) -> int: return self._pixels.current_size
    @property
    def num_jacobians(self) -> int: return len(self._jacobians)
    @property
    def pad(self) -> int: return self._jacobians.pad

    def reserve(self, n: int) -> None:
        self._points.reserve(n)
        self._pixels.reserve(n * self.num_channels)
        self._jacobians.reserve(n * self.num_channels)

    def resize(self, n: int) -> None:
        self._points.resize(n)
        self._pixels.resize(n * self.num_channels)
        self._jacobians.resize(n * self.num_channels)

    def clear(self) -> None:
        self._points.clear()
        self._pixels.clear()
        self._jacobians.clear()

    def assign(self, points: torch.Tensor, pixels: torch.Tensor, jacobians: torch.Tensor) -> None:
        """
        Replace the whole content of storage.

        points - Nxpoint_dim, pixels - CxN, jacobians - CxNxP (channel-major planes)
        """
        N, C, P = points.size(0), self.num_channels, self.num_params
        if pixels.shape != torch.Size([C, N]):
            raise ShapeMismatch(f"Expect pixels of shape {(C, N)}, get {tuple(pixels.shape)}")
        if jacobians.shape != torch.Size([C, N, P]):
            raise ShapeMismatch(f"Expect jacobians of shape {(C, N, P)}, get {tuple(jacobians.shape)}")

        self._points.assign(points)
        self._pixels.assign(self._flatten(pixels))
        self._jacobians.assign(self._flatten(jacobians))

    ### Access
    @property
    def points(self) -> torch.Tensor: return self._points.tensor

    @property
    def pixels(self) -> torch.Tensor:
        """Flat N*C reference pixels in storage layout."""
        return self._pixels.tensor

    @property
    def jacobians(self) -> torch.Tensor:
        """Flat (N*C + pad)xP jacobians in storage layout, padding included."""
        return self._jacobians.padded

    @property
    def pixel_planes(self) -> torch.Tensor:
        """CxN view on reference pixels."""
        return self._unflatten(self._pixels.tensor)

    @property
    def jacobian_planes(self) -> torch.Tensor:
        """CxNxP view on jacobians, padding excluded."""
        return self._unflatten(self._jacobians.tensor)

    def point(self, i: int) -> torch.Tensor: return self._points.tensor[i]
    def pixel(self, i: int, c: int) -> torch.Tensor: return self._pixels.tensor[self.offset(i, c)]
    def jacobian(self, i: int, c: int) -> torch.Tensor: return self._jacobians.tensor[self.offset(i, c)]

    def __repr__(self) -> str:
        return f"{self.name()}(N={self.num_points}, C={self.num_channels}, P={self.num_params}, pad={self.pad})"


class ChannelMajorStorage(ITemplateStorage):
    """(point i, channel c) at c*N + i. All points of channel 0 first, then channel 1, ..."""
    def offset(self, i: int, c: int) -> int:
        return c * self.num_points + i

    def _flatten(self, planes: torch.Tensor) -> torch.Tensor:
        return planes.reshape(-1, *planes.shape[2:])

    def _unflatten(self, records: torch.Tensor) -> torch.Tensor:
        return records.view(self.num_channels, self.num_points, *records.shape[1:])

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, _PAD_SPEC)


class PointMajorStorage(ITemplateStorage):
    """(point i, channel c) at i*C + c. All channels of point 0 first, then point 1, ..."""
    def offset(self, i: int, c: int) -> int:
        return i * self.num_channels + c

    def _flatten(self, planes: torch.Tensor) -> torch.Tensor:
        return planes.transpose(0, 1).reshape(-1, *planes.shape[2:])

    def _unflatten(self, records: torch.Tensor) -> torch.Tensor:
        return records.view(self.num_points, self.num_channels, *records.shape[1:]).transpose(0, 1)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, _PAD_SPEC)
