"""
Template (reference) data of a single pyramid level for direct photometric alignment.

`set_data(channels, disparity)` - once per reference frame
    select pixels -> back-project to points -> steepest descent Jacobians & reference pixels

`compute_residuals(channels, pose)` - once per optimizer iteration
    project points under pose -> bilinear interpolation on current channels -> residual per
    (point, channel) and a validity flag per point
"""
import torch
import numpy as np
import jaxtyping as Jt
from typeguard import typechecked
from dataclasses import dataclass
from types import SimpleNamespace

from Utility.Extensions import ConfigTestable
from Utility.PrettyPrint import Logger
from Utility.Timer import Timer
from Utility.Utils import reflect_torch_dtype, ind2sub, StructuralMove

from .Channels import IChannels
from .Disparity import DisparityPyramidLevel
from .Errors import ChannelCountMismatch, ImageTooSmall, ShapeMismatch
from .Executor import IExecutor, SequentialExecutor
from .Observer import IResidualObserver, ResidualReport
from .PixelSelector import get_valid_pixel_locations
from .Storage import ITemplateStorage
from .Warp import IWarp


class TemplateData(ConfigTestable):
    """
    Owns the points, reference pixels and Jacobians of one pyramid level.

    `TemplateData(config, K, baseline, pyr_level)`

    * K         - 3x3 intrinsic of this pyramid level (see `scale_intrinsic`)
    * baseline  - stereo baseline, used by the warp to convert disparity to depth
    * pyr_level - level index, used to read the full resolution disparity map at this level

    config
    * channels  - {type, args} of the IChannels implementation this template accepts
    * warp      - {type} of the IWarp implementation
    * selector  - {nms_radius, min_pixels_for_nms}
    * executor  - {type, args} of the IExecutor running per-channel passes
    * storage   - {type, args} of the ITemplateStorage layout
    * observer  - (optional) {type, args} of an IResidualObserver
    * dtype     - fp32 / fp64, precision of stored data and residuals
    * device    - torch device of stored data
    """
    @Jt.jaxtyped(typechecker=typechecked)
    @dataclass
    class Output:
        residuals: Jt.Float[torch.Tensor, "C N"]    # zero for invalid points
        valid    : Jt.Bool [torch.Tensor, "N"]

        @property
        def flat(self) -> torch.Tensor:
            """Residuals as a N*C channel-major vector."""
            return self.residuals.reshape(-1)

    def __init__(self, config: SimpleNamespace, K: torch.Tensor, baseline: float, pyr_level: int) -> None:
        self.config    = config
        self.pyr_level = pyr_level
        self.dtype     = reflect_torch_dtype(config.dtype)
        self.device    = torch.device(config.device)

        self.channels_type = IChannels.get_class(config.channels.type)
        self.num_channels  = self.channels_type.NumChannels

        self._warp = IWarp.instantiate(config.warp.type, torch.as_tensor(K, dtype=self.dtype, device=self.device), baseline)
        self._storage = ITemplateStorage.instantiate(
            config.storage.type, self.num_channels, self._warp.num_params, 3,
            getattr(config.storage, "args", None), dtype=self.dtype, device=self.device
        )
        self.executor: IExecutor = (
            IExecutor.instantiate(config.executor.type, getattr(config.executor, "args", None))
            if hasattr(config, "executor") else SequentialExecutor()
        )
        self.observer: IResidualObserver | None = (
            IResidualObserver.instantiate(config.observer.type, getattr(config.observer, "args", None))
            if hasattr(config, "observer") and hasattr(config.observer, "type") else None
        )

    def make_channels(self, image: torch.Tensor | np.ndarray) -> IChannels:
        """Build the channels this template accepts from a grayscale image (tensor or numpy array)."""
        return self.channels_type(StructuralMove(image, self.device), getattr(self.config.channels, "args", None))

    ### Extraction

    @Timer.cpu_timeit("TemplateData.set_data")
    @torch.no_grad()
    def set_data(self, channels: IChannels, disparity: torch.Tensor | np.ndarray) -> None:
        """
        Select pixels, compute points, reference pixels and Jacobians of all channels. Replaces the
        previous content of the template. On exception the previous content is kept.
        """
        self._check_channels(channels)
        dmap = DisparityPyramidLevel(StructuralMove(disparity, self.device), self.pyr_level)

        smap = channels.compute_saliency_map().to(self.device)
        do_nonmax_supp = smap.numel() >= self.config.selector.min_pixels_for_nms
        inds = get_valid_pixel_locations(dmap, smap, self.config.selector.nms_radius, do_nonmax_supp)

        stride = smap.size(1)
        ii     = inds.index.to(self.device)
        y, x   = ind2sub(stride, ii)

        points = self._warp.make_point(x, y, inds.disparity)
        Jw     = self._warp.warp_jacobian_at_zero(points)       # N x 2 x P

        N, C, P = points.size(0), len(channels), self._warp.num_params
        pixels    = torch.empty((C, N), dtype=self.dtype, device=self.device)
        jacobians = torch.empty((C, N, P), dtype=self.dtype, device=self.device)

        Fx = self._warp.K[0, 0] * 0.5
        Fy = self._warp.K[1, 1] * 0.5

        def extract_channel(c: int) -> None:
            I  = channels.channel_data(c).to(device=self.device, dtype=self.dtype)
            Ix = I[ii + 1] - I[ii - 1]
            Iy = I[ii + stride] - I[ii - stride]
            image_gradient = torch.stack([Fx * Ix, Fy * Iy], dim=-1).unsqueeze(-2)   # N x 1 x 2

            pixels[c]    = I[ii]
            jacobians[c] = (image_gradient @ Jw).squeeze(-2)

        self.executor.for_each(C, extract_channel)
        self._storage.assign(points, pixels, jacobians)

        if N == 0:
            Logger.write("warn", f"TemplateData(level={self.pyr_level}) extracted no point from {channels}")

    ### Residuals

    @Timer.cpu_timeit("TemplateData.compute_residuals")
    @torch.no_grad()
    def compute_residuals(self, channels: IChannels, pose: torch.Tensor,
                          residuals: torch.Tensor | None = None,
                          valid: torch.Tensor | None = None) -> "TemplateData.Output":
        """
        Residual of every stored point under `pose` (4x4, reference to current camera).

        If given, `residuals` (N*C, template dtype) and `valid` (N, torch.bool) are written in place.
        Invalid points (projected outside of [0, cols-2] x [0, rows-2]) get a residual of 0 on
        all channels.
        """
        self._check_channels(channels)
        rows, cols = channels.rows, channels.cols
        if rows < 2 or cols < 2:
            raise ImageTooSmall(f"Image of {(rows, cols)} cannot hold a 2x2 interpolation footprint")

        N, C = self.num_points(), len(channels)
        residuals = self._output_buffer(residuals, N * C, self.dtype, self.device, "residuals").view(C, N)
        valid     = self._output_buffer(valid, N, torch.bool, self.device, "valid")

        self._warp.set_pose(pose.to(device=self.device, dtype=self.dtype))

        # Geometry pass, finished for all points before any channel is interpolated.
        uv   = self._warp(self._storage.points)
        base = torch.floor(uv + 0.5)
        frac = uv - base
        base = base.long()
        xi, yi = base[:, 0], base[:, 1]
        xf, yf = frac[:, 0], frac[:, 1]

        valid.copy_((xi >= 0) & (xi < cols - 1) & (yi >= 0) & (yi < rows - 1))
        interp_coeffs = torch.stack([
            (1. - yf) * (1. - xf),
            (1. - yf) * xf,
            yf * (1. - xf),
            yf * xf
        ], dim=-1)                                                  # N x 4

        stride = channels.stride
        ii = torch.where(valid, yi * stride + xi, torch.zeros_like(xi))
        footprint = torch.stack([ii, ii + 1, ii + stride, ii + stride + 1], dim=-1)
        reference = self._storage.pixel_planes

        def interpolate_channel(c: int) -> None:
            I  = channels.channel_data(c).to(device=self.device, dtype=self.dtype)
            Iw = (I[footprint] * interp_coeffs).sum(dim=-1)
            residuals[c] = torch.where(valid, Iw - reference[c], torch.zeros_like(Iw))

        self.executor.for_each(C, interpolate_channel)

        if self.observer is not None:
            self.observer.on_residuals(ResidualReport(
                uv=uv, base=base, frac=frac, valid=valid, residuals=residuals, reference=reference
            ))
        return TemplateData.Output(residuals=residuals, valid=valid)

    ### Storage

    def reserve(self, n: int) -> None:
        """Reserve memory for `n` points."""
        self._storage.reserve(n)

    def resize(self, n: int) -> None:
        self._storage.resize(n)

    def clear(self) -> None:
        self._storage.clear()

    def num_points(self) -> int: return self._storage.num_points
    def num_pixels(self) -> int: return self._storage.num_pixels
    def num_jacobians(self) -> int: return self._storage.num_jacobians

    def X(self, i: int) -> torch.Tensor:
        """i-th point"""
        return self._storage.point(i)

    def J(self, i: int, c: int = 0) -> torch.Tensor:
        """Jacobian of i-th point on channel c"""
        return self._storage.jacobian(i, c)

    def I(self, i: int, c: int = 0) -> torch.Tensor:
        """Reference pixel of i-th point on channel c"""
        return self._storage.pixel(i, c)

    @property
    def points(self) -> torch.Tensor: return self._storage.points
    @property
    def pixels(self) -> torch.Tensor: return self._storage.pixels
    @property
    def jacobians(self) -> torch.Tensor: return self._storage.jacobians
    @property
    def storage(self) -> ITemplateStorage: return self._storage
    @property
    def warp(self) -> IWarp: return self._warp

    def close(self) -> None:
        """Shut down the worker threads of the executor, the stored template stays readable."""
        self.executor.close()

    def __repr__(self) -> str:
        return f"TemplateData(level={self.pyr_level}, channels={self.channels_type.name()}, {self._storage})"

    ### Contract checks

    def _check_channels(self, channels: IChannels) -> None:
        if len(channels) != self.num_channels:
            raise ChannelCountMismatch(f"Template expects {self.num_channels} channels ({self.channels_type.name()}), get {len(channels)}")

    @staticmethod
    def _output_buffer(buffer: torch.Tensor | None, size: int, dtype: torch.dtype, device: torch.device, name: str) -> torch.Tensor:
        if buffer is None:
            return torch.empty((size,), dtype=dtype, device=device)
        if buffer.numel() != size or not buffer.is_contiguous():
            raise ShapeMismatch(f"Buffer '{name}' should be contiguous with {size} elements, get {tuple(buffer.shape)}")
        if buffer.dtype != dtype:
            raise ShapeMismatch(f"Buffer '{name}' should be {dtype}, get {buffer.dtype}")
        return buffer.view(-1)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        assert config is not None
        IChannels.is_valid_config(config.channels)
        IWarp.is_valid_config(config.warp)
        ITemplateStorage.is_valid_config(config.storage)
        if hasattr(config, "executor"): IExecutor.is_valid_config(config.executor)
        if hasattr(config, "observer") and hasattr(config.observer, "type"):
            IResidualObserver.is_valid_config(config.observer)

        cls._enforce_config_spec(config.selector, {
            "nms_radius"        : lambda r: isinstance(r, int) and r >= 0,
            "min_pixels_for_nms": lambda n: isinstance(n, int) and n >= 0,
        })
        cls._enforce_config_spec(config.dtype , lambda d: d in {"fp32", "fp64"})
        cls._enforce_config_spec(config.device, lambda d: isinstance(d, str) and (("cuda" in d) or (d == "cpu")))
