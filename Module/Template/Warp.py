import torch
import pypose as pp
from abc import ABC, abstractmethod
from types import SimpleNamespace

from Utility.Extensions import ConfigTestableSubclass
from .Errors import ShapeMismatch


class IWarp(ABC, ConfigTestableSubclass):
    """
    Maps a 3D point attached to the reference camera and a candidate pose to a 2D pixel location
    in the current image.

    `IWarp(K, baseline)` - K is the 3x3 intrinsic of the pyramid level the warp works on, baseline
    is the stereo baseline (m) used to turn disparity into depth.

    All operations are batched over N points:

    * make_point(x, y, disparity)       - N, N, N  -> Nx3 points (EDN, reference camera frame)
    * warp_jacobian_at_zero(points)     - Nx3      -> Nx2xP, Jacobian of the normalized image
                                          coordinate w.r.t. the P pose parameters at identity
    * set_pose(pose)                    - 4x4 transform from reference to current camera
    * __call__(points)                  - Nx3      -> Nx2 (u, v) pixel coordinates under current pose
    """
    def __init__(self, K: torch.Tensor, baseline: float) -> None:
        if K.shape != torch.Size([3, 3]):
            raise ShapeMismatch(f"Intrinsic matrix must be 3x3, get {tuple(K.shape)}")
        self._K      = K
        self.baseline = float(baseline)
        self._pose   = torch.eye(4, dtype=K.dtype, device=K.device)

    @property
    def K(self) -> torch.Tensor: return self._K

    @property
    def pose(self) -> torch.Tensor: return self._pose

    @property
    def fx(self) -> float: return self._K[0, 0].item()
    @property
    def fy(self) -> float: return self._K[1, 1].item()

    @property
    @abstractmethod
    def num_params(self) -> int: ...

    def set_pose(self, pose: torch.Tensor) -> None:
        if pose.shape != torch.Size([4, 4]):
            raise ShapeMismatch(f"Pose must be a 4x4 matrix, get {tuple(pose.shape)}")
        self._pose = pose.to(self._K)

    @abstractmethod
    def make_point(self, x: torch.Tensor, y: torch.Tensor, disparity: torch.Tensor) -> torch.Tensor: ...

    @abstractmethod
    def warp_jacobian_at_zero(self, points: torch.Tensor) -> torch.Tensor: ...

    @abstractmethod
    def __call__(self, points: torch.Tensor) -> torch.Tensor: ...


class RigidBodyWarp(IWarp):
    """
    6-DoF rigid body warp. Pose parameters follow the pypose se3 tangent ordering
    (tx, ty, tz, rx, ry, rz) with a left perturbation, i.e. `Exp(xi) @ pose`.
    """
    @property
    def num_params(self) -> int: return 6

    def make_point(self, x: torch.Tensor, y: torch.Tensor, disparity: torch.Tensor) -> torch.Tensor:
        pixels = torch.stack([x, y], dim=-1).to(self._K)
        depth  = (self.fx * self.baseline) / disparity.to(self._K)
        return pp.pixel2point(pixels, depth, self._K)

    def warp_jacobian_at_zero(self, points: torch.Tensor) -> torch.Tensor:
        X, Y, Z = points[..., 0], points[..., 1], points[..., 2]
        inv_z   = 1. / Z
        x, y    = X * inv_z, Y * inv_z

        Jw = torch.empty((*points.shape[:-1], 2, 6), dtype=points.dtype, device=points.device)
        Jw[..., 0, 0] = inv_z
        Jw[..., 0, 1] = 0.
        Jw[..., 0, 2] = -x * inv_z
        Jw[..., 0, 3] = -x * y
        Jw[..., 0, 4] = 1. + x.square()
        Jw[..., 0, 5] = -y

        Jw[..., 1, 0] = 0.
        Jw[..., 1, 1] = inv_z
        Jw[..., 1, 2] = -y * inv_z
        Jw[..., 1, 3] = -(1. + y.square())
        Jw[..., 1, 4] = x * y
        Jw[..., 1, 5] = x
        return Jw

    def __call__(self, points: torch.Tensor) -> torch.Tensor:
        R, t = self._pose[:3, :3], self._pose[:3, 3]
        return pp.point2pixel(points @ R.mT + t, self._K)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None: return
