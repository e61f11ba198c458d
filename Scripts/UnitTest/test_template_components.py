import torch
import pytest
import threading
import pypose as pp
from types import SimpleNamespace

from Utility.Extensions import TensorArena
from Utility.Utils import ind2sub, reflect_torch_dtype
from Module.Template import (
    IChannels, RawIntensity, BitPlanes, IWarp, RigidBodyWarp, IExecutor, ThreadedExecutor,
    DisparityPyramidLevel, scale_intrinsic, get_valid_pixel_locations, ValidPixelPredicate,
    DisparityTypeError, ShapeMismatch, ImageTooSmall
)
from Module.Template.PixelSelector import strict_local_max


def test_arena_padding():
    arena = TensorArena((3,), pad=2, dtype=torch.float64)
    assert len(arena) == 2
    assert arena.padded.shape == torch.Size([2, 3])

    arena.assign(torch.ones((5, 3), dtype=torch.float64))
    assert arena.capacity == 8
    assert len(arena) == 7
    assert (arena[5:] == 0.).all()

    # Shrinking re-zeroes the records that become padding
    arena.resize(3)
    assert arena.tensor.shape == torch.Size([3, 3])
    assert (arena.padded[3:] == 0.).all()
    assert arena.capacity == 8


def test_arena_reserve_keeps_content():
    arena = TensorArena((), pad=1)
    arena.assign(torch.arange(4, dtype=torch.float32))
    arena.reserve(100)
    assert arena.capacity == 100
    assert torch.equal(arena.tensor, torch.arange(4, dtype=torch.float32))
    assert arena[4].item() == 0.


def test_ind2sub():
    y, x = ind2sub(7, torch.tensor([0, 6, 7, 15, 48]))
    assert y.tolist() == [0, 0, 1, 2, 6]
    assert x.tolist() == [0, 6, 0, 1, 6]


def test_reflect_dtype():
    assert reflect_torch_dtype("fp64") == torch.float64
    with pytest.raises(ValueError):
        reflect_torch_dtype("fp8")  # type: ignore


def test_scale_intrinsic():
    K = torch.tensor([[320., 0., 320.], [0., 320., 240.], [0., 0., 1.]])
    K2 = scale_intrinsic(K, 2)
    assert torch.allclose(K2, torch.tensor([[80., 0., 80.], [0., 80., 60.], [0., 0., 1.]]))
    assert K[0, 0].item() == 320.


def test_disparity_pyramid_level():
    D = torch.arange(64, dtype=torch.float32).view(8, 8)
    level = DisparityPyramidLevel(D, 1)
    view  = level.as_tensor()
    assert view.shape == torch.Size([4, 4])
    assert view[1, 2].item() == pytest.approx(D[2, 4].item() / 2.)
    assert torch.equal(view, D[::2, ::2] / 2.)

    # Odd sizes round up, the last row / column of the level is still read
    assert DisparityPyramidLevel(torch.ones((7, 5)), 1).as_tensor().shape == torch.Size([4, 3])

    with pytest.raises(DisparityTypeError):
        DisparityPyramidLevel(D.long(), 0)
    with pytest.raises(ShapeMismatch):
        DisparityPyramidLevel(D.view(1, 1, 8, 8), 0)


def test_strict_local_max():
    smap = torch.zeros((7, 7))
    smap[3, 3] = 2.
    smap[3, 4] = 1.
    smap[0, 0] = 5.
    mask = strict_local_max(smap, 1)
    assert mask[3, 3] and mask[0, 0]
    assert not mask[3, 4]
    # Plateaus are never strict maxima
    assert not mask[6, 6]


def test_valid_pixel_predicate():
    dmap = torch.tensor([[1., 0.], [float("inf"), 2.]])
    smap = torch.zeros((2, 2))
    is_valid = ValidPixelPredicate(dmap, smap, -1)
    assert is_valid.mask.tolist() == [[True, False], [False, True]]

    # With NMS on, a flat saliency map has no strict maximum
    assert not ValidPixelPredicate(dmap, smap, 0).mask.any()


def test_selection_border():
    rows, cols = 10, 12
    smap = torch.rand((rows, cols))
    dmap = DisparityPyramidLevel(torch.ones((rows, cols)), 0)

    locations = get_valid_pixel_locations(dmap, smap, nms_radius=3, do_nonmax_supp=False)
    y, x = ind2sub(cols, locations.index)
    assert len(locations) == (rows - 7) * (cols - 7)
    assert y.min().item() == 3 and y.max().item() == rows - 5
    assert x.min().item() == 3 and x.max().item() == cols - 5
    assert (locations.index[1:] > locations.index[:-1]).all()

    with pytest.raises(ImageTooSmall):
        get_valid_pixel_locations(dmap, smap, nms_radius=5, do_nonmax_supp=False)


def test_channels_registry():
    image = torch.rand((12, 12))
    assert isinstance(IChannels.instantiate("RawIntensity", image), RawIntensity)
    assert set(IChannels.registered()) >= {"RawIntensity", "BitPlanes"}
    with pytest.raises(KeyError):
        IChannels.instantiate("Census", image)


def test_raw_intensity_accepts_uint8():
    image    = (torch.rand((1, 12, 12)) * 255).to(torch.uint8)
    channels = RawIntensity(image)
    assert len(channels) == 1
    assert channels.dtype == torch.float32
    assert channels.channel_data(0).shape == torch.Size([144])
    assert torch.equal(channels[0], image[0].float())


def test_bitplanes():
    image    = torch.rand((20, 24), dtype=torch.float64)
    channels = BitPlanes(image)
    assert len(channels) == 8
    assert (channels.rows, channels.cols, channels.stride) == (20, 24, 24)
    assert channels.data.is_contiguous()
    assert ((channels.data >= -1e-9) & (channels.data <= 1. + 1e-9)).all()

    saliency = channels.compute_saliency_map()
    assert saliency.shape == torch.Size([20, 24])
    assert (saliency[0] == 0.).all() and (saliency[:, -1] == 0.).all()

    with pytest.raises(ShapeMismatch):
        BitPlanes(torch.rand((2, 8, 8)))


def test_bitplanes_census_bits():
    image = torch.zeros((5, 5))
    image[2, 2] = 1.
    channels = BitPlanes(image, SimpleNamespace(sigma_ct=0., sigma_bp=0.))
    # The bright center is larger than every neighbor, every neighbor is >= the dark surround
    assert (channels.data[:, 2, 2] == 0.).all()
    assert (channels.data[:, 0, 0] == 1.).all()


def test_rigid_body_warp_round_trip():
    K    = torch.tensor([[50., 0., 20.], [0., 40., 15.], [0., 0., 1.]], dtype=torch.float64)
    warp = IWarp.instantiate("RigidBodyWarp", K, 0.2)
    assert isinstance(warp, RigidBodyWarp) and warp.num_params == 6

    x = torch.tensor([3., 10., 25.], dtype=torch.float64)
    y = torch.tensor([4., 12., 20.], dtype=torch.float64)
    d = torch.tensor([1., 2., 4.], dtype=torch.float64)
    points = warp.make_point(x, y, d)
    assert torch.allclose(points[:, 2], 50. * 0.2 / d)
    assert torch.allclose(warp(points), torch.stack([x, y], dim=-1))

    pose = pp.se3(torch.tensor([0.1, -0.2, 0.3, 0.05, 0.02, -0.01], dtype=torch.float64)).Exp().matrix()
    warp.set_pose(pose)
    expect = pp.point2pixel(pp.mat2SE3(pose).Act(points), K)
    assert torch.allclose(warp(points), expect)

    with pytest.raises(ShapeMismatch):
        warp.set_pose(torch.eye(3))
    with pytest.raises(ShapeMismatch):
        RigidBodyWarp(torch.eye(4), 0.1)


def test_warp_jacobian_against_finite_difference():
    K    = torch.eye(3, dtype=torch.float64)
    warp = RigidBodyWarp(K, 1.)
    points = torch.tensor([[0.3, -0.2, 2.], [-1., 0.5, 4.]], dtype=torch.float64)
    Jw = warp.warp_jacobian_at_zero(points)

    def project(xi: torch.Tensor) -> torch.Tensor:
        moved = pp.se3(xi).Exp().Act(points)
        return moved[..., :2] / moved[..., 2:]

    eps = 1e-6
    for k in range(6):
        xi = torch.zeros(6, dtype=torch.float64)
        xi[k] = eps
        numeric = (project(xi) - project(-xi)) / (2 * eps)
        assert torch.allclose(Jw[..., k], numeric, atol=1e-6)


def test_threaded_executor_visits_all():
    visited = [0] * 32
    def visit(i: int) -> None: visited[i] += 1

    IExecutor.instantiate("ThreadedExecutor", None).for_each(32, visit)
    assert visited == [1] * 32

    def fail(i: int) -> None:
        if i == 3: raise RuntimeError("worker failed")
    with ThreadedExecutor() as executor, pytest.raises(RuntimeError):
        executor.for_each(8, fail)


def test_threaded_executor_reuses_pool():
    executor = ThreadedExecutor(SimpleNamespace(max_workers=2))
    workers: set[str] = set()
    lock = threading.Lock()
    def visit(i: int) -> None:
        with lock: workers.add(threading.current_thread().name)

    executor.for_each(16, visit)
    pool = executor._pool
    assert pool is not None
    executor.for_each(16, visit)
    assert executor._pool is pool
    # Both calls ran on the same two worker threads
    assert len(workers) <= 2
    assert all(name.startswith("TemplateExecutor") for name in workers)

    executor.close()
    assert executor._pool is None
    executor.close()

    # A closed executor starts a fresh pool on the next call
    executor.for_each(4, visit)
    assert executor._pool is not None and executor._pool is not pool
    executor.close()


def test_sequential_when_single_worker():
    with ThreadedExecutor(SimpleNamespace(max_workers=1)) as executor:
        order: list[int] = []
        executor.for_each(5, order.append)
        assert order == [0, 1, 2, 3, 4]
        assert executor._pool is None


def test_timer_records_calls():
    from Utility.Timer import Timer
    from Module.Template import TemplateData
    from Utility.Config import build_dynamic_config

    cfg, _ = build_dynamic_config(dict(
        channels=dict(type="RawIntensity"), warp=dict(type="RigidBodyWarp"),
        selector=dict(nms_radius=1, min_pixels_for_nms=76800),
        storage=dict(type="ChannelMajorStorage", args=dict(pad=1)),
        dtype="fp32", device="cpu",
    ))
    template = TemplateData(cfg, torch.tensor([[10., 0., 4.], [0., 10., 4.], [0., 0., 1.]]), 0.1, 0)
    channels = RawIntensity(torch.rand((8, 8)))

    Timer.setup(active=True)
    try:
        template.set_data(channels, torch.ones((8, 8)))
        for _ in range(3): template.compute_residuals(channels, torch.eye(4))
        assert len(Timer.elapsed("TemplateData.set_data")) == 1
        assert len(Timer.elapsed("TemplateData.compute_residuals")) == 3
        Timer.report()
    finally:
        Timer.reset()
        Timer.setup(active=False)
    assert Timer.elapsed("TemplateData.set_data") == []
