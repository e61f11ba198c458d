import argparse
import torch
import pypose as pp
from pathlib import Path

from Module.Template import TemplateData, scale_intrinsic
from Utility.Config import load_config, override_config
from Utility.PrettyPrint import ColoredTqdm, Logger
from Utility.Timer import Timer


parser = argparse.ArgumentParser()
parser.add_argument("--config", type=str, default="./Config/Template/BitPlanes.yaml")
parser.add_argument("--height", type=int, default=480)
parser.add_argument("--width" , type=int, default=640)
parser.add_argument("--levels", type=int, default=3)
parser.add_argument("--iters" , type=int, default=50)
parser.add_argument("--timing", action="store_true", help="Write elapsed time of each call to ./timing.json")
parser.add_argument("--set"   , type=str, nargs="*", default=[], help="Config overrides, e.g. --set dtype=fp64 storage.args.pad=4")
args = parser.parse_args()

Timer.setup(active=True)
cfg, _ = load_config(Path(args.config))
cfg    = override_config(cfg, args.set)
TemplateData.is_valid_config(cfg)

# Synthetic fronto-parallel scene: smooth texture, constant disparity
y, x  = torch.meshgrid(torch.arange(args.height), torch.arange(args.width), indexing="ij")
image = (torch.sin(x * 0.07) * torch.cos(y * 0.05) + 0.3 * torch.rand((args.height, args.width)) + 1.) * 100.
disparity = torch.full((args.height, args.width), 32.)
K = torch.tensor([[320., 0., args.width / 2], [0., 320., args.height / 2], [0., 0., 1.]])
pose = pp.se3(torch.tensor([0.01, -0.005, 0.02, 0.001, 0.002, -0.001])).Exp().matrix()

for level in range(args.levels):
    scale = 1 << level
    level_image = torch.nn.functional.avg_pool2d(image[None, None], scale)[0, 0] if level > 0 else image

    template = TemplateData(cfg, scale_intrinsic(K, level), baseline=0.25, pyr_level=level)
    channels = template.make_channels(level_image)
    with Timer.CPUTimingContext(f"Level{level}.set_data"):
        template.set_data(channels, disparity)
    Logger.write("info", f"{template}")

    residuals = torch.empty((template.num_points() * len(channels),), dtype=template.dtype, device=template.device)
    valid     = torch.empty((template.num_points(),), dtype=torch.bool, device=template.device)
    for _ in ColoredTqdm(range(args.iters), desc=f"Level {level}"):
        with Timer.CPUTimingContext(f"Level{level}.compute_residuals"):
            output = template.compute_residuals(channels, pose, residuals, valid)

    Logger.write("info", f"Level {level}: {int(valid.sum())}/{valid.numel()} valid, mean |r| = {output.residuals.abs().mean().item():.4f}")
    template.close()

Timer.report()
if args.timing: Timer.save_elapsed(Path("./timing.json"))
