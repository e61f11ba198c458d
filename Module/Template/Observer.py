import torch
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import SimpleNamespace

from Utility.Extensions import ConfigTestableSubclass
from Utility.PrettyPrint import Logger


@dataclass
class ResidualReport:
    uv       : torch.Tensor     # Nx2, projected (x, y) under the candidate pose
    base     : torch.Tensor     # Nx2, torch.long, rounded base cell (xi, yi)
    frac     : torch.Tensor     # Nx2, fractional offset w.r.t. base cell
    valid    : torch.Tensor     # N  , torch.bool
    residuals: torch.Tensor     # CxN
    reference: torch.Tensor     # CxN, stored reference pixels


class IResidualObserver(ABC, ConfigTestableSubclass):
    """
    Optional hook attached to a template data. When attached, it is called once at the end of every
    residual evaluation. Nothing is assembled when no observer is attached.
    """
    def __init__(self, config: SimpleNamespace | None = None) -> None:
        self.config = config if config is not None else SimpleNamespace()

    @abstractmethod
    def on_residuals(self, report: ResidualReport) -> None: ...


class LoggingObserver(IResidualObserver):
    """
    Warns about points whose fractional offset or residual is larger than a threshold.

    config
    * frac_threshold     - threshold on |xf| or |yf|
    * residual_threshold - threshold on |residual| of valid points
    * max_lines          - report at most this many offending points per call
    """
    def on_residuals(self, report: ResidualReport) -> None:
        frac_thresh = getattr(self.config, "frac_threshold", 1e-3)
        res_thresh  = getattr(self.config, "residual_threshold", 1e-3)
        max_lines   = getattr(self.config, "max_lines", 5)

        frac_bad = (report.frac.abs() > frac_thresh).any(dim=-1)
        res_bad  = (report.residuals.abs() > res_thresh).any(dim=0) & report.valid
        if not (frac_bad.any() or res_bad.any()): return

        Logger.write("warn", f"Residual evaluation: {int(frac_bad.sum())} points off-grid, "
                             f"{int(res_bad.sum())} points above residual threshold, "
                             f"{int(report.valid.sum())}/{report.valid.size(0)} valid")
        for i in torch.nonzero(frac_bad | res_bad).flatten()[:max_lines].tolist():
            Logger.write("warn", f"\t#{i} ({report.uv[i, 0].item():.4f},{report.uv[i, 1].item():.4f}) -> "
                                 f"({report.base[i, 0].item()},{report.base[i, 1].item()}) "
                                 f"frac=({report.frac[i, 0].item():.4f},{report.frac[i, 1].item():.4f}) "
                                 f"max|r|={report.residuals[:, i].abs().max().item():.4f}")

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, {
            "frac_threshold"    : lambda v: isinstance(v, (int, float)) and v >= 0.,
            "residual_threshold": lambda v: isinstance(v, (int, float)) and v >= 0.,
            "max_lines"         : lambda v: isinstance(v, int) and v >= 0,
        })


class RecordingObserver(IResidualObserver):
    """
    Keeps the last `max_records` reports (cloned) in memory for offline inspection.
    """
    def __init__(self, config: SimpleNamespace | None = None) -> None:
        super().__init__(config)
        self.records: list[ResidualReport] = []

    def on_residuals(self, report: ResidualReport) -> None:
        max_records = getattr(self.config, "max_records", 16)
        self.records.append(ResidualReport(**{k: v.clone() for k, v in vars(report).items()}))
        if len(self.records) > max_records: self.records.pop(0)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, {
            "max_records": lambda v: isinstance(v, int) and v > 0,
        })
