import numpy as np
import torch
from typing import Literal


def reflect_torch_dtype(type_string: Literal["fp32", "fp64", "bf16", "fp16"]) -> torch.dtype:
    match type_string:
        case "fp32": return torch.float32
        case "fp64": return torch.float64
        case "bf16": return torch.bfloat16
        case "fp16": return torch.float16
        case default: raise ValueError(f"Expect to be one of fp32/fp64/bf16/fp16, but get `{default}`")


def StructuralMove(obj, device) -> torch.Tensor | list | dict | None:
    """
    Move tensors (or numpy arrays, converted without changing dtype) nested in dict / list to device.
    """
    match obj:
        case obj if torch.is_tensor(obj):
            return obj.to(device)
        case None:
            return None
        case dict():
            return { k: StructuralMove(obj[k], device) for k in obj }
        case list():
            return [ StructuralMove(v, device) for v in obj ]
        case np.ndarray():
            return torch.from_numpy(np.ascontiguousarray(obj)).to(device)
        case _:
            raise ValueError(f"Unable to move type {type(obj)}")


def ind2sub(stride: int, index: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Linear row-major index -> (row, col) given the row stride.
    """
    return torch.div(index, stride, rounding_mode="floor"), torch.remainder(index, stride)
