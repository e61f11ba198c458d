"""
Provides `TensorArena`, a pre-allocated tensor buffer that grows along the first dimension and keeps
a fixed number of all-zero padding records after the last valid record.

The padding lets vectorized consumers read a full-width block past the end of the data without a
bounds check on the tail.
"""
import math
import torch
from typing import Sequence


class TensorArena:
    def __init__(self,
                 record_shape: Sequence[int],
                 pad: int = 0,
                 dtype: torch.dtype = torch.float32,
                 device: torch.device | str = "cpu") -> None:
        assert pad >= 0, f"Padding of TensorArena must be non-negative, get {pad}"
        self.record_shape   = tuple(record_shape)
        self.pad            = pad
        self.dtype          = dtype
        self.device         = torch.device(device)
        self.current_size   = 0
        self._curr_max_size = 0
        self._tensor        = self._alloc_new_tensor(0)

    def _alloc_new_tensor(self, capacity: int) -> torch.Tensor:
        return torch.zeros((capacity + self.pad, *self.record_shape), dtype=self.dtype, device=self.device)

    def _scale_to(self, capacity: int) -> None:
        new_storage = self._alloc_new_tensor(capacity)
        new_storage.narrow(0, 0, self.current_size).copy_(self._tensor.narrow(0, 0, self.current_size))
        self._tensor = new_storage
        self._curr_max_size = capacity

    def _zero_padding(self) -> None:
        if self.pad == 0: return
        self._tensor.narrow(0, self.current_size, self.pad).zero_()

    @property
    def capacity(self) -> int:
        return self._curr_max_size

    @property
    def tensor(self) -> torch.Tensor:
        """View on the valid records, padding excluded."""
        return self._tensor.narrow(0, 0, self.current_size)

    @property
    def padded(self) -> torch.Tensor:
        """View on the valid records followed by the zero padding records."""
        return self._tensor.narrow(0, 0, self.current_size + self.pad)

    def reserve(self, n: int) -> None:
        if n > self._curr_max_size: self._scale_to(n)

    def resize(self, n: int) -> None:
        if n > self._curr_max_size:
            self._scale_to(int(2 ** math.ceil(math.log2(n))))
        self.current_size = n
        self._zero_padding()

    def clear(self) -> None:
        self.current_size = 0
        self._zero_padding()

    def assign(self, x: torch.Tensor) -> None:
        """Replace the entire content of the arena with `x` (shape N x record_shape)."""
        assert tuple(x.shape[1:]) == self.record_shape, \
            f"TensorArena expect records of shape {self.record_shape}, get {tuple(x.shape[1:])}"
        self.resize(x.size(0))
        self.tensor.copy_(x)

    def __len__(self) -> int:
        return self.current_size + self.pad

    def __getitem__(self, index) -> torch.Tensor:
        return self.padded.__getitem__(index)

    def __repr__(self) -> str:
        return f"TensorArena(alloc={self._curr_max_size}, actual={self.current_size}, pad={self.pad}, record={self.record_shape})"
