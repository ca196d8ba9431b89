from __future__ import annotations

import itertools
from contextlib import contextmanager
from typing import Dict, Iterator, Sequence

import torch

from segframe.utils.device import resolve_device
from segframe.utils.errors import AllocationError, LifecycleError
from segframe.utils.logger import get_logger

FLOAT_BYTES = 4


class DeviceBuffer:
    """
    Flat float32 allocation owned by a DeviceArena.
    Access after release raises LifecycleError.
    """

    def __init__(self, handle: int, tensor: torch.Tensor, byte_size: int):
        self.handle = handle
        self.byte_size = byte_size
        self._tensor: torch.Tensor | None = tensor

    @property
    def released(self) -> bool:
        return self._tensor is None

    @property
    def tensor(self) -> torch.Tensor:
        if self._tensor is None:
            raise LifecycleError(f"Device buffer {self.handle} used after release")
        return self._tensor

    @property
    def numel(self) -> int:
        return self.byte_size // FLOAT_BYTES

    def view(self, shape: Sequence[int]) -> torch.Tensor:
        return self.tensor.view(*shape)

    def _drop(self) -> None:
        self._tensor = None

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"DeviceBuffer(handle={self.handle}, bytes={self.byte_size}, {state})"


class DeviceArena:
    """
    Allocates float buffers addressable by both host and accelerator.

    On CUDA the buffers live in device memory; with pinned=True they are
    page-locked host allocations that CUDA kernels can read directly.
    """

    def __init__(self, device: str | torch.device | None = None, pinned: bool = False):
        self.device = resolve_device(device)
        self.pinned = bool(pinned) and torch.cuda.is_available()
        self.logger = get_logger(__name__)
        self._live: Dict[int, DeviceBuffer] = {}
        self._ids = itertools.count(1)

    @property
    def live_count(self) -> int:
        return len(self._live)

    @property
    def live_bytes(self) -> int:
        return sum(buf.byte_size for buf in self._live.values())

    def allocate(self, byte_size: int) -> DeviceBuffer:
        if not isinstance(byte_size, int) or byte_size <= 0:
            raise AllocationError(f"Invalid allocation size: {byte_size!r}")
        if byte_size % FLOAT_BYTES:
            raise AllocationError(f"Allocation size {byte_size} is not a multiple of sizeof(float)")

        numel = byte_size // FLOAT_BYTES
        try:
            if self.pinned:
                tensor = torch.zeros(numel, dtype=torch.float32, pin_memory=True)
            else:
                tensor = torch.zeros(numel, dtype=torch.float32, device=self.device)
        except RuntimeError as exc:
            raise AllocationError(f"Failed to allocate {byte_size} bytes on {self.device}: {exc}") from exc

        buf = DeviceBuffer(next(self._ids), tensor, byte_size)
        self._live[buf.handle] = buf
        self.logger.debug("Allocated %s on %s", buf, self.device)
        return buf

    def release(self, buf: DeviceBuffer) -> None:
        if self._live.pop(buf.handle, None) is None:
            raise LifecycleError(f"Release of unknown or already released buffer {buf.handle}")
        buf._drop()
        self.logger.debug("Released buffer %d (%d bytes)", buf.handle, buf.byte_size)

    def release_all(self) -> None:
        for buf in list(self._live.values()):
            self.release(buf)

    @contextmanager
    def scoped(self, byte_size: int) -> Iterator[DeviceBuffer]:
        buf = self.allocate(byte_size)
        try:
            yield buf
        finally:
            self.release(buf)
