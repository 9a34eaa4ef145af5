"""
Module: sd_sampler.tensor
Purpose: Dense flat tensor buffer with an explicit shape
Dependencies: numpy, PIL

Every value exchanged with the inference engines (token ids, conditioning,
latents, decoded pixels) travels as a Tensor. Elementwise math works on the
flat buffer directly, so the scheduler never depends on how an engine lays
out its own tensors.
"""

from typing import List, Sequence, Tuple, Union
import logging

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]


class Tensor:
    """
    Flat numeric buffer plus shape.

    Attributes:
        data: One-dimensional numpy array holding the elements in C order
        shape: Ordered dimension sizes; their product equals len(data)

    Example:
        >>> t = Tensor.zeros((1, 4, 64, 64))
        >>> t.size
        16384
        >>> t.to_array().shape
        (1, 4, 64, 64)
    """

    __slots__ = ("data", "shape")

    def __init__(
        self,
        data: Union[np.ndarray, Sequence[float]],
        shape: Sequence[int],
        dtype: Union[str, np.dtype] = np.float32,
    ):
        shape = tuple(int(d) for d in shape)
        if any(d < 0 for d in shape):
            raise ValueError(f"Negative dimension in shape {shape}")

        buffer = np.ascontiguousarray(data, dtype=dtype).reshape(-1)
        expected = int(np.prod(shape, dtype=np.int64))
        if buffer.size != expected:
            raise ValueError(
                f"Buffer holds {buffer.size} elements but shape {shape} needs {expected}"
            )

        self.data = buffer
        self.shape = shape

    @classmethod
    def zeros(cls, shape: Sequence[int], dtype: Union[str, np.dtype] = np.float32) -> "Tensor":
        shape = tuple(shape)
        return cls(np.zeros(int(np.prod(shape, dtype=np.int64)), dtype=dtype), shape, dtype=dtype)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Tensor":
        """Wrap an n-dimensional array, keeping its dtype."""
        array = np.asarray(array)
        return cls(array, array.shape, dtype=array.dtype)

    @property
    def size(self) -> int:
        return self.data.size

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def ndim(self) -> int:
        return len(self.shape)

    def to_array(self) -> np.ndarray:
        """Return an n-dimensional view over the flat buffer."""
        return self.data.reshape(self.shape)

    def copy(self) -> "Tensor":
        return Tensor(self.data.copy(), self.shape, dtype=self.data.dtype)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.data, other.data)

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape}, dtype={self.data.dtype})"


def tensor_to_images(pixels: Tensor) -> List[Image.Image]:
    """
    Convert decoded pixels to RGB PIL images.

    Args:
        pixels: Tensor of shape (batch, 3, height, width), values in [0, 1]

    Returns:
        One PIL image per batch entry, each of size (width, height)

    Raises:
        ValueError: If the tensor is not a batch of 3-channel images
    """
    if pixels.ndim != 4 or pixels.shape[1] != 3:
        raise ValueError(f"Expected (batch, 3, height, width) pixels, got {pixels.shape}")

    array = np.clip(pixels.to_array().astype(np.float32), 0.0, 1.0)
    # NCHW -> NHWC
    array = (array.transpose(0, 2, 3, 1) * 255).round().astype(np.uint8)

    images = [Image.fromarray(frame) for frame in array]
    logger.debug(f"Converted {len(images)} decoded frame(s) to images")
    return images
