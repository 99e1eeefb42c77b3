"""
Flat parameter storage shared by every layer of a network.
"""
import numpy as np

from ..exceptions import ShapeMismatch


class ParameterArena:
    """
    Single flat parameter vector owned by a network.

    Layers never keep references into the vector; they hold an
    ``(offset, size)`` pair and ask the arena for a view whenever they need
    their weights, so the backing vector may be relocated between passes.
    """

    def __init__(self, size=0):
        """
        Initialize the arena.

        Args:
            size (int): Number of parameters to pre-allocate
        """
        self.total = 0
        self.data = np.zeros(size)

    def allocate(self, size):
        """
        Reserve a contiguous region.

        Args:
            size (int): Number of parameters in the region

        Returns:
            int: Offset of the region in the flat vector
        """
        offset = self.total
        self.total += int(size)
        return offset

    def finalize(self):
        """Grow the backing vector to cover every allocated region."""
        if self.data.size < self.total:
            data = np.zeros(self.total)
            data[:self.data.size] = self.data
            self.data = data
        return self

    def view(self, offset, size):
        """
        Return a writable view of a region.

        Args:
            offset (int): Region offset
            size (int): Region length

        Returns:
            ndarray: 1-D view into the backing vector
        """
        if offset + size > self.data.size:
            raise ShapeMismatch(
                f"Region [{offset}, {offset + size}) exceeds arena of size "
                f"{self.data.size}")
        return self.data[offset:offset + size]

    def relocate(self, data):
        """
        Replace the backing vector with ``data`` (no copy).

        Args:
            data (ndarray): 1-D float vector of the same size
        """
        data = np.asarray(data, dtype=float)
        if data.ndim != 1 or data.size != self.data.size:
            raise ShapeMismatch(
                f"Cannot relocate arena of size {self.data.size} to an array "
                f"of shape {data.shape}")
        self.data = data

    def __len__(self):
        return self.data.size

    def __repr__(self):
        return f"ParameterArena(size={self.data.size})"
