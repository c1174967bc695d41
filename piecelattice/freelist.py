"""A chunked pool of reusable objects."""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class FreeList(Generic[T]):
    """Allocates objects a chunk at a time and reuses the chunks after ``free``.

    ``factory`` builds a fresh, zero-state object; ``free`` resets every used
    slot with it so later allocations come back in their initial state.
    """

    def __init__(self, chunk_size: int, factory: Callable[[], T]) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size
        self._factory = factory
        self._chunks: list[list[T]] = []
        self._chunk_index = 0
        self._element_index = 0

    def _new_chunk(self) -> list[T]:
        return [self._factory() for _ in range(self._chunk_size)]

    def free(self) -> None:
        """Forget all allocations, keeping the chunks for reuse."""
        used = min(self._chunk_index + 1, len(self._chunks))
        for chunk_number in range(used):
            self._chunks[chunk_number] = self._new_chunk()
        self._chunk_index = 0
        self._element_index = 0

    def __len__(self) -> int:
        return self._chunk_size * self._chunk_index + self._element_index

    def __getitem__(self, index: int) -> T:
        if not 0 <= index < len(self):
            raise IndexError("FreeList index out of range")
        chunk_number, offset = divmod(index, self._chunk_size)
        return self._chunks[chunk_number][offset]

    def allocate(self) -> T:
        """Hand out the next slot, growing by one chunk when needed."""
        if self._element_index >= self._chunk_size:
            self._chunk_index += 1
            self._element_index = 0
        if self._chunk_index == len(self._chunks):
            self._chunks.append(self._new_chunk())
        result = self._chunks[self._chunk_index][self._element_index]
        self._element_index += 1
        return result