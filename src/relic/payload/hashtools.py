import hashlib
from io import BytesIO
from typing import BinaryIO, Optional, Callable, Generic, TypeVar, Type, Union

from relic.core.lazyio import read_chunks

from relic.payload.errors import HashMismatchError, Sha256MismatchError

_T = TypeVar("_T")

Hashable = Union[BinaryIO, bytes]


class Hasher(Generic[_T]):
    HASHER_NAME = "Hash"

    def __init__(
        self,
        hash_func: Callable[[Hashable], _T],
        error_cls: Type[HashMismatchError] = HashMismatchError,
    ):
        self._hasher = hash_func
        # overridable so callers can tell hash mismatches apart
        self._error = error_cls

    def __call__(self, stream: Hashable) -> _T:
        return self.hash(stream=stream)

    def hash(self, stream: Hashable) -> _T:
        return self._hasher(stream)

    def validate(
        self, stream: Hashable, expected: _T, *, name: Optional[str] = None
    ) -> None:
        result = self.hash(stream=stream)
        if result != expected:
            raise self._error(name or self.HASHER_NAME, result, expected)


def _sha256(stream: Hashable) -> bytes:
    if isinstance(stream, bytes):
        stream = BytesIO(stream)
    hasher = hashlib.sha256()
    for chunk in read_chunks(stream):
        hasher.update(chunk)
    return hasher.digest()


class sha256(Hasher[bytes]):
    HASHER_NAME = "SHA-256"

    def __init__(self) -> None:
        super().__init__(_sha256, error_cls=Sha256MismatchError)


__all__ = ["Hashable", "Hasher", "sha256"]
