"""Domain models for batched secret fetching."""
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Union, overload

from .errors import FetchError

SecretValue = Union[bytes, str]


class FetchKey(NamedTuple):
    """Unit of coalescing: one authenticated connection to one endpoint."""
    endpoint_key: str
    credential_ref: Hashable


class CacheKey(NamedTuple):
    """Identity of one cached secret value."""
    endpoint_key: str
    secret_name: str
    credential_ref: Hashable


@dataclass(frozen=True)
class SecretDescriptor:
    """Request for one secret at one endpoint, optionally with a credential handle."""
    endpoint_key: str
    secret_name: str
    credential_ref: Hashable = None

    def __post_init__(self):
        if not self.endpoint_key:
            raise ValueError("endpoint_key cannot be empty")
        if not self.secret_name:
            raise ValueError("secret_name cannot be empty")
        try:
            hash(self.credential_ref)
        except TypeError as e:
            raise ValueError(f"credential_ref must be hashable: {e}") from e

    @property
    def fetch_key(self) -> FetchKey:
        return FetchKey(self.endpoint_key, self.credential_ref)

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(self.endpoint_key, self.secret_name, self.credential_ref)


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached value. Replaced wholesale on refresh."""
    value: SecretValue
    fetched_at: float
    ttl: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        """True once ``ttl`` seconds have passed since ``fetched_at``."""
        return self.ttl is not None and now - self.fetched_at >= self.ttl


@dataclass(frozen=True)
class SecretResult:
    """Outcome for one input descriptor: a value or a typed error."""
    descriptor: SecretDescriptor
    value: Optional[SecretValue] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> Optional[str]:
        """Value decoded as UTF-8, or None on failure."""
        if self.value is None:
            return None
        if isinstance(self.value, bytes):
            return self.value.decode("UTF-8")
        return self.value

    def unwrap(self) -> SecretValue:
        """Return the value or raise the fetch error."""
        if self.error is not None:
            raise self.error
        return self.value


class BatchResult(Sequence[SecretResult]):
    """
    Results of one batch, one entry per input descriptor in input order.

    Duplicate descriptors each get their own entry sharing the same
    value or the same error instance.
    """

    def __init__(self, results: Iterable[SecretResult]):
        self._results: List[SecretResult] = list(results)

    @overload
    def __getitem__(self, index: int) -> SecretResult: ...

    @overload
    def __getitem__(self, index: slice) -> List[SecretResult]: ...

    def __getitem__(self, index):
        return self._results[index]

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[SecretResult]:
        return iter(self._results)

    def __repr__(self) -> str:
        failed = len(self.failures())
        return f"BatchResult(size={len(self)}, failed={failed})"

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self._results)

    def values(self) -> List[Optional[SecretValue]]:
        return [result.value for result in self._results]

    def failures(self) -> List[SecretResult]:
        return [result for result in self._results if not result.ok]

    def as_dict(self) -> Dict[SecretDescriptor, SecretResult]:
        """Map each distinct descriptor to its result."""
        return {result.descriptor: result for result in self._results}

    def raise_for_errors(self) -> None:
        """Raise the first fetch error in input order, if any."""
        for result in self._results:
            if result.error is not None:
                raise result.error

