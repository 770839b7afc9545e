"""Batch secret fetching: each endpoint/credential pair is contacted once at a time."""
import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Union

from ..domains.cache import SecretCache
from ..domains.coalescer import FetchCoalescer
from ..domains.errors import AuthError, FetchError, NotFoundError, TransientError
from ..domains.models import BatchResult, CacheKey, FetchKey, SecretDescriptor, SecretResult, SecretValue
from ..domains.providers import BatchSecretProvider, SecretProvider

logger = logging.getLogger(__name__)

Outcome = Union[SecretValue, FetchError]


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    try:
        return await asyncio.shield(work)
    except asyncio.CancelledError:
        # A worker thread cannot be interrupted; stay in flight until it returns
        while not work.done():
            try:
                await asyncio.wait({work})
            except asyncio.CancelledError:
                continue
        if not work.cancelled():
            work.exception()
        raise


def _unexpected(key: FetchKey, secret_name: Optional[str], exc: Exception) -> TransientError:
    logger.warning(f"Unexpected provider error for {key.endpoint_key}: {exc!r}")
    error = TransientError(
        f"Unexpected provider error: {exc}",
        endpoint_key=key.endpoint_key,
        secret_name=secret_name,
    )
    error.__cause__ = exc
    return error


class MultiSecretFetcher:
    """
    Resolve batches of secret descriptors against one provider.

    Descriptors are grouped by (endpoint, credential). Each group is served
    from the cache where possible; the remaining names are fetched through the
    coalescer so concurrent batches share one provider round trip per group.
    Failures are reported per descriptor and never abort other groups.
    """

    def __init__(
        self,
        provider: SecretProvider,
        cache: Optional[SecretCache] = None,
        coalescer: Optional[FetchCoalescer] = None,
        ttl: Optional[float] = None,
        max_retries: int = 0,
        retry_backoff: float = 0.5,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.provider = provider
        self.cache = cache if cache is not None else SecretCache()
        self.coalescer = coalescer if coalescer is not None else FetchCoalescer()
        self.ttl = ttl
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    async def fetch_all(self, descriptors: Iterable[SecretDescriptor]) -> BatchResult:
        """
        Fetch every descriptor, one result per input in input order.

        Args:
            descriptors: Secrets to resolve; duplicates are allowed

        Returns:
            BatchResult whose entries carry either a value or a FetchError
        """
        descriptors = list(descriptors)
        groups: Dict[FetchKey, Dict[str, None]] = {}
        for descriptor in descriptors:
            groups.setdefault(descriptor.fetch_key, {})[descriptor.secret_name] = None

        logger.debug(f"Fetching {len(descriptors)} secret(s) across {len(groups)} endpoint group(s)")
        keys = list(groups)
        resolved = await asyncio.gather(*(self._resolve_group(key, list(groups[key])) for key in keys))
        outcomes = dict(zip(keys, resolved))

        results: List[SecretResult] = []
        for descriptor in descriptors:
            outcome = outcomes[descriptor.fetch_key][descriptor.secret_name]
            if isinstance(outcome, FetchError):
                results.append(SecretResult(descriptor, error=outcome))
            else:
                results.append(SecretResult(descriptor, value=outcome))
        return BatchResult(results)

    def fetch_all_sync(self, descriptors: Iterable[SecretDescriptor]) -> BatchResult:
        """Blocking variant of fetch_all. Must not be called from a running event loop."""
        return asyncio.run(self.fetch_all(descriptors))

    async def fetch_one(self, descriptor: SecretDescriptor) -> SecretValue:
        """Fetch a single secret, raising its FetchError on failure."""
        batch = await self.fetch_all([descriptor])
        return batch[0].unwrap()

    def invalidate(self, endpoint_key: str, secret_name: str, credential_ref: Hashable = None) -> None:
        """Drop a cached value so the next request fetches it again."""
        self.cache.invalidate(CacheKey(endpoint_key, secret_name, credential_ref))

    async def _resolve_group(self, key: FetchKey, names: List[str]) -> Dict[str, Outcome]:
        resolved: Dict[str, Outcome] = {}
        pending = names
        retries = 0

        while pending:
            pending = self._take_cached(key, pending, resolved)
            if not pending:
                break

            requested = tuple(pending)
            try:
                outcomes = await self.coalescer.run_once(key, partial(self._produce, key, requested))
            except FetchError as e:
                outcomes = {name: e for name in requested}

            # A joined flight started by another batch may not cover every name
            pending = [name for name in requested if name not in outcomes]
            if pending:
                logger.debug(f"{len(pending)} secret(s) for {key.endpoint_key} not covered by joined fetch")

            transient = []
            for name in requested:
                if name not in outcomes:
                    continue
                outcome = outcomes[name]
                if isinstance(outcome, FetchError) and outcome.retryable and retries < self.max_retries:
                    transient.append(name)
                else:
                    resolved[name] = outcome

            if transient:
                retries += 1
                delay = self.retry_backoff * (2 ** (retries - 1))
                logger.warning(
                    f"Transient failure for {len(transient)} secret(s) from {key.endpoint_key}, "
                    f"retry {retries}/{self.max_retries} in {delay}s"
                )
                await asyncio.sleep(delay)
                pending = pending + transient

        return resolved

    def _take_cached(self, key: FetchKey, names: Sequence[str], resolved: Dict[str, Outcome]) -> List[str]:
        """Move fresh cached values into ``resolved`` and return the names still missing."""
        now = self.cache.clock()
        missing = []
        for name in names:
            entry = self.cache.get(CacheKey(key.endpoint_key, name, key.credential_ref))
            if entry is not None and not entry.is_expired(now):
                resolved[name] = entry.value
            else:
                missing.append(name)
        return missing

    async def _produce(self, key: FetchKey, names: Sequence[str]) -> Dict[str, Outcome]:
        if isinstance(self.provider, BatchSecretProvider):
            outcomes = await self._fetch_batch(self.provider.fetch_many, key, names)
        else:
            outcomes = await self._fetch_each(key, names)

        # Written before the outcome is fanned out to waiters
        for name, outcome in outcomes.items():
            if not isinstance(outcome, FetchError):
                self.cache.put(CacheKey(key.endpoint_key, name, key.credential_ref), outcome, self.ttl)
        return outcomes

    async def _fetch_each(self, key: FetchKey, names: Sequence[str]) -> Dict[str, Outcome]:
        outcomes: Dict[str, Outcome] = {}
        for index, name in enumerate(names):
            try:
                outcomes[name] = await _call(self.provider.fetch, key.endpoint_key, name, key.credential_ref)
            except AuthError as e:
                # Rejected credentials fail every remaining name on this connection
                logger.warning(f"Credentials rejected by {key.endpoint_key}: {e}")
                for remaining in names[index:]:
                    outcomes[remaining] = e
                break
            except FetchError as e:
                logger.debug(f"Fetch of {name} from {key.endpoint_key} failed: {e}")
                outcomes[name] = e
            except Exception as e:
                outcomes[name] = _unexpected(key, name, e)
        return outcomes

    async def _fetch_batch(self, fetch_many: Callable[..., Any], key: FetchKey, names: Sequence[str]) -> Dict[str, Outcome]:
        try:
            raw = await _call(fetch_many, key.endpoint_key, list(names), key.credential_ref)
        except FetchError as e:
            logger.debug(f"Batch fetch from {key.endpoint_key} failed: {e}")
            return {name: e for name in names}
        except Exception as e:
            error = _unexpected(key, None, e)
            return {name: error for name in names}

        outcomes: Dict[str, Outcome] = {}
        for name in names:
            if name in raw:
                outcomes[name] = raw[name]
            else:
                outcomes[name] = NotFoundError(
                    f"Secret '{name}' missing from batch response",
                    endpoint_key=key.endpoint_key,
                    secret_name=name,
                )
        return outcomes
