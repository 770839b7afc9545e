"""Process-wide secret operations with caching, dedup and env var fast path."""
import logging
import threading
from typing import Dict, Iterable, List, Optional

from ..domains.cache import SecretCache
from ..domains.coalescer import FetchCoalescer
from ..domains.config_loader import load_fetcher_settings
from ..domains.errors import NotFoundError
from ..domains.gcp_client import GCPSecretProvider, get_config_or_none, get_project_id, get_service_account_path
from ..domains.models import SecretDescriptor
from ..domains.providers import EnvironmentSecretProvider
from .multi_secret_fetcher import MultiSecretFetcher

logger = logging.getLogger(__name__)

# Per-process state: secrets are not shared across CLI invocations
_secret_cache = SecretCache()
_env_provider = EnvironmentSecretProvider()
_coalescer = FetchCoalescer()
_fetcher: Optional[MultiSecretFetcher] = None
_fetcher_lock = threading.Lock()


def get_fetcher() -> MultiSecretFetcher:
    """Return the process-wide GCP fetcher, building it from config on first use."""
    global _fetcher

    with _fetcher_lock:
        if _fetcher is None:
            settings = load_fetcher_settings(get_config_or_none())
            _coalescer.timeout = settings.fetch_timeout_seconds
            _fetcher = MultiSecretFetcher(
                GCPSecretProvider(),
                cache=_secret_cache,
                coalescer=_coalescer,
                ttl=settings.cache_ttl_seconds,
                max_retries=settings.max_retries,
                retry_backoff=settings.retry_backoff_seconds,
            )
        return _fetcher


def set_fetcher(fetcher: Optional[MultiSecretFetcher]) -> None:
    """Replace the process-wide fetcher; None rebuilds it from config on next use."""
    global _fetcher
    with _fetcher_lock:
        _fetcher = fetcher


def get_secrets(secret_names: Iterable[str], project_id: Optional[str] = None, quiet: bool = False) -> Dict[str, Optional[str]]:
    """
    Fetch several secrets, contacting GCP at most once per project at a time.

    Args:
        secret_names: Names of the secrets to fetch
        project_id: GCP project ID (auto-detected if not provided)
        quiet: If True, suppress warnings for secrets that could not be fetched

    Returns:
        Mapping of secret name to value, None for secrets that could not be fetched

    Behavior:
        - Environment variables are checked first (fast path for development)
        - Remaining names are fetched as one batch through the shared fetcher
        - Fetched values are cached in memory for the configured TTL
    """
    names = list(dict.fromkeys(secret_names))
    values: Dict[str, Optional[str]] = {}

    remote: List[str] = []
    for name in names:
        try:
            values[name] = _env_provider.fetch("env", name).decode("UTF-8", "surrogateescape")
        except NotFoundError:
            remote.append(name)

    if not remote:
        return values

    if not project_id:
        project_id = get_project_id() or "unknown"
    credential_ref = get_service_account_path()

    batch = get_fetcher().fetch_all_sync(
        SecretDescriptor(project_id, name, credential_ref) for name in remote
    )
    for result in batch:
        name = result.descriptor.secret_name
        if not result.ok:
            if not quiet:
                logger.warning(f"GCP fetch failed for {name}: {result.error}")
            values[name] = None
            continue
        try:
            values[name] = result.text
        except UnicodeDecodeError as e:
            if not quiet:
                logger.warning(f"Secret {name} is not UTF-8 text: {e}")
            values[name] = None

    return {name: values[name] for name in names}


def get_secret(secret_name: str, project_id: Optional[str] = None, quiet: bool = False) -> Optional[str]:
    """
    Fetch one secret from the environment or GCP Secret Manager.

    Returns:
        Secret value as string, or None if not found
    """
    return get_secrets([secret_name], project_id=project_id, quiet=quiet)[secret_name]


def invalidate_secret(secret_name: str, project_id: Optional[str] = None) -> None:
    """Force the next get_secret for ``secret_name`` to go back to GCP."""
    if not project_id:
        project_id = get_project_id() or "unknown"
    get_fetcher().invalidate(project_id, secret_name, get_service_account_path())


def clear_cache() -> None:
    with _fetcher_lock:
        cache = _fetcher.cache if _fetcher is not None else _secret_cache
    cache.clear()
