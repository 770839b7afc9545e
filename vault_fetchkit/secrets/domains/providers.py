"""Secret provider interface and the environment-variable provider."""
import os
import logging
from typing import Hashable, Mapping, Protocol, Sequence, Union, runtime_checkable

from .errors import FetchError, NotFoundError

logger = logging.getLogger(__name__)


@runtime_checkable
class SecretProvider(Protocol):
    """
    Performs the actual fetch for one secret.

    ``fetch`` may be a plain method (run on a worker thread) or a coroutine
    function. It returns the secret payload or raises AuthError,
    NotFoundError or TransientError.
    """

    def fetch(self, endpoint_key: str, secret_name: str, credential_ref: Hashable) -> bytes:
        ...


@runtime_checkable
class BatchSecretProvider(SecretProvider, Protocol):
    """Provider able to fetch several names from one endpoint in a single round trip."""

    def fetch_many(
        self, endpoint_key: str, secret_names: Sequence[str], credential_ref: Hashable
    ) -> Mapping[str, Union[bytes, FetchError]]:
        ...


class EnvironmentSecretProvider:
    """Read secrets from environment variables. Endpoint and credential are ignored."""

    name = "env"

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def fetch(self, endpoint_key: str, secret_name: str, credential_ref: Hashable = None) -> bytes:
        env_key = f"{self.prefix}{secret_name}"
        value = os.getenv(env_key)
        if not value:
            raise NotFoundError(
                f"Environment variable '{env_key}' is not set",
                endpoint_key=endpoint_key,
                secret_name=secret_name,
            )
        logger.debug(f"Resolved {secret_name} from environment")
        return value.encode("UTF-8", "surrogateescape")
