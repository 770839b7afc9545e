"""GCP Secret Manager provider and project/credential resolution."""
import os
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Optional

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import secretmanager
from google.oauth2 import service_account

from .config_loader import load_config, ConfigError
from .errors import AuthError, NotFoundError, TransientError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Optional[Any]], Any]


def _default_client_factory(credentials: Optional[Any]) -> secretmanager.SecretManagerServiceClient:
    if credentials is None:
        return secretmanager.SecretManagerServiceClient()
    return secretmanager.SecretManagerServiceClient(credentials=credentials)


class GCPSecretProvider:
    """
    Fetch secrets from GCP Secret Manager.

    The endpoint key is the GCP project id. The credential handle is either
    None (application default credentials), a path to a service account JSON
    file, or a ready google.auth credentials object. One client is created per
    credential handle and reused for every later fetch.
    """

    name = "gcp"

    def __init__(self, version: str = "latest", client_factory: Optional[ClientFactory] = None):
        self.version = version
        self._client_factory = client_factory or _default_client_factory
        self._clients: Dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    def _load_credentials(self, credential_ref: Hashable) -> Optional[Any]:
        if credential_ref is None:
            return None
        if isinstance(credential_ref, (str, os.PathLike)):
            return service_account.Credentials.from_service_account_file(os.fspath(credential_ref))
        return credential_ref

    def client_for(self, credential_ref: Hashable) -> Any:
        """Lazy-initialize the client for ``credential_ref``."""
        with self._lock:
            client = self._clients.get(credential_ref)
            if client is None:
                client = self._client_factory(self._load_credentials(credential_ref))
                self._clients[credential_ref] = client
            return client

    def fetch(self, endpoint_key: str, secret_name: str, credential_ref: Hashable = None) -> bytes:
        """
        Fetch one secret version payload.

        Args:
            endpoint_key: GCP project ID
            secret_name: Name of the secret
            credential_ref: Credential handle (see class docstring)

        Returns:
            Raw secret payload bytes

        Raises:
            AuthError: Credentials could not be loaded or were rejected
            NotFoundError: Secret or version does not exist in the project
            TransientError: Any other API or network failure
        """
        name = f"projects/{endpoint_key}/secrets/{secret_name}/versions/{self.version}"
        context = {"endpoint_key": endpoint_key, "secret_name": secret_name}

        try:
            client = self.client_for(credential_ref)
        except (OSError, ValueError, auth_exceptions.GoogleAuthError) as e:
            raise AuthError(f"Credentials unusable for project '{endpoint_key}': {e}", **context) from e

        try:
            response = client.access_secret_version(request={"name": name})
        except auth_exceptions.TransportError as e:
            raise TransientError(f"Token refresh failed for {secret_name}: {e}", **context) from e
        except (auth_exceptions.RefreshError, auth_exceptions.DefaultCredentialsError) as e:
            raise AuthError(f"Credentials rejected for project '{endpoint_key}': {e}", **context) from e
        except gcp_exceptions.NotFound as e:
            raise NotFoundError(f"Secret '{secret_name}' not found in project '{endpoint_key}'", **context) from e
        except (gcp_exceptions.PermissionDenied, gcp_exceptions.Unauthenticated) as e:
            raise AuthError(f"Access denied to secret '{secret_name}' in project '{endpoint_key}': {e}", **context) from e
        except (gcp_exceptions.GoogleAPICallError, gcp_exceptions.RetryError) as e:
            raise TransientError(f"GCP fetch failed for {secret_name}: {e}", **context) from e

        return response.payload.data


# Deferred until GCP operations are needed so 'fetchkit --help' works without a config file
_CONFIG: Optional[Dict[str, Any]] = None
_CONFIG_LOADED = False


def _get_config() -> Optional[Dict[str, Any]]:
    """
    Lazy load configuration on first use.

    Raises:
        ConfigError: If config file is invalid
        FileNotFoundError: If no config file exists
    """
    global _CONFIG, _CONFIG_LOADED

    if not _CONFIG_LOADED:
        _CONFIG = load_config()
        _CONFIG_LOADED = True
    return _CONFIG


def reset_config() -> None:
    """Forget the lazily loaded config so the next access re-reads it."""
    global _CONFIG, _CONFIG_LOADED
    _CONFIG = None
    _CONFIG_LOADED = False


def get_config_or_none() -> Optional[Dict[str, Any]]:
    try:
        return _get_config()
    except (ConfigError, FileNotFoundError) as e:
        logger.debug(f"No usable config: {e}")
        return None


def get_project_id() -> Optional[str]:
    """
    Get GCP project ID from environment variable or config.

    Priority order:
    1. GCP_PROJECT environment variable (allows override)
    2. Config file (primary source)

    Returns:
        Project ID string, or None if not found
    """
    gcp_project_env = os.getenv("GCP_PROJECT")
    if gcp_project_env:
        logger.debug(f"Using GCP_PROJECT from environment: {gcp_project_env}")
        return gcp_project_env

    config = get_config_or_none()
    if config and 'project_id' in config.get('gcp', {}):
        project_id = config['gcp']['project_id']
        logger.debug(f"Using project_id from config: {project_id}")
        return project_id

    logger.error("Project ID not found. Please set GCP_PROJECT environment variable or configure project_id in config file")
    return None


def get_service_account_path() -> Optional[str]:
    """Service account path from config, or None to use application default credentials."""
    config = get_config_or_none()
    if config:
        return config.get('authentication', {}).get('service_account_path')
    return None
