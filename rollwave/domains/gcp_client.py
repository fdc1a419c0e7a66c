"""GCP Secret Manager client wrapper used as a logical secret source."""
import logging
from typing import Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import secretmanager

logger = logging.getLogger(__name__)


class GCPSecretClient:
    """Wrapper around GCP Secret Manager client."""

    def __init__(self, client: Optional[secretmanager.SecretManagerServiceClient] = None):
        self._client = client

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize client."""
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def fetch_secret(self, secret_name: str, project_id: str, timeout: Optional[float] = None) -> Optional[str]:
        """
        Fetch the latest version of a secret from GCP Secret Manager.

        Args:
            secret_name: Name of the secret
            project_id: GCP project ID
            timeout: Request timeout in seconds

        Returns:
            Secret value or None if the secret or its latest version does not exist

        Raises:
            google.api_core.exceptions.GoogleAPIError: On any other API failure
        """
        name = f"projects/{project_id}/secrets/{secret_name}/versions/latest"
        try:
            response = self.client.access_secret_version(request={"name": name}, timeout=timeout)
        except gcp_exceptions.NotFound:
            logger.warning(f"Secret {secret_name} not found in project {project_id}")
            return None
        return response.payload.data.decode("UTF-8")
