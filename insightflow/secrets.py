"""
Secret storage for account credentials, plus the startup bootstrap that loads
environment variables from Google Cloud Secret Manager.

Stores expose ``save(value, key)`` / ``load(key)`` / ``delete(key)`` /
``delete_all()`` over a fixed set of keys. ``scoped(namespace)`` returns a
view of the same backend restricted to one account, so each account keeps
its own copy of every key.

Backends:
  - FileSecretStore: Fernet-encrypted JSON file. The Fernet key is derived
    from INSIGHTFLOW_MASTER_KEY, or from an auto-generated ``.master_key``
    file next to the store when the variable is unset.
  - GoogleSecretManagerStore: one Secret Manager secret per key.
  - InMemorySecretStore: process-local, for tests and one-off tools.

Env bootstrap: when SECRET_MANAGER=true and DEPLOYMENT_MODE=standalone, each
name in SECRET_MANAGER_SECRET_NAMES is fetched and set as os.environ[name].
"""

from __future__ import annotations

import base64
import copy
import hashlib
import json
import logging
import os
import re
import secrets as _random
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from insightflow.errors import SecretStoreError
from insightflow.fileio import write_bytes_atomic

logger = logging.getLogger(__name__)


class SecretKey(str, Enum):
    SERVER_URL = "serverURL"
    TOKEN = "token"
    API_KEY = "apiKey"
    USERNAME = "username"
    PROVIDER_TYPE = "providerType"
    SERVER_TYPE = "serverType"


class SecretStore(ABC):
    def __init__(self, namespace: str = "") -> None:
        self.namespace = namespace

    def scoped(self, namespace: str) -> "SecretStore":
        view = copy.copy(self)
        view.namespace = namespace
        return view

    def _name(self, key: SecretKey) -> str:
        key = SecretKey(key)
        return f"{self.namespace}.{key.value}" if self.namespace else key.value

    def save(self, value: str, key: SecretKey) -> None:
        self._write(self._name(key), value)

    def load(self, key: SecretKey) -> Optional[str]:
        return self._read(self._name(key))

    def delete(self, key: SecretKey) -> None:
        self._remove([self._name(key)])

    def delete_all(self) -> None:
        """Remove every key in this namespace (every key at all for an unscoped store)."""
        if self.namespace:
            prefix = f"{self.namespace}."
            names = [n for n in self._names() if n.startswith(prefix)]
        else:
            names = list(self._names())
        self._remove(names)

    @abstractmethod
    def _write(self, name: str, value: str) -> None:
        ...

    @abstractmethod
    def _read(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    def _remove(self, names: List[str]) -> None:
        ...

    @abstractmethod
    def _names(self) -> Iterable[str]:
        ...


class InMemorySecretStore(SecretStore):
    def __init__(self, namespace: str = "") -> None:
        super().__init__(namespace)
        self._values: Dict[str, str] = {}

    def _write(self, name: str, value: str) -> None:
        self._values[name] = value

    def _read(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def _remove(self, names: List[str]) -> None:
        for name in names:
            self._values.pop(name, None)

    def _names(self) -> Iterable[str]:
        return list(self._values)


class FileSecretStore(SecretStore):
    def __init__(self, path: Path, master_key: Optional[str] = None, namespace: str = "") -> None:
        super().__init__(namespace)
        from cryptography.fernet import Fernet

        self.path = Path(path)
        derived = hashlib.sha256(self._master_material(master_key)).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(derived))

    def _master_material(self, master_key: Optional[str]) -> bytes:
        if master_key:
            return master_key.encode("utf-8")
        key_file = self.path.parent / ".master_key"
        if key_file.exists():
            return key_file.read_bytes()
        logger.warning(
            "INSIGHTFLOW_MASTER_KEY not set. Auto-generating master key to %s. "
            "Set the env var for production deployments.",
            key_file,
        )
        material = _random.token_bytes(64)
        write_bytes_atomic(key_file, material)
        return material

    def _load_all(self) -> Dict[str, str]:
        from cryptography.fernet import InvalidToken

        if not self.path.exists():
            return {}
        try:
            plaintext = self._fernet.decrypt(self.path.read_bytes())
            data = json.loads(plaintext)
        except InvalidToken as e:
            raise SecretStoreError(f"Cannot decrypt {self.path}; check INSIGHTFLOW_MASTER_KEY") from e
        except (OSError, ValueError) as e:
            raise SecretStoreError(f"Cannot read secret store {self.path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def _save_all(self, values: Dict[str, str]) -> None:
        try:
            write_bytes_atomic(self.path, self._fernet.encrypt(json.dumps(values).encode("utf-8")))
        except OSError as e:
            raise SecretStoreError(f"Cannot write secret store {self.path}: {e}") from e

    def _write(self, name: str, value: str) -> None:
        values = self._load_all()
        values[name] = value
        self._save_all(values)

    def _read(self, name: str) -> Optional[str]:
        return self._load_all().get(name)

    def _remove(self, names: List[str]) -> None:
        values = self._load_all()
        if not any(name in values for name in names):
            return
        for name in names:
            values.pop(name, None)
        self._save_all(values)

    def _names(self) -> Iterable[str]:
        return list(self._load_all())


class GoogleSecretManagerStore(SecretStore):
    """One Secret Manager secret per key, named ``{prefix}-{namespace}-{key}``."""

    def __init__(self, project_id: str, prefix: str = "insightflow", namespace: str = "", client=None) -> None:
        super().__init__(namespace)
        if client is None:
            from google.cloud import secretmanager

            client = secretmanager.SecretManagerServiceClient()
        self._client = client
        self.project_id = project_id
        self.prefix = prefix

    def _secret_id(self, name: str) -> str:
        return re.sub(r"[^A-Za-z0-9_-]", "-", f"{self.prefix}-{name}")

    def _write(self, name: str, value: str) -> None:
        from google.api_core import exceptions

        parent = f"projects/{self.project_id}"
        secret_id = self._secret_id(name)
        try:
            try:
                self._client.create_secret(
                    request={
                        "parent": parent,
                        "secret_id": secret_id,
                        "secret": {"replication": {"automatic": {}}},
                    }
                )
            except exceptions.AlreadyExists:
                pass
            self._client.add_secret_version(
                request={"parent": f"{parent}/secrets/{secret_id}", "payload": {"data": value.encode("utf-8")}}
            )
        except exceptions.GoogleAPICallError as e:
            raise SecretStoreError(f"Failed to store secret '{secret_id}': {e}") from e

    def _read(self, name: str) -> Optional[str]:
        from google.api_core import exceptions

        secret_id = self._secret_id(name)
        path = f"projects/{self.project_id}/secrets/{secret_id}/versions/latest"
        try:
            response = self._client.access_secret_version(request={"name": path})
        except exceptions.NotFound:
            return None
        except exceptions.GoogleAPICallError as e:
            logger.warning("Failed to access secret '%s': %s", secret_id, e)
            return None
        return response.payload.data.decode("utf-8")

    def _remove(self, names: List[str]) -> None:
        from google.api_core import exceptions

        for name in names:
            secret_id = self._secret_id(name)
            try:
                self._client.delete_secret(request={"name": f"projects/{self.project_id}/secrets/{secret_id}"})
            except exceptions.NotFound:
                continue
            except exceptions.GoogleAPICallError as e:
                raise SecretStoreError(f"Failed to delete secret '{secret_id}': {e}") from e

    def _names(self) -> Iterable[str]:
        # secret ids are sanitised, so map them back through the known key set
        secret_ids = {
            secret.name.rsplit("/", 1)[-1]
            for secret in self._client.list_secrets(request={"parent": f"projects/{self.project_id}"})
        }
        return [self._name(key) for key in SecretKey if self._secret_id(self._name(key)) in secret_ids]


# Env bootstrap


def _is_secret_manager_enabled() -> bool:
    raw = (os.environ.get("SECRET_MANAGER") or "").strip().lower()
    return raw in ("true", "1", "yes")


def _is_standalone() -> bool:
    return (os.environ.get("DEPLOYMENT_MODE") or "standalone").strip().lower() == "standalone"


def get_project_id() -> Optional[str]:
    project_id = (os.environ.get("GOOGLE_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT") or "").strip()
    if project_id:
        return project_id
    try:
        import google.auth
        from google.auth.exceptions import DefaultCredentialsError
    except ImportError:
        return None
    try:
        _, project_id = google.auth.default()
    except DefaultCredentialsError:
        return None
    return project_id or None


def _fetch_secret(client, project_id: str, secret_name: str) -> Optional[str]:
    """Fetch latest version of a secret; return payload as string or None on failure."""
    from google.api_core import exceptions

    name = f"projects/{project_id}/secrets/{secret_name}/versions/latest"
    try:
        response = client.access_secret_version(request={"name": name})
        return response.payload.data.decode("utf-8")
    except exceptions.GoogleAPICallError as e:
        logger.warning("Failed to access secret '%s': %s", secret_name, e)
        return None


def load_secrets_from_secret_manager() -> bool:
    """
    If SECRET_MANAGER=true and DEPLOYMENT_MODE=standalone, fetch secrets from Google
    Secret Manager and set them in os.environ. Returns True if any secrets were loaded.
    """
    if not _is_secret_manager_enabled():
        return False
    if not _is_standalone():
        logger.info("SECRET_MANAGER=true but DEPLOYMENT_MODE is not 'standalone'; skipping Secret Manager load.")
        return False

    try:
        from google.cloud import secretmanager
    except ImportError:
        logger.warning(
            "SECRET_MANAGER=true but google-cloud-secret-manager is not installed. "
            "Install it or set SECRET_MANAGER=false."
        )
        return False

    project_id = get_project_id()
    if not project_id:
        logger.warning("No GOOGLE_PROJECT_ID or GOOGLE_CLOUD_PROJECT set and default credentials have no project.")
        return False

    raw_names = (os.environ.get("SECRET_MANAGER_SECRET_NAMES") or "").strip()
    if not raw_names:
        logger.warning(
            "SECRET_MANAGER=true but SECRET_MANAGER_SECRET_NAMES is empty. "
            "Set it to a comma-separated list of secret names (each name = env var name)."
        )
        return False

    client = secretmanager.SecretManagerServiceClient()
    secret_names = [n.strip() for n in raw_names.split(",") if n.strip()]
    count = 0
    for name in secret_names:
        value = _fetch_secret(client, project_id, name)
        if value is not None:
            os.environ[name] = value
            count += 1
    if count > 0:
        logger.info("Loaded %d env var(s) from Secret Manager: %s.", count, ", ".join(secret_names))
    return count > 0


def create_secret_store(backend: str, path: Path, master_key: Optional[str] = None, project_id: Optional[str] = None) -> SecretStore:
    """Build the store named by INSIGHTFLOW_SECRET_BACKEND."""
    if backend == "memory":
        return InMemorySecretStore()
    if backend == "secret_manager":
        project_id = project_id or get_project_id()
        if not project_id:
            raise SecretStoreError("secret_manager backend needs GOOGLE_PROJECT_ID or default credentials")
        return GoogleSecretManagerStore(project_id)
    return FileSecretStore(path, master_key=master_key)
