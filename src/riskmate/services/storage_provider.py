"""
Storage Provider Interface and Implementations
Abstraction for storing generated exports (local filesystem, Supabase Storage)
"""
from abc import ABC, abstractmethod
from typing import Optional
import logging
from pathlib import Path
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 3600


class StorageProvider(ABC):
    """Abstract base class for storage providers"""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """
        Store data and return the storage key

        Args:
            key: Storage key/path
            data: Data bytes to store
            content_type: MIME type
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Retrieve data by key, None if not found"""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete data by key, False if not found"""
        pass

    @abstractmethod
    def get_url(self, key: str) -> str:
        """URL a client can download the object from"""
        pass


class LocalDiskStorageProvider(StorageProvider):
    """Local filesystem storage provider (default for dev)"""

    def __init__(self, base_path: Optional[str] = None):
        """
        Initialize local disk storage

        Args:
            base_path: Base directory for storage (default: STORAGE_PATH)
        """
        from ..config import config

        self.base_path = Path(base_path or config.STORAGE_PATH).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalDiskStorageProvider initialized at {self.base_path}")

    def _resolve(self, key: str) -> Path:
        """Map a key to a path under base_path, rejecting traversal"""
        parts = [part for part in key.replace("\\", "/").split("/") if part not in ("", ".", "..")]
        if not parts:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_path.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        file_path = self._resolve(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes to {file_path}")
        return file_path.relative_to(self.base_path).as_posix()

    def get(self, key: str) -> Optional[bytes]:
        file_path = self._resolve(key)
        if not file_path.exists():
            return None
        return file_path.read_bytes()

    def delete(self, key: str) -> bool:
        file_path = self._resolve(key)
        if not file_path.exists():
            return False
        file_path.unlink()
        logger.debug(f"Deleted {file_path}")
        return True

    def get_url(self, key: str) -> str:
        """Relative path served by the download endpoint in dev"""
        return f"/storage/{self._resolve(key).relative_to(self.base_path).as_posix()}"


class SupabaseStorageProvider(StorageProvider):
    """Supabase Storage over its REST API"""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        bucket: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize Supabase storage provider

        Args:
            supabase_url: Project URL (https://<ref>.supabase.co)
            service_role_key: Service role key used as bearer token
            bucket: Bucket name
            client: Optional preconfigured httpx client
        """
        self.base_url = supabase_url.rstrip("/") + "/storage/v1"
        self.bucket = bucket
        self.client = client or httpx.Client(timeout=timeout)
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/object/{self.bucket}/{quote(key.lstrip('/'))}"

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        response = self.client.post(
            self._object_url(key),
            content=data,
            headers={**self.headers, "Content-Type": content_type, "x-upsert": "true"},
        )
        response.raise_for_status()
        logger.debug(f"Uploaded {len(data)} bytes to {self.bucket}/{key}")
        return key

    def get(self, key: str) -> Optional[bytes]:
        response = self.client.get(self._object_url(key), headers=self.headers)
        # Storage reports missing objects as 400 or 404 depending on version
        if response.status_code in (400, 404):
            return None
        response.raise_for_status()
        return response.content

    def delete(self, key: str) -> bool:
        response = self.client.request(
            "DELETE",
            f"{self.base_url}/object/{self.bucket}",
            json={"prefixes": [key.lstrip("/")]},
            headers=self.headers,
        )
        if response.status_code in (400, 404):
            return False
        response.raise_for_status()
        return bool(response.json())

    def get_url(self, key: str) -> str:
        response = self.client.post(
            f"{self.base_url}/object/sign/{self.bucket}/{quote(key.lstrip('/'))}",
            json={"expiresIn": SIGNED_URL_TTL_SECONDS},
            headers=self.headers,
        )
        response.raise_for_status()
        signed = response.json().get("signedURL", "")
        return f"{self.base_url}{signed}"


_provider: Optional[StorageProvider] = None


def get_storage_provider(provider_name: Optional[str] = None) -> StorageProvider:
    """
    Factory function to get storage provider

    Args:
        provider_name: 'local', 'supabase', or None for STORAGE_PROVIDER

    Returns:
        StorageProvider instance (cached for the configured provider)
    """
    global _provider
    from ..config import config

    use_default = provider_name is None
    if use_default and _provider is not None:
        return _provider

    name = (provider_name or config.STORAGE_PROVIDER).lower()
    if name == "local":
        provider = LocalDiskStorageProvider()
    elif name == "supabase":
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for supabase storage")
        provider = SupabaseStorageProvider(
            supabase_url=config.SUPABASE_URL,
            service_role_key=config.SUPABASE_SERVICE_ROLE_KEY,
            bucket=config.STORAGE_BUCKET,
        )
    else:
        raise ValueError(f"Unknown storage provider: {name}")

    if use_default:
        _provider = provider
    return provider


def get_storage() -> StorageProvider:
    """FastAPI dependency for the configured storage provider"""
    return get_storage_provider()
