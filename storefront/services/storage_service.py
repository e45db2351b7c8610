from storefront.config import settings

# Singleton storage instance
_storage = None


def get_storage():
    """Get or create the download store used for product files."""
    global _storage
    if _storage is None:
        from storefront.storage.local_store import LocalFileStore
        _storage = LocalFileStore(
            root_dir=settings.download_store_path,
            signing_secret=settings.download_signing_secret,
        )
    return _storage


def create_signed_download_url(file_path: str) -> str:
    """Signed URL for a product file, valid for the configured download TTL."""
    return get_storage().signed_url(file_path, settings.download_url_ttl_seconds)
