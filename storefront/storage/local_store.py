import hashlib
import hmac
import time
from pathlib import Path
from urllib.parse import quote, urlencode


class LocalFileStore:
    """Filesystem store for downloadable product files.

    Files live under `root_dir` at their product `file_path`. Access is
    granted through signed URLs: an HMAC-SHA256 over "<path>:<expires>"
    with the store secret, checked by `verify_signature` before serving.
    """

    def __init__(self, root_dir: str, signing_secret: str, base_url: str = "/files"):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")

    def put(self, file_path: str, content: bytes) -> str:
        """Store content at file_path. Returns the normalized path."""
        path = self._safe_path(file_path)
        if path is None:
            raise ValueError(f"Invalid file path: {file_path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return self._relative(path)

    def exists(self, file_path: str) -> bool:
        path = self._safe_path(file_path)
        return bool(path is not None and path.is_file())

    def open_path(self, file_path: str) -> Path | None:
        path = self._safe_path(file_path)
        if path is not None and path.is_file():
            return path
        return None

    def remove(self, file_paths: list[str]) -> int:
        """Delete files. Returns how many were actually removed."""
        removed = 0
        for file_path in file_paths:
            path = self._safe_path(file_path)
            if path is not None and path.is_file():
                path.unlink()
                removed += 1
        return removed

    def signed_url(self, file_path: str, expires_in: int, now: float | None = None) -> str:
        """Build a time-limited download URL for file_path."""
        normalized = file_path.lstrip("/")
        expires = int((now if now is not None else time.time()) + expires_in)
        query = urlencode({"expires": expires, "signature": self._sign(normalized, expires)})
        return f"{self._base_url}/{quote(normalized)}?{query}"

    def verify_signature(self, file_path: str, expires: int, signature: str, now: float | None = None) -> bool:
        if expires < int(now if now is not None else time.time()):
            return False
        expected = self._sign(file_path.lstrip("/"), expires)
        return hmac.compare_digest(expected, signature)

    def _sign(self, file_path: str, expires: int) -> str:
        message = f"{file_path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def _safe_path(self, file_path: str) -> Path | None:
        """Resolve file_path under root, rejecting traversal outside it."""
        if not file_path:
            return None
        candidate = (self.root / file_path.lstrip("/")).resolve()
        root = self.root.resolve()
        if candidate == root or root not in candidate.parents:
            return None
        return candidate

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root.resolve()).as_posix()
