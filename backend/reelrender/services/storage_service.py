from pathlib import Path
from urllib.parse import unquote, urlparse

from reelrender.config import get_settings


class LocalStorageService:
    """Resolves asset references to files on the local disk.

    Handles absolute paths, file:// URIs and app-relative references such as
    "/uploads/kitchen.jpg" or "/musics/ambient-1.mp3" looked up under the
    configured asset roots.
    """

    def __init__(self, search_roots: list[str] | None = None) -> None:
        settings = get_settings()
        roots = search_roots if search_roots is not None else settings.asset_search_roots
        self.search_roots = [Path(root) for root in roots]

    def _candidates(self, reference: str) -> list[Path]:
        parsed = urlparse(reference)
        if parsed.scheme in ("http", "https"):
            return []
        if parsed.scheme == "file":
            return [Path(unquote(parsed.path))]

        candidates = []
        path = Path(reference)
        if path.is_absolute():
            candidates.append(path)

        relative = reference.lstrip("/")
        for root in self.search_roots:
            candidates.append(root / relative)
            # Upload URLs may carry a prefix the local layout does not
            # ("/uploads/x.jpg" stored as <root>/x.jpg)
            candidates.append(root / path.name)
        return candidates

    def resolve_path(self, reference: str) -> Path | None:
        """Return the local file for a reference, or None when it is not on disk."""
        for candidate in self._candidates(reference):
            try:
                if candidate.is_file():
                    return candidate
            except OSError:
                continue
        return None
