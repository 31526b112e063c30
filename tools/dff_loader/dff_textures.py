"""Texture lookup backed by a directory of extracted images.

Texture names in DFF files carry no extension and are case-insensitive,
so files are indexed by lower-cased stem.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".tga", ".bmp", ".dds")


@dataclass
class TextureHandle:
    """Image found for a texture name."""
    name: str
    path: Path
    width: int
    height: int
    has_alpha: bool
    mask_path: Optional[Path] = None


class TextureDirectory:
    """Resolves texture names to images in a directory tree."""

    def __init__(self, root: Union[str, Path], recursive: bool = True):
        """Initialize with directory to search.

        Args:
            root: Directory holding exported textures
            recursive: Also index subdirectories
        """
        self.root = Path(root)
        self.recursive = recursive
        self._index: Optional[Dict[str, Path]] = None
        self._cache: Dict[tuple, Optional[TextureHandle]] = {}

    def _build_index(self) -> Dict[str, Path]:
        if self._index is None:
            pattern = "**/*" if self.recursive else "*"
            index = {}
            for path in sorted(self.root.glob(pattern)):
                if path.suffix.lower() in IMAGE_EXTENSIONS:
                    index.setdefault(path.stem.lower(), path)
            self._index = index
            logger.debug("Indexed %d textures under %s", len(index), self.root)
        return self._index

    def find(self, name: str) -> Optional[Path]:
        """Path of the image for name, if any."""
        if not name:
            return None
        return self._build_index().get(name.lower())

    def lookup(self, name: str, mask_name: str) -> Optional[TextureHandle]:
        """Texture lookup callable for ClumpLoader."""
        key = (name.lower(), mask_name.lower())
        if key not in self._cache:
            self._cache[key] = self._open(name, mask_name)
        return self._cache[key]

    __call__ = lookup

    def _open(self, name: str, mask_name: str) -> Optional[TextureHandle]:
        path = self.find(name)
        if path is None:
            return None

        from PIL import Image

        try:
            with Image.open(path) as img:
                width, height = img.size
                has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
        except OSError as e:
            logger.warning("Cannot read texture %s: %s", path, e)
            return None

        mask_path = self.find(mask_name)
        return TextureHandle(
            name=name,
            path=path,
            width=width,
            height=height,
            has_alpha=has_alpha or mask_path is not None,
            mask_path=mask_path,
        )
