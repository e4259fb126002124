"""
Read-only cache of decoded background templates.

Templates never change while the process runs, so each one is decoded once,
marked read-only and shared by every request. Population of the cache is
guarded by a lock; reads of cached buffers need none.
"""

import threading
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import DecodeError, TemplateLoadError
from .pixel_buffer import PixelBuffer, decode_image


class TemplateStore:
    """
    Loads card templates from a directory on first use.
    """

    def __init__(self, template_dir: Union[str, Path]):
        self._template_dir = Path(template_dir)
        self._cache: Dict[str, PixelBuffer] = {}
        self._lock = threading.Lock()

    @property
    def template_dir(self) -> Path:
        return self._template_dir

    def path_for(self, name: str) -> Path:
        return self._template_dir / name

    def load(self, name: str) -> PixelBuffer:
        """
        Get a decoded RGBA template.

        Raises:
            TemplateLoadError: If the file is missing, unreadable or not an image
        """
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(name)
            if cached is not None:
                return cached

            template = self._read(name)
            self._cache[name] = template
            return template

    def _read(self, name: str) -> PixelBuffer:
        path = self.path_for(name)

        try:
            content = path.read_bytes()
        except OSError as e:
            raise TemplateLoadError(f"Cannot read template '{name}' at {path}: {e}") from e

        try:
            template = decode_image(content).ensure_alpha()
        except DecodeError as e:
            raise TemplateLoadError(f"Template '{name}' is not a valid image: {e}") from e

        template.pixels.flags.writeable = False
        print(f"  [Templates] Loaded {name}: {template.width}x{template.height}")
        return template

    def is_cached(self, name: str) -> bool:
        return name in self._cache

    def clear(self):
        with self._lock:
            self._cache.clear()


# Global instance, keyed by directory
_template_store: Optional[TemplateStore] = None
_store_lock = threading.Lock()


def get_template_store(template_dir: Union[str, Path]) -> TemplateStore:
    """Get the process-wide template store for a directory."""
    global _template_store
    wanted = Path(template_dir)

    store = _template_store
    if store is not None and store.template_dir == wanted:
        return store

    with _store_lock:
        # Double-check after acquiring lock
        if _template_store is None or _template_store.template_dir != wanted:
            _template_store = TemplateStore(wanted)
        return _template_store
