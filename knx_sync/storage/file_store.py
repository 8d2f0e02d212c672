"""Adapter scoped file storage (uploaded ETS projects)."""

import logging
import os
from typing import List

logger = logging.getLogger(__name__)


class FileStore:
    """Read files by logical name below one base directory"""

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)

    @property
    def location(self) -> str:
        return self.base_dir

    def _resolve(self, name: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, name))
        if os.path.commonpath([path, self.base_dir]) != self.base_dir:
            raise FileNotFoundError(f"{name} is outside of {self.base_dir}")
        return path

    def read_file(self, name: str) -> bytes:
        """Return the raw content of ``name``.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        path = self._resolve(name)
        with open(path, 'rb') as f:
            return f.read()

    def write_file(self, name: str, data: bytes) -> str:
        path = self._resolve(name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path + '.tmp', 'wb') as f:
            f.write(data)
        os.replace(path + '.tmp', path)
        logger.debug(f"Stored {len(data)} bytes as {name}")
        return path

    def list_files(self) -> List[str]:
        names = []
        for root, _dirs, files in os.walk(self.base_dir):
            for file_name in files:
                rel = os.path.relpath(os.path.join(root, file_name), self.base_dir)
                names.append(rel.replace(os.sep, '/'))
        return sorted(names)
