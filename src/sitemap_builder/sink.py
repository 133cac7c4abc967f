"""Output sinks: where rendered documents are written."""

import logging
import os
from typing import Dict, Protocol
from .errors import SinkWriteError
from .utils import create_directory_if_not_exists

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    """Path-keyed byte writer."""

    def write(self, path: str, data: bytes) -> str:
        """Write ``data`` under ``path`` and return the written location."""
        ...


class FileSystemSink:
    """Writes documents below an output directory."""

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def resolve(self, path: str) -> str:
        return os.path.join(self.output_dir, path)

    def write(self, path: str, data: bytes) -> str:
        target = self.resolve(path)
        try:
            create_directory_if_not_exists(os.path.dirname(target))
            with open(target, "wb") as f:
                f.write(data)
                f.flush()
        except OSError as e:
            logger.error(f"Error writing {target}: {e}")
            raise SinkWriteError(target, e) from e

        logger.debug(f"Wrote {len(data)} bytes to {target}")
        return target


class MemorySink:
    """Keeps documents in a dict; useful for embedding and tests."""

    def __init__(self):
        self.files: Dict[str, bytes] = {}

    def write(self, path: str, data: bytes) -> str:
        self.files[path] = bytes(data)
        return path
