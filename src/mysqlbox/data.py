"""
Initial SQL script payloads

SQLData holds the bytes of a script loaded from a reader, a buffer or a
file. ScriptArtifact writes it to a temporary file that gets bind-mounted
into the container and removes the file once the box is done with it.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import IO, Optional, Union

from .exceptions import ScriptMaterializeError

logger = logging.getLogger(__name__)


class SQLData:
    """An SQL script to run when the MySQL container starts."""

    def __init__(self, content: bytes):
        self.content = content

    @classmethod
    def from_reader(cls, reader: IO) -> "SQLData":
        """Load data from a binary or text reader."""
        content = reader.read()
        if isinstance(content, str):
            content = content.encode("utf-8")
        return cls(content)

    @classmethod
    def from_buffer(cls, buf: Union[bytes, bytearray, str]) -> "SQLData":
        """Load data from a byte buffer."""
        if isinstance(buf, str):
            buf = buf.encode("utf-8")
        return cls(bytes(buf))

    @classmethod
    def from_file(cls, filename: Union[str, Path]) -> "SQLData":
        """Load data from a file."""
        return cls(Path(filename).read_bytes())

    def __len__(self) -> int:
        return len(self.content)

    def __repr__(self) -> str:
        return f"SQLData({len(self.content)} bytes)"


class ScriptArtifact:
    """Temporary host file holding the initial SQL script."""

    def __init__(self, path: str):
        self.path = path
        self._removed = False

    @classmethod
    def materialize(cls, data: SQLData, directory: Optional[str] = None) -> "ScriptArtifact":
        """Write the script to a temporary file readable by the container."""
        try:
            fd, path = tempfile.mkstemp(prefix="schema-", suffix=".sql", dir=directory)
            with os.fdopen(fd, "wb") as f:
                f.write(data.content)
            # mysqld inside the container runs as another user
            os.chmod(path, 0o644)
        except OSError as e:
            raise ScriptMaterializeError(
                f"could not write initial SQL script: {e}",
                operation="materialize_script",
            ) from e

        logger.debug(f"Initial SQL script written to {path} ({len(data)} bytes)")
        return cls(path)

    @property
    def removed(self) -> bool:
        return self._removed

    def remove(self) -> None:
        """Delete the file. Later calls do nothing."""
        if self._removed:
            return
        self._removed = True

        try:
            os.remove(self.path)
            logger.debug(f"Removed initial SQL script {self.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove initial SQL script {self.path}: {e}")
