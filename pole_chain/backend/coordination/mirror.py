import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

logger = logging.getLogger("Mirror")


class IMirror(ABC):
    """
    Best-effort persistent copy of coordination state for dashboards/history.
    Paths are slash separated (e.g. "coordination/poles/Pole2").
    Implementations must never raise: failures are logged and dropped.
    """
    @abstractmethod
    def write(self, path: str, value: Any) -> None:
        pass

    @abstractmethod
    def remove(self, path: str) -> None:
        pass

    def check(self) -> Dict[str, Any]:
        """Health report served by the mirror-check endpoint."""
        return {"backend": type(self).__name__, "connected": True}


def _split(path: str):
    return [part for part in path.strip("/").split("/") if part]


class _TreeMirror(IMirror):
    """Nested dict tree shared by the concrete mirrors."""
    def __init__(self):
        self.tree: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _set(self, path: str, value: Any) -> None:
        parts = _split(path)
        if not parts:
            raise ValueError("Empty mirror path")
        node = self.tree
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = value

    def _delete(self, path: str) -> None:
        parts = _split(path)
        node = self.tree
        for part in parts[:-1]:
            node = node.get(part)
            if not isinstance(node, dict):
                return
        node.pop(parts[-1], None)

    def get(self, path: str) -> Any:
        node: Any = self.tree
        for part in _split(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node


class MemoryMirror(_TreeMirror):
    """In-process mirror (tests, or running without a data directory)."""
    def write(self, path: str, value: Any) -> None:
        with self._lock:
            self._set(path, value)

    def remove(self, path: str) -> None:
        with self._lock:
            self._delete(path)

    def check(self) -> Dict[str, Any]:
        self.write("debug/connection_test", {"timestamp": time.time()})
        ok = self.get("debug/connection_test") is not None
        return {
            "backend": "memory",
            "connected": ok,
            "write_test": "SUCCESS" if ok else "FAILED",
            "read_test": "SUCCESS" if ok else "FAILED",
        }


class JsonFileMirror(_TreeMirror):
    """
    Keeps the whole tree in one JSON file.
    Every change rewrites the file via a temp file + atomic rename.
    """
    def __init__(self, file_path: str):
        super().__init__()
        self.file_path = file_path
        self.temp_path = file_path + ".tmp"

    def connect(self):
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)
        if os.path.exists(self.file_path):
            try:
                with open(self.file_path, "r") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self.tree = loaded
            except (OSError, ValueError) as e:
                logger.error(f"Mirror file {self.file_path} unreadable, starting empty: {e}")

    def disconnect(self):
        pass

    def write(self, path: str, value: Any) -> None:
        try:
            with self._lock:
                self._set(path, value)
                self._flush()
        except Exception as e:
            logger.error(f"Mirror write failed ({path}): {e}")

    def remove(self, path: str) -> None:
        try:
            with self._lock:
                self._delete(path)
                self._flush()
        except Exception as e:
            logger.error(f"Mirror remove failed ({path}): {e}")

    def _flush(self) -> None:
        # Write to tmp first to ensure atomicity
        with open(self.temp_path, "w") as f:
            json.dump(self.tree, f, indent=2, default=str)
        os.replace(self.temp_path, self.file_path)

    def check(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "backend": "json_file",
            "path": os.path.abspath(self.file_path),
            "connected": False,
        }
        try:
            with self._lock:
                self._set("debug/connection_test", {"timestamp": time.time()})
                self._flush()
            status["write_test"] = "SUCCESS"
        except Exception as e:
            status["write_test"] = f"FAILED: {e}"
            return status

        try:
            with open(self.file_path, "r") as f:
                on_disk = json.load(f)
            if not isinstance(on_disk, dict) or "debug" not in on_disk:
                raise ValueError("test entry missing after write")
            status["read_test"] = "SUCCESS"
            status["connected"] = True
        except (OSError, ValueError) as e:
            status["read_test"] = f"FAILED: {e}"
        return status
