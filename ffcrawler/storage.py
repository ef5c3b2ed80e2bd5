"""File-tree storage for crawled records."""
import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def story_file(story_id: int) -> str:
    return os.path.join(f"story.{story_id}", "story.json")


def chapter_file(story_id: int, chapter: int) -> str:
    return os.path.join(f"story.{story_id}", f"chapter.{chapter:04d}.json")


class ContentStore:
    """
    JSON record store rooted at a directory.

    All paths passed to the store are relative to ``root``. Directory
    creation is memoized per directory for the lifetime of the store, so
    concurrent first writers into the same directory share one creation.
    """

    def __init__(self, root: str):
        self.root = root
        self._dirs: Dict[str, "asyncio.Task[None]"] = {}

    def path(self, path: str) -> str:
        """Absolute location of a store-relative path."""
        return os.path.join(self.root, path)

    def exists(self, path: str) -> bool:
        return os.path.isfile(self.path(path))

    async def make_dir(self, path: str) -> None:
        """Ensure the parent directory of ``path`` exists."""
        directory = os.path.dirname(self.path(path))
        task = self._dirs.get(directory)
        if task is None:
            task = asyncio.ensure_future(self._create_dir(directory))
            self._dirs[directory] = task
        await task

    async def _create_dir(self, directory: str) -> None:
        logger.debug(f"Creating directory. (dir={directory})")
        os.makedirs(directory, exist_ok=True)
        logger.debug(f"Created directory. (dir={directory})")

    async def write_text(self, path: str, text: str) -> None:
        """
        Write text to ``path``, replacing any previous file as a whole.

        The content goes to a temporary sibling first and is renamed into
        place, so a reader never sees a partial file.
        """
        await self.make_dir(path)
        target = self.path(path)
        temp = f"{target}.tmp"
        with open(temp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(temp, target)
        logger.debug(f"Wrote file. (file={target} length={len(text)})")

    async def write(self, path: str, record: Any) -> None:
        """Write a record as pretty-printed JSON with a trailing newline."""
        if isinstance(record, BaseModel):
            record = record.model_dump(mode="json")
        await self.write_text(path, json.dumps(record, indent=2, ensure_ascii=False) + "\n")

    async def read(self, path: str) -> Any:
        with open(self.path(path), "r", encoding="utf-8") as f:
            return json.load(f)

    def versions(self, path: str) -> List[int]:
        """Existing version suffixes of a canonical ``*.json`` path."""
        directory, name = os.path.split(self.path(path))
        stem = name[:-len(".json")]
        if not os.path.isdir(directory):
            return []
        pattern = re.compile(re.escape(stem) + r"\.v(\d+)\.json")
        found = []
        for entry in os.listdir(directory):
            match = pattern.fullmatch(entry)
            if match:
                found.append(int(match.group(1)))
        return sorted(found)

    async def rotate(self, path: str) -> str:
        """
        Move the canonical file at ``path`` to its next version slot.

        The new suffix is one more than the largest existing suffix.

        Returns:
            Store-relative path of the versioned file
        """
        existing = self.versions(path)
        version = (existing[-1] if existing else 0) + 1
        versioned = f"{path[:-len('.json')]}.v{version}.json"
        os.rename(self.path(path), self.path(versioned))
        logger.debug(f"Rotated file. (file={path} version={version})")
        return versioned

    def find_files(self, pattern: str, subdir: str = "") -> List[str]:
        """
        Recursively find files whose name matches a regex.

        Returns:
            Sorted store-relative paths
        """
        regex = re.compile(pattern)
        start = self.path(subdir)
        found = []
        for dirpath, dirnames, filenames in os.walk(start):
            for filename in filenames:
                if regex.fullmatch(filename):
                    found.append(os.path.relpath(os.path.join(dirpath, filename), self.root))
        return sorted(found)
