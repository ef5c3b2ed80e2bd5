"""
Tests for exporting a stored run.

Usage:
    pytest test_export.py
"""
import asyncio
import json
import os

import pytest

from ffcrawler.export import export_output, format_output
from ffcrawler.storage import ContentStore, chapter_file, story_file


def test_format_output():
    assert format_output([]) == "[]\n"
    assert format_output([{"id": 1}, {"id": 2}]) == '[{"id": 1},\n{"id": 2}]\n'


def test_export_output(tmp_path):
    src = str(tmp_path / "out")
    dest = str(tmp_path / "export")
    store = ContentStore(os.path.join(src, "run"))

    async def run():
        await store.write(story_file(2), {"id": 2})
        await store.write(story_file(1), {"id": 1})
        await store.write(chapter_file(1, 2), {"number": 2})
        await store.write(chapter_file(1, 1), {"number": 1})
        await store.write(os.path.join("story.1", "chapter.0001.v1.json"), {"number": 1, "old": True})
        return await export_output("run", src, dest)

    root = asyncio.run(run())

    assert root == os.path.join(dest, "run")
    with open(os.path.join(root, "stories.json"), encoding="utf-8") as f:
        assert json.load(f) == [{"id": 1}, {"id": 2}]
    with open(os.path.join(root, "chapters", "1.json"), encoding="utf-8") as f:
        assert json.load(f) == [{"number": 1}, {"number": 2}]
    with open(os.path.join(root, "chapters", "2.json"), encoding="utf-8") as f:
        assert json.load(f) == []


def test_export_missing_run(tmp_path):
    with pytest.raises(FileNotFoundError):
        asyncio.run(export_output("missing", str(tmp_path), str(tmp_path / "export")))
