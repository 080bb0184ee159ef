"""Tests for io_utils.py — JSON and text helpers."""
from __future__ import annotations

import json

from agentic_rag.io_utils import load_json, read_text, save_json


class TestSaveAndLoadJson:
    def test_roundtrip(self, tmp_path):
        path = tmp_path / "payload.json"
        save_json({"dimension": 3, "chunks": []}, path)
        assert load_json(path) == {"dimension": 3, "chunks": []}

    def test_creates_parent_directories(self, tmp_path):
        nested = tmp_path / "a" / "b" / "meta.json"
        save_json([1, 2], nested)
        assert nested.exists()

    def test_indent(self, tmp_path):
        path = tmp_path / "pretty.json"
        save_json({"k": 1}, path, indent=2)
        assert path.read_text(encoding="utf-8") == json.dumps({"k": 1}, indent=2)


class TestReadText:
    def test_reads_utf8(self, tmp_path):
        path = tmp_path / "doc.txt"
        path.write_text("Zürich ist schön.", encoding="utf-8")
        assert read_text(path) == "Zürich ist schön."

    def test_replaces_undecodable_bytes(self, tmp_path):
        path = tmp_path / "bad.txt"
        path.write_bytes(b"ok \xff end")
        assert read_text(path) == "ok � end"
