import json
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests

from ollama_webui.__main__ import main


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("WEBUI_DATA_DIR", str(tmp_path))
    return tmp_path


def _patch_post(monkeypatch, response) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def fake_post(url, headers=None, data=None, stream=False, timeout=None):
        calls.append({"url": url, "body": json.loads(data), "stream": stream})
        return response

    monkeypatch.setattr(requests, "post", fake_post)
    return calls


def test_ask_streams_fragments_to_stdout(data_dir, monkeypatch, capsys, fake_response, make_ndjson) -> None:
    upstream = fake_response(
        chunks=make_ndjson({"response": "Hello"}, {"response": " world", "done": True})
    )
    calls = _patch_post(monkeypatch, upstream)
    assert main(["ask", "hi"]) == 0
    assert capsys.readouterr().out == "Hello world\n"
    assert calls[0]["body"]["prompt"] == "hi"
    assert calls[0]["stream"] is True
    assert upstream.closed


def test_ask_reports_upstream_rejection(data_dir, monkeypatch, capsys, fake_response) -> None:
    upstream = fake_response(500, text="out of memory")
    _patch_post(monkeypatch, upstream)
    assert main(["ask", "hi"]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.strip() == "Ollama error 500: out of memory"
    assert upstream.closed


def test_ask_reports_line_too_long(data_dir, monkeypatch, capsys, fake_response) -> None:
    (data_dir / "config.json").write_text(
        json.dumps({"ollama": {"max_line_length": 10}}), encoding="utf-8"
    )
    upstream = fake_response(chunks=[b"x" * 100])
    _patch_post(monkeypatch, upstream)
    assert main(["ask", "hi"]) == 1
    captured = capsys.readouterr()
    assert "Line too long" in captured.err
    assert "limit is 10" in captured.err
    assert upstream.closed
