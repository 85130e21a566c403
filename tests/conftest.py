import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Iterable, List, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ollama_webui.main reads these at import time.
os.environ.setdefault("WEBUI_DATA_DIR", tempfile.mkdtemp(prefix="webui-tests-"))
os.environ.setdefault("WEBUI_SESSION_SECRET", "test-session-secret")


class FakeResponse:
    """Stands in for ``requests.Response`` in client and route tests."""

    def __init__(
        self,
        status_code: int = 200,
        *,
        chunks: Iterable[bytes] = (),
        payload: Any = None,
        text: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self._chunks = list(chunks)
        self._payload = payload
        self._text = text
        self.closed = False
        self.pulled = 0

    @property
    def text(self) -> str:
        if self._text is not None:
            return self._text
        if self._payload is not None:
            return json.dumps(self._payload)
        return b"".join(self._chunks).decode("utf-8", "replace")

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload

    def iter_content(self, chunk_size: Optional[int] = None):
        for chunk in self._chunks:
            self.pulled += 1
            yield chunk

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_response():
    return FakeResponse


def ndjson(*records: dict) -> List[bytes]:
    return [(json.dumps(record) + "\n").encode("utf-8") for record in records]


@pytest.fixture
def make_ndjson():
    return ndjson
