import multiprocessing
import os
import socket
import time
from pathlib import Path
from typing import Tuple

import pytest
import requests

uvicorn = pytest.importorskip("uvicorn")


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _run_server(port: int, project_root: Path, data_dir: str) -> None:
    import sys

    sys.path.insert(0, str(project_root))
    os.environ["WEBUI_DATA_DIR"] = data_dir
    os.chdir(project_root)

    from ollama_webui.main import app  # local import to honour modified sys.path

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=port,
        log_level="error",
    )


@pytest.fixture(scope="module")
def http_session(tmp_path_factory: pytest.TempPathFactory) -> Tuple[requests.Session, str]:
    project_root = Path(__file__).resolve().parents[1]
    data_dir = str(tmp_path_factory.mktemp("server-data"))
    port = _find_free_port()
    process = multiprocessing.Process(
        target=_run_server,
        args=(port, project_root, data_dir),
        daemon=False,
    )
    process.start()

    session = requests.Session()
    base_url = f"http://127.0.0.1:{port}"
    deadline = time.time() + 10
    while time.time() < deadline:
        try:
            response = session.get(base_url, timeout=1)
        except requests.RequestException:
            time.sleep(0.1)
            continue
        if response.status_code == 200:
            break
    else:
        process.terminate()
        process.join(timeout=2)
        pytest.fail("Server did not start within timeout.")

    yield session, base_url

    session.close()
    process.terminate()
    process.join(timeout=2)


def test_page_and_config_served(http_session: Tuple[requests.Session, str]) -> None:
    session, base_url = http_session
    response = session.get(base_url, timeout=2)
    assert response.status_code == 200
    assert "Ollama Travel Desk" in response.text

    config = session.get(f"{base_url}/config", timeout=2).json()
    assert config["ollama"]["model"] == "llama3"


def test_session_cookie_over_http(http_session: Tuple[requests.Session, str]) -> None:
    session, base_url = http_session
    assert session.get(f"{base_url}/api/me", timeout=2).json() == {"signedIn": False}
    response = session.post(
        f"{base_url}/api/signup",
        json={"userId": "smoke-user", "password": "smoke-pass"},
        timeout=5,
    )
    assert response.status_code == 200
    assert session.get(f"{base_url}/api/me", timeout=2).json() == {
        "signedIn": True,
        "userId": "smoke-user",
    }


def test_unknown_route(http_session: Tuple[requests.Session, str]) -> None:
    session, base_url = http_session
    response = session.get(f"{base_url}/missing", timeout=2)
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
