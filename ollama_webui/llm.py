from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator
from urllib.parse import urljoin

import requests

from .settings import OllamaConfig
from .streaming import LineTooLongError, iter_fragments


logger = logging.getLogger("webui.llm")


class OllamaError(RuntimeError):
    """Raised when the Ollama service rejects a request or cannot be reached."""


class OllamaClient:
    """
    Minimal HTTP client for Ollama's ``/api/generate`` endpoint.

    The client is built from an :class:`OllamaConfig` snapshot and never looks
    at the live settings again, so a config reload cannot change a request
    that is already running.
    """

    def __init__(self, config: OllamaConfig) -> None:
        self.config = config

    @property
    def endpoint(self) -> str:
        return urljoin(self.config.host, "/api/generate")

    @property
    def timeout(self) -> tuple:
        return (self.config.connect_timeout, self.config.read_timeout)

    def build_payload(self, prompt: str, *, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "prompt": prompt,
            "stream": stream,
            "options": dict(self.config.options),
        }

    def _post(self, prompt: str, *, stream: bool) -> requests.Response:
        payload = self.build_payload(prompt, stream=stream)
        try:
            response = requests.post(
                self.endpoint,
                headers={"Content-Type": "application/json"},
                data=json.dumps(payload),
                stream=stream,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OllamaError(f"Could not reach Ollama at {self.config.host}: {exc}") from exc
        if response.status_code >= 400:
            try:
                text = response.text
            except requests.RequestException:
                text = ""
            finally:
                response.close()
            raise OllamaError(f"Ollama error {response.status_code}: {text}")
        return response

    def generate(self, prompt: str) -> str:
        response = self._post(prompt, stream=False)
        try:
            data = response.json()
        except ValueError as exc:
            raise OllamaError("Failed to decode Ollama response as JSON.") from exc
        if not isinstance(data, dict):
            raise OllamaError("Ollama returned an unexpected payload.")
        answer = data.get("response")
        return answer if isinstance(answer, str) else ""

    def open_stream(self, prompt: str) -> requests.Response:
        logger.debug("Opening stream to %s (model=%s)", self.endpoint, self.config.model)
        return self._post(prompt, stream=True)

    def relay_response(self, response: requests.Response) -> Iterator[str]:
        """
        Yield fragments from an open streaming response, closing it when done.
        """
        count = 0
        try:
            for fragment in iter_fragments(
                response.iter_content(chunk_size=None),
                max_line_length=self.config.max_line_length,
                stop_on_done=self.config.stop_on_done,
            ):
                count += 1
                yield fragment
        except LineTooLongError as exc:
            logger.error("Aborting stream from %s: %s", self.endpoint, exc)
        finally:
            response.close()
            logger.debug("Stream closed after %d fragments.", count)

    def stream(self, prompt: str) -> Iterator[str]:
        return self.relay_response(self.open_stream(prompt))

    def ping(self) -> bool:
        try:
            response = requests.get(urljoin(self.config.host, "/api/tags"), timeout=3)
        except requests.RequestException:
            return False
        return response.status_code < 400
