"""HTTP client for a local Ollama model server.

This module exposes :class:`OllamaClient`, the small wrapper the application
uses to reach the text-generation service.  Character prompts are rendered by
:mod:`character_builder.services.prompt_composer` and handed to this client as
a single pre-formatted string, so only the raw ``/api/generate`` endpoint is
used (no chat templating on the server side).  A few details worth knowing:

* Durations reported by Ollama are nanoseconds; :class:`GenerationResult`
  exposes them as milliseconds.
* Streaming responses are newline-delimited JSON.  Lines that fail to parse
  are skipped so a partial chunk never fails the whole call.
* :meth:`OllamaClient.check_status` never raises; connection problems are
  reported through :class:`ConnectionStatus`.

Flask creates one instance per application and reuses it for all requests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests


LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:11434"


class GenerationError(RuntimeError):
    """Raised when the generation service is unreachable or rejects a request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


@dataclass
class SamplingOptions:
    """Options forwarded verbatim to Ollama's ``options`` object."""

    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    # The Gemma 3 family expects exactly 1.0; callers are trusted to send it.
    repeat_penalty: Optional[float] = None
    num_predict: Optional[int] = None
    num_ctx: Optional[int] = None
    stop: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key in ("temperature", "top_k", "top_p", "repeat_penalty", "num_predict", "num_ctx"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.stop:
            payload["stop"] = list(self.stop)
        return payload


@dataclass
class GenerationResult:
    text: str
    token_count: int
    eval_duration_ms: float
    load_duration_ms: float
    total_duration_ms: float = 0.0


@dataclass
class ConnectionStatus:
    connected: bool
    available_models: List[str] = field(default_factory=list)
    version: Optional[str] = None
    error: Optional[str] = None


class OllamaClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, *, timeout_s: Optional[float] = None) -> None:
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        # ``None`` waits indefinitely; the batch runner does not impose a limit either.
        self.timeout_s = timeout_s

    def generate(self, model: str, prompt: str, options: Optional[SamplingOptions] = None) -> GenerationResult:
        """Run a non-streaming generation and return the text with timing metadata."""

        response = self._post_generate(model, prompt, options, stream=False)
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(
                "Ollama returned a response that is not JSON.",
                status_code=response.status_code,
                detail=_shorten(response.text),
            ) from exc

        if not isinstance(data, dict):
            raise GenerationError(
                "Ollama returned an unexpected payload.",
                status_code=response.status_code,
                detail=_shorten(str(data)),
            )
        return _result_from_payload(data, str(data.get("response") or ""))

    def iter_stream(
        self,
        model: str,
        prompt: str,
        options: Optional[SamplingOptions] = None,
        *,
        final: Optional[Dict[str, Any]] = None,
    ) -> Iterator[str]:
        """Yield text increments from a streaming generation.

        When ``final`` is given it receives the terminal status object sent by
        Ollama (token counts and durations) once the stream completes.
        """

        response = self._post_generate(model, prompt, options, stream=True)
        try:
            for raw_line in response.iter_lines(decode_unicode=True):
                if not raw_line or not raw_line.strip():
                    continue
                try:
                    data = json.loads(raw_line)
                except json.JSONDecodeError:
                    LOGGER.debug("Skipping malformed stream line: %s", _shorten(raw_line, 200))
                    continue
                if not isinstance(data, dict):
                    continue

                chunk = data.get("response")
                if isinstance(chunk, str) and chunk:
                    yield chunk
                if data.get("done"):
                    if final is not None:
                        final.update(data)
                    return
        except requests.RequestException as exc:
            raise GenerationError(f"Ollama stream was interrupted: {exc}") from exc
        finally:
            response.close()

    def generate_stream(
        self,
        model: str,
        prompt: str,
        on_chunk: Callable[[str], None],
        options: Optional[SamplingOptions] = None,
    ) -> GenerationResult:
        """Stream a generation, invoking ``on_chunk`` for every text increment."""

        final: Dict[str, Any] = {}
        parts: List[str] = []
        for chunk in self.iter_stream(model, prompt, options, final=final):
            parts.append(chunk)
            on_chunk(chunk)
        return _result_from_payload(final, "".join(parts))

    def check_status(self) -> ConnectionStatus:
        """Report whether the server answers and which models it has pulled."""

        try:
            version_response = requests.get(f"{self.base_url}/api/version", timeout=self.timeout_s)
            version_response.raise_for_status()
            version = version_response.json().get("version")

            tags_response = requests.get(f"{self.base_url}/api/tags", timeout=self.timeout_s)
            tags_response.raise_for_status()
            models = tags_response.json().get("models") or []
        except (requests.RequestException, ValueError, AttributeError) as exc:
            LOGGER.info("Ollama status check failed: %s", exc)
            return ConnectionStatus(connected=False, error=str(exc) or exc.__class__.__name__)

        names = [str(entry.get("name")) for entry in models if isinstance(entry, dict) and entry.get("name")]
        return ConnectionStatus(connected=True, available_models=names, version=version)

    def _post_generate(
        self,
        model: str,
        prompt: str,
        options: Optional[SamplingOptions],
        *,
        stream: bool,
    ) -> requests.Response:
        body: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": (options or SamplingOptions()).to_payload(),
        }
        url = f"{self.base_url}/api/generate"
        LOGGER.debug("POST %s model=%s stream=%s prompt_chars=%d", url, model, stream, len(prompt))

        try:
            response = requests.post(url, json=body, stream=stream, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise GenerationError(f"Could not reach Ollama at {self.base_url}: {exc}") from exc

        if not response.ok:
            detail = _shorten(response.text)
            LOGGER.warning("Ollama generation failed with status %s: %s", response.status_code, detail)
            raise GenerationError(
                f"Ollama generation failed with status {response.status_code}.",
                status_code=response.status_code,
                detail=detail,
            )
        return response


def _result_from_payload(data: Dict[str, Any], text: str) -> GenerationResult:
    return GenerationResult(
        text=text,
        token_count=_as_int(data.get("eval_count")),
        eval_duration_ms=_ns_to_ms(data.get("eval_duration")),
        load_duration_ms=_ns_to_ms(data.get("load_duration")),
        total_duration_ms=_ns_to_ms(data.get("total_duration")),
    )


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _ns_to_ms(value: Any) -> float:
    try:
        return float(value or 0) / 1_000_000
    except (TypeError, ValueError):
        return 0.0


def _shorten(text: str, limit: int = 1200) -> str:
    text = (text or "").replace("\n", " ")
    return (text[:limit] + "…") if len(text) > limit else text


__all__ = [
    "ConnectionStatus",
    "GenerationError",
    "GenerationResult",
    "OllamaClient",
    "SamplingOptions",
]
