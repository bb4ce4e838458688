from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from livescribe.nlp.translator.base import LanguageModel
from livescribe.resilience.errors import ErrorCategory, ServiceError, classify_status

logger = logging.getLogger(__name__)


class OllamaClient(LanguageModel):
    """
    Minimal synchronous client for a local Ollama server.

    Transport failures and non-2xx responses are raised as ServiceError with a
    category, so the resilience layer never has to look at httpx internals.
    """

    def __init__(
        self,
        endpoint: str = "http://localhost:11434",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout = float(timeout)
        self.client: Optional[httpx.Client] = httpx.Client(
            base_url=self.endpoint,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "ollama"

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if self.client is None:
            raise ServiceError("ollama client is closed", ErrorCategory.CONFIGURATION)
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ServiceError(f"ollama request timed out: {e}", ErrorCategory.TIMEOUT) from e
        except httpx.RequestError as e:
            raise ServiceError(f"cannot reach ollama at {self.endpoint}: {e}", ErrorCategory.CONNECTION) from e

        if response.status_code >= 400:
            body = response.text
            message = body
            try:
                data = response.json()
                if isinstance(data, dict) and data.get("error"):
                    message = str(data["error"])
            except ValueError:
                pass
            category = classify_status(response.status_code, message)
            logger.warning(
                "ollama_http_error",
                extra={"status": response.status_code, "path": path, "category": category.value},
            )
            raise ServiceError(
                f"ollama returned {response.status_code}: {message[:200]}",
                category,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceError("ollama returned a non-JSON body", ErrorCategory.FORMAT) from e
        if not isinstance(data, dict):
            raise ServiceError("unexpected response format from ollama", ErrorCategory.FORMAT)
        return data

    def generate(self, prompt: str, *, model: str) -> str:
        data = self._request(
            "POST",
            "/api/generate",
            json={"model": model, "prompt": prompt, "stream": False},
        )
        text = data.get("response")
        if not isinstance(text, str):
            raise ServiceError("ollama response has no 'response' field", ErrorCategory.FORMAT)
        return text

    def list_models(self) -> List[str]:
        data = self._request("GET", "/api/tags")
        models = data.get("models") or []
        names: List[str] = []
        for m in models:
            if isinstance(m, dict) and m.get("name"):
                names.append(str(m["name"]))
        return names

    def check_connection(self) -> Dict[str, Any]:
        """Ask the server for its model list; never raises."""
        try:
            models = self.list_models()
        except ServiceError as e:
            return {"ok": False, "models": [], "category": e.category.value, "message": str(e)}
        return {"ok": True, "models": models, "category": None, "message": "connected"}

    def has_model(self, model: str) -> bool:
        names = self.list_models()
        # "llama3" matches "llama3:latest"
        return any(n == model or n.split(":", 1)[0] == model for n in names)

    def close(self) -> None:
        if self.client is None:
            return
        client = self.client
        self.client = None
        client.close()
