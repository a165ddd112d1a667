"""Ollama HTTP client shared by the embedder and grounded chat."""
import httpx
from typing import Any, Dict, List, Optional
import structlog

from ragcore import config

logger = structlog.get_logger()

# Health probes should fail fast even when generation timeouts are long
TAGS_TIMEOUT = 5.0


class OllamaClient:
    """Async Ollama client holding one pooled ``httpx.AsyncClient``.

    Create one per process and close it with ``aclose()`` (or use it as an
    async context manager) when the app or CLI shuts down.
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
        """
        self.base_url = config.OLLAMA_BASE_URL if base_url is None else base_url
        self.timeout = config.OLLAMA_TIMEOUT if timeout is None else timeout
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    @property
    def is_closed(self) -> bool:
        return self._http.is_closed

    async def aclose(self) -> None:
        """Close pooled connections."""
        if not self._http.is_closed:
            await self._http.aclose()
            logger.info("ollama_client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(
        self, method: str, path: str, event: str, **kwargs: Any
    ) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                event,
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def prompt(self, text: str, model: str = None) -> str:
        """Send a single user prompt and return the reply text.

        Raises:
            httpx.HTTPError: On API errors or if Ollama is unreachable
            RuntimeError: If the model returns an empty reply
        """
        model = model or config.CHAT_MODEL
        logger.info("ollama_chat_request", model=model, prompt_length=len(text))

        data = await self._request(
            "POST",
            "/api/chat",
            "ollama_chat_error",
            json={
                "model": model,
                "messages": [{"role": "user", "content": text}],
                "stream": False,
            },
        )

        content = data.get("message", {}).get("content", "")
        if not content:
            raise RuntimeError("Empty response from LLM")

        logger.info("ollama_chat_response", model=model, response_length=len(content))
        return content

    async def embeddings(self, prompt: str, model: str = None) -> Dict[str, Any]:
        """Generate an embedding for a text prompt.

        Returns:
            Response dict with 'embedding' list

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL
        data = await self._request(
            "POST",
            "/api/embeddings",
            "ollama_embedding_error",
            json={"model": model, "prompt": prompt},
        )
        logger.debug(
            "ollama_embedding_response",
            model=model,
            prompt_length=len(prompt),
            dimension=len(data.get("embedding") or []),
        )
        return data

    async def list_models(self) -> List[str]:
        """List model names installed in Ollama."""
        data = await self._request(
            "GET", "/api/tags", "ollama_list_models_error", timeout=TAGS_TIMEOUT
        )
        return [m["name"] for m in data.get("models", [])]
