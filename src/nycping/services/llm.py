"""
LLM collaborator for the enhanced digest. Only the briefing and story
clusters depend on it; every caller has a non-LLM fallback.
"""
import time
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from langchain_ollama import ChatOllama
from langchain_core.messages import HumanMessage, SystemMessage
import httpx

from nycping.services.config import AppConfig

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    async def complete(self, prompt: str, system: str | None = None) -> Dict[str, Any]:
        """Returns {"content": str, "latency_ms": int}."""
        ...

    async def health_check(self) -> bool:
        ...


def _is_connection_error(error: Exception) -> bool:
    if isinstance(error, (httpx.ConnectError, ConnectionError)):
        return True
    message = str(error).lower()
    return "connection" in message or "connect" in message


class OllamaClient:
    """
    LangChain-based Ollama client. Connection failures are retried here;
    any other error goes straight back to the caller, which owns the fallback.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.1,
        max_retries: int = 2,
        retry_delay: float = 2.0,
        timeout: float = 90.0,
    ):
        # ChatOllama uses Ollama's native API, not the OpenAI-compatible /v1 endpoint
        if base_url.endswith("/v1/"):
            base_url = base_url[:-4]
        elif base_url.endswith("/v1"):
            base_url = base_url[:-3]

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        self.llm = ChatOllama(
            base_url=self.base_url,
            model=model,
            temperature=temperature,
            num_ctx=8192,
            format="json",
        )

    async def _invoke_with_retry(self, messages: List[Any]) -> Any:
        last_exception = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.wait_for(
                    self.llm.ainvoke(messages),
                    timeout=self.timeout,
                )

            except asyncio.TimeoutError:
                # The caller's time budget is the real limit; do not retry a slow model.
                raise TimeoutError(f"LLM request timed out after {self.timeout}s")

            except Exception as e:
                if not _is_connection_error(e):
                    raise
                last_exception = e
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries}: Connection error - {e} "
                    f"(base_url={self.base_url}, model={self.model})"
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise last_exception or ConnectionError("All connection attempts failed")

    async def complete(self, prompt: str, system: str | None = None) -> Dict[str, Any]:
        """
        Run a prompt and return the response with metadata.
        """
        start = time.time()

        messages: List[Any] = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))

        response = await self._invoke_with_retry(messages)

        latency_ms = int((time.time() - start) * 1000)

        return {
            "content": response.content,
            "latency_ms": latency_ms,
        }

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False


def create_llm(config: AppConfig) -> Optional[OllamaClient]:
    """None when the enhanced digest is switched off."""
    if not config.LLM_ENABLED:
        return None
    return OllamaClient(
        base_url=config.OLLAMA_BASE_URL,
        model=config.OLLAMA_MODEL,
        timeout=config.ENHANCED_TIMEOUT_SECONDS,
    )
