"""
Responder - Generative answers over search results.

OllamaResponder talks to a local Ollama server (/api/tags as liveness
probe, /api/generate for answers) and keeps the conversation context
between calls. When the server is down it answers with OfflineResponder's
static text. Failures are always returned as text.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

import httpx

from .config import get_config, IndexerConfig
from .errors import ResponderError, handle_error
from .models import Intent, SearchResult


logger = logging.getLogger(__name__)


EXCERPT_CHARS = 1500


def _file_label(result: SearchResult) -> str:
    return f"{Path(result.path).name} ({result.file_type or 'unknown'}/{result.language or 'unknown'})"


class Responder(ABC):
    """Turns a query and a few file excerpts into free text."""

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    @abstractmethod
    async def respond(self, intent: Intent, query: str, files: List[SearchResult]) -> str:
        """Answer query using the given files."""

    @abstractmethod
    async def answer_general(self, query: str) -> str:
        """Answer from general knowledge when no file matched."""

    async def is_available(self) -> bool:
        return False

    async def status(self) -> Dict[str, Any]:
        return {"running": await self.is_available()}

    def reset_conversation(self) -> None:
        pass

    async def close(self) -> None:
        pass


class OfflineResponder(Responder):
    """Static guidance used when no generative backend is reachable."""

    HEADER = "AI service offline - basic analysis"

    async def respond(self, intent: Intent, query: str, files: List[SearchResult]) -> str:
        if intent == Intent.ERROR_HELP:
            body = (
                f'Problem: "{query}"\n\n'
                "Related files:\n"
                + "\n".join(f"- {Path(f.path).name}" for f in files[:3])
                + "\n\nChecklist:\n"
                "- Null or undefined values: check the variables are defined.\n"
                "- Import errors: check the module paths are spelled correctly.\n"
                "- Async errors: check every coroutine is awaited.\n"
                "- Type errors: check the argument types match."
            )
        elif intent == Intent.CODE_REQUEST:
            body = (
                f'Requested change: "{query}"\n\n'
                "Files that may be involved:\n"
                + "\n".join(f"- {Path(f.path).name}" for f in files[:5])
                + "\n\nGeneral approach:\n"
                "1. Read the files above to learn the existing structure.\n"
                "2. Decide which functions the change needs.\n"
                "3. Follow the existing code patterns when writing it.\n"
                "4. Wire the new code in through the existing imports."
            )
        elif intent == Intent.SUMMARY_REQUEST:
            file_types = sorted({f.file_type for f in files if f.file_type})
            body = (
                f"Total files: {len(files)}\n"
                f"File types: {', '.join(file_types) or 'unknown'}\n\n"
                "Files:\n"
                + "\n".join(f"- {Path(f.path).name}" for f in files[:8])
            )
        else:
            body = (
                f"Files found: {len(files)}\n"
                + "\n".join(f"- {_file_label(f)}" for f in files[:3])
                + f'\n\nQuery: "{query}"'
            )

        return f"{self.HEADER}\n---\n{body}\n\n{self._start_instructions()}"

    async def answer_general(self, query: str) -> str:
        return (
            f"{self.HEADER}\n---\n"
            f'No indexed file matched "{query}" and no model is available '
            "to answer from general knowledge.\n\n"
            f"{self._start_instructions()}"
        )

    def _start_instructions(self) -> str:
        return (
            "To start the AI service:\n"
            "1. Run `ollama serve` in a terminal.\n"
            f"2. Make sure the model is installed (`ollama pull {self.config.model}`).\n"
            "3. Run the search again."
        )


class OllamaResponder(Responder):
    """
    Ollama-backed responder.

    Probes /api/tags (short timeout) before each answer and falls back to
    the offline text when the server does not respond.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config)
        self._client = httpx.AsyncClient(
            base_url=self.config.ollama_url,
            timeout=self.config.generate_timeout,
            transport=transport,
        )
        self._context: List[int] = []
        self._offline = OfflineResponder(self.config)

    async def is_available(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=self.config.probe_timeout)
            return response.status_code == 200
        except httpx.HTTPError:
            logger.debug("Ollama is not running or not responding")
            return False

    async def respond(self, intent: Intent, query: str, files: List[SearchResult]) -> str:
        if not await self.is_available():
            return await self._offline.respond(intent, query, files)
        return await self._answer(_build_prompt(intent, query, files))

    async def answer_general(self, query: str) -> str:
        if not await self.is_available():
            return await self._offline.answer_general(query)
        prompt = (
            "No local file matched the question below. "
            "Answer it from general knowledge.\n\n"
            f'QUESTION: "{query}"'
        )
        return await self._answer(prompt)

    async def _answer(self, prompt: str) -> str:
        try:
            return await self._generate(prompt)
        except ResponderError as e:
            handle_error(e, context="respond")
            return f"Responder error: {e}"

    async def _generate(self, prompt: str) -> str:
        """POST /api/generate, carrying the conversation context forward."""
        try:
            response = await self._client.post(
                "/api/generate",
                json={
                    "model": self.config.model,
                    "prompt": prompt,
                    "context": self._context,
                    "stream": False,
                    "options": {
                        "temperature": 0.7,
                        "top_p": 0.9,
                        "top_k": 50,
                        "num_predict": 2048,
                    },
                },
            )
        except httpx.HTTPError as e:
            raise ResponderError(f"Ollama request failed: {e}") from e

        if response.status_code != 200:
            raise ResponderError(
                f"Ollama API error: {response.status_code} - {response.text[:200]}"
            )

        data = response.json()
        if data.get("context"):
            self._context = data["context"]
        return data.get("response") or "No response received."

    async def status(self) -> Dict[str, Any]:
        """Backend state: running flag, model, installed models, context size."""
        models: List[str] = []
        running = False
        try:
            response = await self._client.get("/api/tags", timeout=self.config.probe_timeout)
            running = response.status_code == 200
            if running:
                models = [m.get("name", "") for m in response.json().get("models", [])]
        except httpx.HTTPError:
            running = False
        return {
            "running": running,
            "model": self.config.model,
            "available_models": models,
            "history_length": len(self._context),
        }

    def reset_conversation(self) -> None:
        self._context = []
        logger.info("Conversation reset")

    async def close(self) -> None:
        await self._client.aclose()


def _format_file(result: SearchResult) -> str:
    text = result.text[:EXCERPT_CHARS]
    if len(result.text) > EXCERPT_CHARS:
        text += "\n[...content truncated...]"
    return f"---\nFILE: {_file_label(result)}\nCONTENT:\n{text}"


def _build_prompt(intent: Intent, query: str, files: List[SearchResult]) -> str:
    tasks = {
        Intent.ERROR_HELP: "Find the cause of the problem and show the fix.",
        Intent.CODE_REQUEST: "Plan the requested change and give complete code examples.",
        Intent.SUMMARY_REQUEST: "Summarize what these files do and how they fit together.",
        Intent.GENERAL: "Analyze these files and answer the question.",
    }
    excerpts = "\n\n".join(_format_file(f) for f in files)
    return (
        f'QUESTION: "{query}"\n\n'
        f"FILES:\n{excerpts}\n\n"
        f"TASK: {tasks[intent]}"
    )


def create_responder(config: IndexerConfig | None = None) -> Responder:
    """Default responder: Ollama with offline fallback."""
    return OllamaResponder(config)
