"""
Service: llm_engine.py
- Centralise les appels vers le LLM (Ollama par défaut, ou endpoint compatible OpenAI).
- Expose un générateur asynchrone `generate(model, system_prompt, messages, temperature, max_tokens)`
  utilisé par le coordinateur de tours.

Fonctions principales:
- LLMClient.complete(...): appel chat bloquant (requests), renvoie le texte.
- LLMGenerator.generate(...): même appel exécuté sur un pool de threads dédié.

Un appel HTTP ne doit pas survivre longtemps au timeout de l'événement :
le read timeout vaut `LLM_TIMEOUT_SECONDS` et les erreurs de lecture ne sont
pas rejouées (un POST lent n'est jamais renvoyé).
"""
import asyncio
import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_CHAT_TIMEOUT: Tuple[float, float] = (5.0, 45.0)  # connect, read

PROVIDER_OLLAMA = "ollama"
PROVIDER_OPENAI = "openai"


class LLMServiceError(RuntimeError):
    """Erreur encapsulant un échec de communication avec le LLM."""


class LLMClient:
    """
    Client HTTP centralisé pour communiquer avec le LLM.
    - Configure retries avec backoff exponentiel (connexion et 429/5xx uniquement).
    - Journalise chaque requête avec un identifiant de corrélation.
    """

    def __init__(
        self,
        chat_endpoint: str,
        *,
        provider: str = PROVIDER_OLLAMA,
        api_key: str = "",
        session: Optional[requests.Session] = None,
        chat_timeout: Tuple[float, float] = DEFAULT_CHAT_TIMEOUT,
    ) -> None:
        self.chat_endpoint = chat_endpoint
        self.provider = (provider or PROVIDER_OLLAMA).lower()
        self.api_key = api_key
        self.session = session or self._build_session()
        self.chat_timeout = chat_timeout

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        # une lecture expirée n'est jamais rejouée
        retry = Retry(
            total=2,
            read=0,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _headers(self) -> Dict[str, str]:
        if self.provider == PROVIDER_OPENAI and self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        timeout: Tuple[float, float],
        request_id: str,
    ) -> requests.Response:
        try:
            logger.debug(
                "LLM request start",
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            response = self.session.post(url, json=payload, headers=self._headers(), timeout=timeout)
            response.raise_for_status()
            return response
        except requests.Timeout as exc:
            logger.warning(
                "LLM request timeout",
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            raise LLMServiceError("LLM request timed out") from exc
        except requests.RequestException as exc:
            logger.error(
                "LLM request failed",
                exc_info=True,
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            raise LLMServiceError("LLM request failed") from exc

    def build_payload(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        """Construit le corps de requête selon le provider (options Ollama vs champs OpenAI)."""
        if self.provider == PROVIDER_OPENAI:
            payload: Dict[str, Any] = {"model": model, "messages": messages}
            if temperature is not None:
                payload["temperature"] = temperature
            if max_tokens:
                payload["max_completion_tokens"] = max_tokens
            return payload

        options: Dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens:
            options["num_predict"] = max_tokens
        return {"model": model, "messages": messages, "options": options, "stream": False}

    @staticmethod
    def extract_text(data: Any) -> str:
        """
        Extrait le texte de la réponse :
        - Ollama /api/chat: {"message": {"content": ...}} (ou {"response": ...})
        - OpenAI: {"choices": [{"message": {"content": ...}}]}
        """
        if not isinstance(data, dict):
            raise LLMServiceError("Malformed LLM payload")
        text: Any = None
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] if isinstance(choices[0], dict) else {}
            text = (first.get("message") or {}).get("content")
        if text is None:
            text = (data.get("message") or {}).get("content") or data.get("response")
        if not isinstance(text, str) or not text.strip():
            raise LLMServiceError("Empty response from LLM chat")
        return text.strip()

    def chat(self, payload: Dict[str, Any], *, request_id: str) -> Dict[str, Any]:
        response = self._post(
            self.chat_endpoint,
            payload,
            timeout=self.chat_timeout,
            request_id=request_id,
        )
        try:
            data = response.json()
            logger.debug(
                "LLM chat success",
                extra={"llm_request_id": request_id},
            )
            return data
        except json.JSONDecodeError as exc:
            logger.error(
                "Invalid JSON payload from LLM chat",
                exc_info=True,
                extra={"llm_request_id": request_id},
            )
            raise LLMServiceError("Invalid JSON payload from LLM chat") from exc

    def complete(
        self,
        model: str,
        system_prompt: Optional[str],
        messages: Sequence[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Appel chat complet (bloquant) : renvoie le texte généré ou lève `LLMServiceError`."""
        full: List[Dict[str, str]] = []
        if system_prompt:
            full.append({"role": "system", "content": system_prompt})
        full.extend(dict(m) for m in messages)

        request_id = f"chat-{uuid4().hex}"
        data = self.chat(self.build_payload(model, full, temperature, max_tokens), request_id=request_id)
        text = self.extract_text(data)
        logger.info(
            "LLM completion generated",
            extra={"llm_request_id": request_id, "llm_model": model, "llm_chars": len(text)},
        )
        return text


class LLMGenerator:
    """
    Adaptateur asynchrone : exécute `LLMClient.complete` sur un pool de threads
    propre au LLM, jamais sur le pool par défaut de la boucle.
    """

    def __init__(self, client: LLMClient, *, max_workers: int = settings.LLM_MAX_WORKERS) -> None:
        self.client = client
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="llm")

    async def generate(
        self,
        model: str,
        system_prompt: Optional[str],
        messages: Sequence[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self.client.complete, model, system_prompt, list(messages), temperature, max_tokens
        )
        return await loop.run_in_executor(self._executor, call)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


CLIENT = LLMClient(
    settings.LLM_ENDPOINT,
    provider=settings.LLM_PROVIDER,
    api_key=settings.LLM_API_KEY,
    chat_timeout=(5.0, settings.LLM_TIMEOUT_SECONDS),
)
GENERATOR = LLMGenerator(CLIENT)
