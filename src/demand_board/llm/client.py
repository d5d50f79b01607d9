# src/demand_board/llm/client.py

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from ..core.ports import ChatMessage

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    s = raw.strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        return default


def _timeouts_from_env() -> dict[str, float]:
    """
    Configurable timeouts so a slow model does not hang the console.

    Defaults:
    - connect timeout: 5s
    - read timeout: 60s (classification answers arrive in one piece)
    """
    return {
        "connect": _env_float("BOARD_LLM_CONNECT_TIMEOUT_SECONDS", 5.0),
        "read": _env_float("BOARD_LLM_READ_TIMEOUT_SECONDS", 60.0),
    }


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError)):
        return True
    return isinstance(exc, httpx.TimeoutException)


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK uses NotFoundError for HTTP 404 (unknown model)
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    """User-facing text for a classifier failure (log lines keep the raw error)."""
    msg = str(err).strip()
    if "LLM API key is not set" in msg:
        return "Classificador não configurado (falta a chave). Defina BOARD_LLM_API_KEY no .env."
    if "LLM model list is empty" in msg:
        return "Classificador não configurado (sem modelos). Defina BOARD_LLM_MODELS no .env."
    if "LLM base URL is not set" in msg:
        return "Classificador não configurado (falta a URL). Defina BOARD_LLM_BASE_URL no .env."
    if "authentication failed" in msg:
        return "Falha de autenticação no classificador. Verifique BOARD_LLM_API_KEY."
    if "rate-limited" in msg:
        return "Classificador sobrecarregado. Tente novamente mais tarde."
    if "network/timeout" in msg:
        return "Falha de rede ao contatar o classificador. Tente novamente mais tarde."
    return "Não foi possível classificar as demandas."


class OpenAICompatibleClient:
    """
    Non-streaming chat completion client for OpenAI-compatible endpoints.

    Behavior:
    - Tries models in the configured order (BOARD_LLM_MODELS).
    - 404 (model not available) -> model parked for an hour, try next.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast (no retries across models).
    - JSON mode is requested; endpoints that reject it are retried without it.
    """

    def __init__(self, settings: Any) -> None:
        api_key = getattr(settings, "llm_api_key", None)
        base_url = getattr(settings, "llm_base_url", "") or ""

        if not api_key or not str(api_key).strip():
            raise RuntimeError("LLM API key is not set. Set BOARD_LLM_API_KEY in your .env.")
        if not base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set BOARD_LLM_BASE_URL in your .env.")

        self._models: List[str] = [m.strip() for m in (getattr(settings, "llm_models", []) or []) if m.strip()]
        self._headers: Dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})
        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)

        t = _timeouts_from_env()
        # We disable automatic retries to allow quick fallback across models.
        self._client = OpenAI(
            base_url=str(base_url),
            api_key=str(api_key),
            timeout=httpx.Timeout(connect=t["connect"], read=t["read"], write=10.0, pool=t["connect"]),
            max_retries=0,
        )

    def _create(self, model: str, messages: list[dict[str, str]]) -> Any:
        try:
            return self._client.chat.completions.create(
                model=model,
                messages=messages,
                response_format={"type": "json_object"},
                extra_headers=self._headers or None,
            )
        except openai.BadRequestError:
            logger.info("LLM: model=%s rejected JSON mode, retrying without it", model)
            return self._client.chat.completions.create(
                model=model,
                messages=messages,
                extra_headers=self._headers or None,
            )

    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str:
        if not self._models:
            raise RuntimeError("LLM model list is empty. Set BOARD_LLM_MODELS in your .env.")

        full_messages = [{"role": "system", "content": system_prompt}, *messages]
        last_error: Optional[Exception] = None
        now = time.monotonic()

        for model in self._models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s", model)
            t0 = time.monotonic()
            try:
                response = self._create(model, full_messages)
                content = None
                if response.choices:
                    content = response.choices[0].message.content
                if content and content.strip():
                    logger.info("LLM: answer from model=%s (%.2fs)", model, time.monotonic() - t0)
                    return content
                last_error = RuntimeError(f"Model returned no content: {model}")

            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError(
                        "LLM authentication failed. Check your API key (BOARD_LLM_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    self._bad_models[model] = time.monotonic() + 3600.0  # 1 hour
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later or change models.") from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")
