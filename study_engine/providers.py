"""Gemini embedding and completion providers with model-candidate fallback."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import numpy as np
from google import genai
from google.genai import types as genai_types

from .config import ProviderConfig
from .errors import ProviderError, ValidationError
from .logging import get_logger, log_with_context

logger = get_logger(__name__)

T = TypeVar("T")

GENERATE_ACTION = "generateContent"
EMBED_ACTION = "embedContent"
RETRYABLE_STATUS = {404, 429, 503}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 on dimension mismatch or zero vectors."""
    if len(a) != len(b):
        logger.warning(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0:
        return 0.0
    sim = float(np.dot(va, vb) / denom)
    if np.isnan(sim) or np.isinf(sim):
        return 0.0
    return sim


def _error_status(err: Exception) -> Optional[int]:
    code = getattr(err, "code", None)
    if code is None:
        code = getattr(err, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _error_message(err: Exception) -> str:
    message = getattr(err, "message", None)
    return str(message or err)


def _is_retryable(status: Optional[int], message: str) -> bool:
    message = message.lower()
    if status in RETRYABLE_STATUS:
        return True
    return status == 400 and ("not found" in message or "not supported" in message)


def should_try_next_model(err: Exception) -> bool:
    """Not found, unsupported, rate limited and unavailable move on to the next model."""
    return _is_retryable(_error_status(err), _error_message(err))


def is_transient(err: Exception) -> bool:
    """Whether trying the same call again could succeed.

    A ``ProviderError`` is transient only when at least one recorded model
    failure was retryable; an unconfigured provider or a hard failure such as
    an invalid key is not.
    """
    if isinstance(err, ProviderError):
        return any(
            _is_retryable(f.get("status"), str(f.get("message") or "")) for f in err.failures
        )
    return should_try_next_model(err)


def with_retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    delay_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """Call ``fn`` up to ``max_attempts`` times with a fixed delay between tries.

    When ``retry_on`` is given, errors it rejects are raised on the first attempt.
    """
    attempts = max(1, max_attempts)
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or (retry_on is not None and not retry_on(exc)):
                raise
            logger.info(f"Retrying after error ({attempt}/{attempts - 1}): {exc}")
            if delay_seconds > 0:
                sleep(delay_seconds)
            attempt += 1


class ModelCatalog:
    """Process-wide cache of remotely discovered model names, filled once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._models: Optional[Dict[str, List[str]]] = None

    def discovered(self, client: Any, action: str) -> List[str]:
        if self._models is None:
            with self._lock:
                if self._models is None:
                    found = self._discover(client)
                    if found is not None:
                        self._models = found
        if self._models is None:
            return []
        return list(self._models.get(action, []))

    def reset(self) -> None:
        with self._lock:
            self._models = None

    @staticmethod
    def _discover(client: Any) -> Optional[Dict[str, List[str]]]:
        try:
            listing = list(client.models.list())
        except Exception as exc:
            logger.warning(f"Model discovery failed, using configured candidates: {exc}")
            return None
        by_action: Dict[str, List[str]] = {}
        for model in listing:
            name = getattr(model, "name", None)
            if not name:
                continue
            for action in getattr(model, "supported_actions", None) or []:
                by_action.setdefault(action, []).append(name)
        return by_action


default_catalog = ModelCatalog()


def candidate_models(configured: List[str], discovered: List[str]) -> List[str]:
    """Configured models the API knows about first, then the remaining discovered ones."""
    if not discovered:
        return list(configured)
    prioritized = [m for m in configured if m in discovered]
    extras = [m for m in discovered if m not in prioritized]
    return prioritized + extras


class _GeminiProvider:
    action = ""
    kind = ""

    def __init__(
        self,
        config: ProviderConfig,
        api_key: Optional[str] = None,
        catalog: Optional[ModelCatalog] = None,
        client: Any = None,
    ):
        self.config = config
        self.catalog = catalog or default_catalog
        if client is not None:
            self.client = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
        else:
            self.client = None

    def _configured_models(self) -> List[str]:
        raise NotImplementedError

    def _run(self, call: Callable[[str], T]) -> T:
        if self.client is None:
            raise ProviderError("GEMINI_API_KEY (or GOOGLE_API_KEY) is not configured")

        discovered = self.catalog.discovered(self.client, self.action)
        failures: List[Dict[str, Any]] = []
        for model in candidate_models(self._configured_models(), discovered):
            try:
                return call(model)
            except Exception as exc:
                failures.append(
                    {"model": model, "status": _error_status(exc), "message": _error_message(exc)}
                )
                if not should_try_next_model(exc):
                    break
                log_with_context(
                    logger, logging.WARNING, f"{self.kind} model unavailable, trying next", model=model
                )

        logger.error(f"Gemini {self.kind} failed across models: {failures}")
        raise ProviderError(f"All Gemini {self.kind} model attempts failed", failures)


class GeminiEmbeddingProvider(_GeminiProvider):
    """Turns text into fixed-dimension vectors."""

    action = EMBED_ACTION
    kind = "embedding"

    def _configured_models(self) -> List[str]:
        return self.config.embedding_models

    def embedding_dimensions(self) -> int:
        return self.config.embedding_dimensions

    def _embed_config(self) -> genai_types.EmbedContentConfig:
        return genai_types.EmbedContentConfig(
            output_dimensionality=self.config.embedding_dimensions
        )

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        def call(model: str) -> List[float]:
            resp = self.client.models.embed_content(
                model=model, contents=[text], config=self._embed_config()
            )
            return [float(v) for v in resp.embeddings[0].values]

        return self._run(call)

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed all texts with one model; any failure discards the partial result."""
        if not texts:
            raise ValidationError("Texts must be a non-empty list")
        if any(not t or not t.strip() for t in texts):
            raise ValidationError("Text cannot be empty")

        size = max(1, self.config.batch_size)

        def call(model: str) -> List[List[float]]:
            vectors: List[List[float]] = []
            for i in range(0, len(texts), size):
                batch = texts[i : i + size]
                resp = self.client.models.embed_content(
                    model=model, contents=batch, config=self._embed_config()
                )
                embeddings = resp.embeddings or []
                if len(embeddings) != len(batch):
                    raise ProviderError(
                        f"Expected {len(batch)} embeddings from {model}, got {len(embeddings)}"
                    )
                vectors.extend([float(v) for v in e.values] for e in embeddings)
            log_with_context(
                logger, logging.INFO, f"Generated {len(vectors)} embeddings", model=model, count=len(vectors)
            )
            return vectors

        return self._run(call)

    def embed_with_retry(self, text: str, sleep: Callable[[float], None] = time.sleep) -> List[float]:
        return with_retry(
            lambda: self.embed(text),
            max_attempts=self.config.max_retries,
            delay_seconds=self.config.retry_delay_seconds,
            sleep=sleep,
            retry_on=is_transient,
        )

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)


class GeminiCompletionProvider(_GeminiProvider):
    """Turns a prompt into generated text."""

    action = GENERATE_ACTION
    kind = "generation"

    def _configured_models(self) -> List[str]:
        return self.config.generation_models

    def complete(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """Return generated text, or "" when the model produced no candidates."""
        gen_config = genai_types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            top_p=top_p,
            top_k=top_k,
        )

        def call(model: str) -> str:
            resp = self.client.models.generate_content(
                model=model, contents=prompt, config=gen_config
            )
            if not getattr(resp, "candidates", None):
                return ""
            return resp.text or ""

        return self._run(call)
