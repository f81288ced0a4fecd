import json
import logging
from typing import Optional, Sequence

import httpx

from switchboard.catalog import CatalogItem
from switchboard.circuit_breaker import CircuitBreaker
from switchboard.detector import ClassifierVerdict
from switchboard.prompts import (
    CLASSIFY_SYSTEM,
    COMPLEXITY_PROMPT,
    METADATA_PROMPT,
    SPLIT_SYSTEM,
    build_classify_prompt,
    build_complexity_input,
    build_split_prompt,
)

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
CHAT_MODEL = "gpt-4o-mini"
EMBEDDING_MODEL = "text-embedding-3-small"

NO_VERDICT = ClassifierVerdict(index=None, confidence=0, rationale="No confident answer")


class OpenAIProvider:
    """Language-model and embedding calls for the detection pipeline.

    Every public method returns an empty value when the provider is down,
    misconfigured or answers with garbage, so the caller falls back to the
    next-lower tier. After 3 consecutive failures calls are skipped for 60s.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        circuit: CircuitBreaker | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._circuit = circuit or CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="OpenAI",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )

    async def close(self):
        """Close the shared HTTP client."""
        await self._client.aclose()

    async def _chat_json(
        self,
        system: str,
        user: str,
        max_tokens: int | None = None,
        temperature: float = 0.1,
    ) -> dict:
        body = {
            "model": CHAT_MODEL,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if max_tokens:
            body["max_tokens"] = max_tokens
        resp = await self._client.post("/chat/completions", json=body)
        resp.raise_for_status()
        content = resp.json()["choices"][0]["message"]["content"]
        parsed = json.loads(content or "{}")
        if not isinstance(parsed, dict):
            raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
        return parsed

    async def embed(self, text: str) -> Optional[list[float]]:
        if not self._circuit.should_try():
            logger.warning("OpenAI circuit breaker open, skipping embedding")
            return None
        try:
            resp = await self._client.post(
                "/embeddings",
                json={"model": EMBEDDING_MODEL, "input": text},
            )
            resp.raise_for_status()
            vector = resp.json()["data"][0]["embedding"]
            self._circuit.record_success()
            return [float(v) for v in vector]
        except Exception as e:
            self._circuit.record_failure()
            logger.error("embed failed: %s", e)
            return None

    async def classify(self, text: str, candidates: Sequence[CatalogItem]) -> ClassifierVerdict:
        if not candidates:
            return NO_VERDICT
        if not self._circuit.should_try():
            logger.warning("OpenAI circuit breaker open, skipping classification")
            return NO_VERDICT
        try:
            parsed = await self._chat_json(CLASSIFY_SYSTEM, build_classify_prompt(text, candidates))
            self._circuit.record_success()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("classify failed: %s", e)
            return NO_VERDICT

        verdict = ClassifierVerdict.coerce(parsed)
        if verdict is None:
            logger.warning("classify returned malformed verdict: %s", parsed)
            return NO_VERDICT
        return verdict

    async def split(self, text: str) -> list[dict]:
        if not self._circuit.should_try():
            logger.warning("OpenAI circuit breaker open, skipping task split")
            return []
        try:
            parsed = await self._chat_json(SPLIT_SYSTEM, build_split_prompt(text))
            self._circuit.record_success()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("split failed: %s", e)
            return []
        tasks = parsed.get("tasks")
        return tasks if isinstance(tasks, list) else []

    async def assess_complexity(self, description: str, context: dict | None = None) -> dict:
        if not self._circuit.should_try():
            logger.warning("OpenAI circuit breaker open, skipping complexity assessment")
            return {}
        context = context or {}
        user = build_complexity_input(
            description,
            sku_name=context.get("sku_name"),
            other_jobs=context.get("other_jobs") or (),
        )
        try:
            parsed = await self._chat_json(COMPLEXITY_PROMPT, user, max_tokens=300)
            self._circuit.record_success()
            return parsed
        except Exception as e:
            self._circuit.record_failure()
            logger.error("assess_complexity failed: %s", e)
            return {}

    async def extract_metadata(self, text: str) -> dict:
        if not text.strip():
            return {}
        if not self._circuit.should_try():
            logger.warning("OpenAI circuit breaker open, skipping metadata extraction")
            return {}
        try:
            parsed = await self._chat_json(METADATA_PROMPT, f"RAW TRANSCRIPT:\n{text}")
            self._circuit.record_success()
            return parsed
        except Exception as e:
            self._circuit.record_failure()
            logger.error("extract_metadata failed: %s", e)
            return {}
