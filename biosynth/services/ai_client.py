# biosynth/services/ai_client.py
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)

MAX_RETRIES = 2

_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "{system}"),
    ("user", "{user}"),
])


def _status_code(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(getattr(error, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_error(error: Exception) -> bool:
    msg = str(error).lower()
    return (
        _status_code(error) == 429
        or "rate limit" in msg
        or "too many requests" in msg
        or "quota" in msg
        or "resource_exhausted" in msg
    )


def is_auth_error(error: Exception) -> bool:
    msg = str(error).lower()
    return (
        _status_code(error) in (401, 403)
        or "invalid api key" in msg
        or "incorrect api key" in msg
    )


def with_schema_hint(system_prompt: str, schema_hint: Optional[Dict[str, Any]]) -> str:
    if not schema_hint:
        return system_prompt
    return (
        f"{system_prompt}\n\n"
        "Respond ONLY with JSON matching this schema, no prose, no markdown:\n"
        f"{json.dumps(schema_hint, indent=2)}"
    )


class LangChainAIClient:
    """
    Text generation over a LangChain chat model.

    Rate-limit errors are retried with exponential backoff (1s, 2s, ...);
    authentication errors and everything else propagate immediately.
    """

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_retries: int = MAX_RETRIES,
        llm=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_retries = max_retries
        self._llm = llm
        self._sleep = sleep

    @property
    def llm(self):
        # Built on first use so local mode starts without an API key;
        # retries happen in generate_text only
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.model,
                temperature=self.temperature,
                api_key=self.api_key,
                max_retries=0,
            )
        return self._llm

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        schema_hint: Optional[Dict[str, Any]] = None,
    ) -> str:
        messages = _PROMPT.format_messages(
            system=with_schema_hint(system_prompt, schema_hint),
            user=user_prompt,
        )

        attempt = 0
        while True:
            try:
                response = self.llm.invoke(messages)
                break
            except Exception as e:
                if is_auth_error(e):
                    logger.error("❌ AI client rejected credentials: %s", e)
                    raise
                if not is_rate_limit_error(e) or attempt >= self.max_retries:
                    raise

                delay = 2 ** attempt
                attempt += 1
                logger.warning(
                    "Rate limit hit, retrying in %ss (attempt %d/%d)",
                    delay, attempt, self.max_retries,
                )
                self._sleep(delay)

        text = response.content if hasattr(response, "content") else response
        if isinstance(text, list):
            text = "".join(part if isinstance(part, str) else part.get("text", "") for part in text)
        text = str(text or "").strip()

        if not text:
            raise RuntimeError("No response from AI")

        logger.debug("AI raw response (first 200 chars): %s", text[:200])
        return text
