# app/services/llm.py
import json
import logging
from functools import lru_cache
from typing import List, Type, TypeVar

import openai
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import (
    AI_MAX_RETRIES,
    AI_REQUEST_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_MODEL,
    OPENAI_TEMPERATURE,
)
from app.errors import ModelError, ModelUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Worth another attempt; everything else fails the call immediately
TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.InternalServerError,
)

UNREACHABLE_ERRORS = (
    openai.APIConnectionError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
)


def build_chat_model():
    if not OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is required")

    llm = ChatOpenAI(
        model=OPENAI_MODEL,
        temperature=OPENAI_TEMPERATURE,
        api_key=OPENAI_API_KEY,
        timeout=AI_REQUEST_TIMEOUT,
        max_retries=0,  # tenacity handles retries
    )
    # JSON mode: the reply body is always a JSON object
    return llm.bind(response_format={"type": "json_object"})


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_structured(content, schema: Type[T]) -> T:
    """
    Validate raw model output against `schema`.
    Invalid output is a ModelError; nothing is filled in or guessed.
    """
    if not isinstance(content, str):
        raise ModelError(f"Model returned non-text content ({type(content).__name__})")

    try:
        payload = json.loads(strip_code_fence(content))
    except ValueError as e:
        raise ModelError("Model returned non-JSON output", e) from e

    if not isinstance(payload, dict):
        raise ModelError("Model returned JSON that is not an object")

    try:
        return schema.model_validate(payload)
    except SchemaValidationError as e:
        raise ModelError(
            f"Model output does not match {schema.__name__}: {e.error_count()} errors", e
        ) from e


class ModelClient:
    """
    generate(messages, schema) → validated pydantic object.
    """

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = build_chat_model()
        return self._llm

    @retry(
        stop=stop_after_attempt(AI_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    def _invoke(self, messages: List[BaseMessage]):
        return self.llm.invoke(messages)

    def generate(self, messages: List[BaseMessage], schema: Type[T]) -> T:
        try:
            response = self._invoke(messages)
        except UNREACHABLE_ERRORS as e:
            raise ModelUnavailableError(f"Model is unreachable: {e}", e) from e
        except ModelError:
            raise
        except Exception as e:
            raise ModelError(f"Model call failed: {e}", e) from e

        return parse_structured(getattr(response, "content", None), schema)


@lru_cache(maxsize=1)
def get_model_client() -> ModelClient:
    return ModelClient()
