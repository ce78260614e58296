"""
OpenAI API Client - Structured recommendations for tanda planning
"""
import json
import logging
from typing import Any, Dict, List, Type, TypeVar

import openai
from openai import OpenAI
from pydantic import BaseModel, ValidationError

from tanda_planner.planning.errors import (
    OracleContractViolation,
    OracleError,
    OracleTimeout,
    OracleUnavailable,
)
from tanda_planner.retry_helper import retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIConnectionError,
)
_FATAL_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
)


class OpenAIOracle:
    """Oracle backed by OpenAI chat completions with JSON output"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_retries: int = 2,
        temperature: float = 0.7,
        client: Any = None,
    ):
        # Retries are handled here so a timeout is never silently repeated
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self._create = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=1.0,
            exceptions=_TRANSIENT_ERRORS,
            give_up_on=(openai.APITimeoutError,),
        )(self._create_once)

    def complete(self, instructions: str, payload: Dict[str, Any], schema: Type[T]) -> T:
        """
        Ask the model for one structured answer

        Args:
            instructions: System-level rules for the answer
            payload: ``prompt`` text plus named sections (CANDIDATES, USED_IDS...)
            schema: Pydantic model the answer must validate against

        Returns:
            Validated instance of ``schema``

        Raises:
            OracleTimeout: the call exceeded ``timeout``
            OracleContractViolation: the answer is not schema-valid JSON
            OracleUnavailable: authentication or transport failure after retries
        """
        messages = self._build_messages(instructions, payload, schema)
        logger.debug(f"Oracle request for {schema.__name__} ({len(messages[1]['content'])} chars)")

        try:
            content = self._create(messages)
        except openai.APITimeoutError as e:
            raise OracleTimeout(f"{schema.__name__} request exceeded {self.timeout:.0f}s") from e
        except _FATAL_ERRORS as e:
            raise OracleUnavailable(f"OpenAI rejected the request: {e}") from e
        except _TRANSIENT_ERRORS as e:
            raise OracleUnavailable(f"OpenAI unreachable after retries: {e}") from e
        except openai.OpenAIError as e:
            raise OracleError(f"OpenAI request failed: {e}") from e

        if not content:
            raise OracleContractViolation(f"Empty {schema.__name__} response")
        try:
            return schema.model_validate_json(content)
        except ValidationError as e:
            raise OracleContractViolation(
                f"{schema.__name__} response failed validation: {e.error_count()} error(s)",
                raw=content,
            ) from e

    def _create_once(self, messages: List[Dict[str, str]]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=self.temperature,
            timeout=self.timeout,
        )
        return (response.choices[0].message.content or "").strip()

    def _build_messages(self, instructions: str, payload: Dict[str, Any], schema: Type[T]) -> List[Dict[str, str]]:
        """
        Format the request as a system + user message pair

        The user message carries the prompt followed by one ``NAME:`` block per
        payload section, each serialized as JSON.
        """
        schema_json = json.dumps(schema.model_json_schema(), ensure_ascii=False)
        system = (
            f"{instructions}\n"
            "Follow the schema exactly. Never invent or repeat IDs. No prose.\n"
            f"OUTPUT_SCHEMA:\n{schema_json}"
        )

        parts = [str(payload.get("prompt", ""))]
        for name, value in payload.items():
            if name == "prompt":
                continue
            parts.append(f"{name.upper()}:\n{json.dumps(value, ensure_ascii=False, default=str)}")

        return [
            {"role": "system", "content": system},
            {"role": "user", "content": "\n\n".join(p for p in parts if p)},
        ]
