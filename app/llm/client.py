# app/llm/client.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Sequence

import openai
from openai import OpenAI

from app.config import get_settings
from app.errors import CollaboratorError

logger = logging.getLogger(__name__)


def clean_json_from_llm(raw: str) -> dict:
    """
    Try to robustly parse a JSON object from the LLM response.
    Handles cases where the model wraps it in ```json ... ``` fences
    or adds a sentence before/after the object.
    """
    text = raw.strip()

    if text.startswith("```"):
        text = text.lstrip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.rstrip("`").strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise
        data = json.loads(text[start : end + 1])

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient(ABC):
    """
    Simple abstraction so we can swap providers if needed.
    """

    @abstractmethod
    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """
        messages: list of {"role": "system"|"user"|"assistant", "content": "..."}
        returns: assistant content as a string

        Implementations raise CollaboratorError on transport failure or timeout.
        """
        ...

    def complete(
        self,
        system_prompt: str,
        messages: Sequence,
        temperature: float,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Prompt in, text out. `messages` are role-tagged turns (dicts or
        objects with `role` and `content`).
        """
        return self.chat(
            _with_system(system_prompt, messages),
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )

    def complete_json(
        self,
        system_prompt: str,
        messages: Sequence,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> dict:
        raw = self.complete(
            system_prompt,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        try:
            return clean_json_from_llm(raw)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.warning("LLM returned unparsable JSON: %s", e)
            raise CollaboratorError("llm", f"unparsable JSON reply: {e}") from e


def _with_system(system_prompt: str, messages: Sequence) -> List[Dict[str, str]]:
    out = [{"role": "system", "content": system_prompt}]
    for m in messages:
        if isinstance(m, dict):
            out.append({"role": m["role"], "content": m["content"]})
        else:
            out.append({"role": m.role, "content": m.content})
    return out


class OpenAILLMClient(LLMClient):
    """
    OpenAI implementation using the official Python client.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        settings = get_settings()
        if not settings.openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set in environment (.env)."
            )

        # Retries belong to the session service, so the SDK's own are disabled.
        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=timeout or settings.llm_timeout_seconds,
            max_retries=0,
        )
        self.default_model = model or settings.llm_model
        self.default_max_tokens = max_tokens or settings.llm_max_tokens

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.2,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = self.client.chat.completions.create(
                model=model or self.default_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens or self.default_max_tokens,
                **kwargs,
            )
        except openai.APITimeoutError as e:
            logger.warning("Completion timed out: %s", e)
            raise CollaboratorError("llm", "completion timed out") from e
        except openai.OpenAIError as e:
            logger.warning("Completion failed: %s", e)
            raise CollaboratorError("llm", str(e)) from e

        content = completion.choices[0].message.content
        return content or ""
