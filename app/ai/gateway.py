"""
Siteline — LLM Gateway.

Provider-agnostic vision/chat router with:
    - Multi-provider support (OpenAI, Anthropic Claude, Gemini, local stub)
    - Image attachments on user messages (invoices and quotes are scanned)
    - Auto-retry with exponential backoff
    - Token logging

A message is ``{"role": ..., "content": str}``; user messages may carry
``"images": [{"data": bytes, "mime_type": "image/png"}, ...]`` which each
provider converts to its own multimodal format.

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "...", "images": [...]}])
"""

import base64
import logging
import time
from abc import ABC, abstractmethod

import anthropic
import openai
from flask import current_app
from google import genai
from google.genai import types

logger = logging.getLogger(__name__)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role", "content", optional "images"} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    @staticmethod
    def _to_content(message: dict):
        images = message.get("images") or []
        if not images:
            return message["content"]
        blocks = [
            {"type": "image",
             "source": {"type": "base64", "media_type": img["mime_type"],
                        "data": _b64(img["data"])}}
            for img in images
        ]
        blocks.append({"type": "text", "text": message["content"]})
        return blocks

    def chat(self, messages: list, model: str = "claude-3-5-sonnet-20241022", **kwargs) -> dict:
        client = self._get_client()

        # Separate system message
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append({"role": m["role"], "content": self._to_content(m)})

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.1),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)

        return {
            "content": response.content[0].text,
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI GPT-4o vision provider."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    @staticmethod
    def _to_message(message: dict) -> dict:
        images = message.get("images") or []
        if not images:
            return {"role": message["role"], "content": message["content"]}
        parts = [{"type": "text", "text": message["content"]}]
        for img in images:
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{img['mime_type']};base64,{_b64(img['data'])}",
                              "detail": "high"},
            })
        return {"role": message["role"], "content": parts}

    def chat(self, messages: list, model: str = "gpt-4o", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=[self._to_message(m) for m in messages],
            max_tokens=kwargs.get("max_tokens", 4096),
            temperature=kwargs.get("temperature", 0.1),
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content or "",
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        client = self._get_client()

        # Separate system instruction from conversation messages
        system_parts = []
        contents = []
        for m in messages:
            if m["role"] == "system":
                system_parts.append(m["content"])
                continue
            # Gemini uses "user" and "model" roles
            role = "model" if m["role"] == "assistant" else "user"
            parts = [types.Part.from_bytes(data=img["data"], mime_type=img["mime_type"])
                     for img in (m.get("images") or [])]
            parts.append(types.Part(text=m["content"]))
            contents.append(types.Content(role=role, parts=parts))

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.1),
            max_output_tokens=kwargs.get("max_tokens", 4096),
        )
        if system_parts:
            config.system_instruction = "\n\n".join(system_parts)

        response = client.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )

        prompt_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
        completion_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        return {
            "content": response.text or "",
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Deterministic provider for dev/testing. Returns an empty JSON object,
    which the extraction layer turns into all-default fields with zero
    confidence. No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        return {
            "content": "{}",
            "prompt_tokens": len(user_msg.split()) * 2,
            "completion_tokens": 1,
            "model": "local-stub",
        }


# ── Gateway ───────────────────────────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    The provider comes from AI_PROVIDER (openai, anthropic, gemini, local)
    and the model from AI_VISION_MODEL. A provider without an API key falls
    back to the local stub with a warning.
    """

    PROVIDER_KEYS = {
        "openai": ("OPENAI_API_KEY", OpenAIProvider),
        "anthropic": ("ANTHROPIC_API_KEY", AnthropicProvider),
        "gemini": ("GEMINI_API_KEY", GeminiProvider),
    }

    def __init__(self, provider_name: str | None = None, model: str | None = None,
                 sleep=None):
        cfg = current_app.config
        self.provider_name = provider_name or cfg.get("AI_PROVIDER", "openai")
        self.model = model or cfg.get("AI_VISION_MODEL", "gpt-4o")
        self._sleep = sleep or time.sleep
        self.provider = self._build_provider(cfg)

    def _build_provider(self, cfg) -> LLMProvider:
        entry = self.PROVIDER_KEYS.get(self.provider_name)
        if entry is None:
            self.provider_name = "local"
            return LocalStubProvider()
        key_name, provider_cls = entry
        api_key = cfg.get(key_name)
        if not api_key:
            logger.warning(
                "Provider '%s' not available (%s unset). Falling back to local stub.",
                self.provider_name, key_name,
            )
            self.provider_name = "local"
            return LocalStubProvider()
        return provider_cls(api_key)

    def chat(self, messages: list, *, max_retries: int = 3, purpose: str = "", **kwargs) -> dict:
        """
        Send a chat request with retry.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, provider, latency_ms}

        Raises:
            RuntimeError: every attempt failed.
        """
        last_error = None
        for attempt in range(1, max_retries + 1):
            start_time = time.time()
            try:
                result = self.provider.chat(messages, self.model, **kwargs)
                result["latency_ms"] = int((time.time() - start_time) * 1000)
                result["provider"] = self.provider_name
                logger.info(
                    "LLM call ok: purpose=%s provider=%s model=%s tokens=%d+%d",
                    purpose, self.provider_name, result["model"],
                    result["prompt_tokens"], result["completion_tokens"],
                    extra={"duration_ms": result["latency_ms"]},
                )
                return result
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, max_retries, e)
                if attempt < max_retries:
                    self._sleep(min(2 ** (attempt - 1), 4))

        raise RuntimeError(f"LLM call failed after {max_retries} retries: {last_error}")
