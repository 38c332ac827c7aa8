"""
Audit Pack
LLM Gateway.

Provider-agnostic chat router used by the compliance scorer:
    - Providers: OpenAI, Anthropic Claude, local stub (dev/test)
    - Retry with short exponential backoff
    - Token + latency logging

Unlike a best-effort assistant, callers need to know when the configured
provider could not answer, so an unavailable provider raises
``LLMUnavailableError`` instead of silently answering from the stub.

Usage:
    from auditpack.ai.gateway import LLMGateway
    gw = LLMGateway.from_config(app.config)
    result = gw.chat([{"role": "user", "content": "..."}], json_mode=True)
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Keys that ship in sample .env files and must be treated as "not configured"
PLACEHOLDER_KEYS = frozenset({"", "your-api-key", "your_openai_api_key", "sk-...", "changeme"})


class LLMError(Exception):
    """The provider call failed (network, quota, bad response)."""


class LLMUnavailableError(LLMError):
    """The configured provider has no usable credential or package."""


def _is_placeholder(api_key: str | None) -> bool:
    key = (api_key or "").strip()
    return key.lower() in PLACEHOLDER_KEYS or key.startswith("your")


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    name = "abstract"

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens, json_mode.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError as exc:
                raise LLMUnavailableError("openai package not installed. Run: pip install openai") from exc
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o-mini", **kwargs) -> dict:
        client = self._get_client()
        params = {
            "model": model,
            "messages": messages,
            "max_tokens": kwargs.get("max_tokens", 1024),
            "temperature": kwargs.get("temperature", 0.2),
        }
        if kwargs.get("json_mode"):
            params["response_format"] = {"type": "json_object"}
        response = client.chat.completions.create(**params)
        choice = response.choices[0]
        usage = response.usage
        return {
            "content": choice.message.content or "",
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "model": model,
        }


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "anthropic"
    default_model = "claude-3-5-haiku-20241022"

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import anthropic
            except ImportError as exc:
                raise LLMUnavailableError("anthropic package not installed. Run: pip install anthropic") from exc
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-haiku-20241022", **kwargs) -> dict:
        client = self._get_client()

        # Anthropic takes the system prompt separately
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 1024),
            "temperature": kwargs.get("temperature", 0.2),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        return {
            "content": response.content[0].text if response.content else "",
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Deterministic compliance reviewer for dev/testing. No API key required.

    Reads the JSON object embedded in the last user message and grades how
    complete the submission looks.
    """

    name = "local"
    default_model = "local-stub"

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = json.dumps(self._review(self._extract_fields(user_msg)))
        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _extract_fields(text: str) -> dict:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            return {}
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _review(fields: dict) -> dict:
        score = 0
        summary: list[str] = []
        feedback: list[str] = []

        title = str(fields.get("title") or "").strip()
        description = str(fields.get("description") or "").strip()
        attachments = fields.get("attachments") or []
        try:
            amount = float(fields.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0

        if title:
            score += 15
            summary.append(f"Request '{title}' filed under {fields.get('category') or 'uncategorised'}.")
        else:
            feedback.append("Add a descriptive title.")

        if len(description) >= 40:
            score += 25
        elif description:
            score += 10
            feedback.append("Expand the business justification in the description.")
        else:
            feedback.append("Describe the business purpose of the expense.")

        if amount > 0:
            score += 15
            summary.append(f"Claimed amount {amount:.2f} for {fields.get('department') or 'no department'}.")
        else:
            feedback.append("State the total amount claimed.")

        if fields.get("audit_date"):
            score += 10
        else:
            feedback.append("Provide the date of the expense.")

        if fields.get("department") and fields.get("category"):
            score += 10

        if attachments:
            score += 25
            summary.append(f"{len(attachments)} supporting document(s) attached.")
        else:
            feedback.append("Attach receipts or invoices as supporting documents.")

        if not summary:
            summary.append("Submission is missing most required details.")
        return {"completeness_score": score, "summary": summary, "feedback": feedback}


# ── Gateway ───────────────────────────────────────────────────────────────────

class LLMGateway:
    """Routes chat calls to the configured provider."""

    PROVIDERS = ("openai", "anthropic", "local")

    def __init__(self, provider: LLMProvider, model: str | None = None):
        self.provider = provider
        self.model = model or getattr(provider, "default_model", None)

    @classmethod
    def from_config(cls, config) -> "LLMGateway":
        """
        Build the gateway from app config.

        Raises LLMUnavailableError when the selected provider lacks a real
        API key.
        """
        name = (config.get("LLM_PROVIDER") or "openai").strip().lower()
        model = config.get("SCORER_MODEL") or None
        if name == "local":
            return cls(LocalStubProvider(), model)
        if name == "openai":
            key = config.get("OPENAI_API_KEY")
            if _is_placeholder(key):
                raise LLMUnavailableError("OPENAI_API_KEY is not configured")
            return cls(OpenAIProvider(key), model)
        if name == "anthropic":
            key = config.get("ANTHROPIC_API_KEY")
            if _is_placeholder(key):
                raise LLMUnavailableError("ANTHROPIC_API_KEY is not configured")
            return cls(AnthropicProvider(key), model)
        raise LLMUnavailableError(f"Unknown LLM provider '{name}'")

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def chat(self, messages: list, **kwargs) -> dict:
        """
        Send one chat completion.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, provider, latency_ms}

        Raises:
            LLMUnavailableError: provider package/credential missing
            LLMError: the provider call failed
        """
        start = time.time()
        try:
            result = self.provider.chat(messages, self.model, **kwargs)
        except LLMError:
            raise
        except Exception as exc:  # provider SDKs raise their own hierarchies
            logger.warning("LLM call failed: %s", exc, extra={"provider": self.provider_name})
            raise LLMError(f"LLM call failed: {exc}") from exc

        result["provider"] = self.provider_name
        result["latency_ms"] = int((time.time() - start) * 1000)
        logger.info(
            "LLM call ok: model=%s tokens=%d+%d latency=%dms",
            result.get("model"), result.get("prompt_tokens", 0),
            result.get("completion_tokens", 0), result["latency_ms"],
            extra={"provider": self.provider_name},
        )
        return result
