"""
Markdown translation through OpenRouter's OpenAI-compatible API.

``OpenRouterTranslator`` performs one translate call against one model.
``FallbackTranslator`` walks an ordered model chain, moving on only when
a model signals ``ModelUnavailableError``; any other failure is final for
that call.
"""

import logging
from typing import Iterable, List, Optional, Tuple

import openai
from openai import OpenAI

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()

# Statuses that mean "this model cannot serve the request right now"
_UNAVAILABLE_STATUSES = frozenset({404, 502, 503})

SYSTEM_PROMPT = """You are a professional technical translator.
Translate the Markdown document from {source} to {target}.

Rules:
- Preserve the Markdown/MDX structure exactly: headings, lists, tables, block quotes.
- Do not translate code blocks, inline code, URLs, link targets, HTML tags or front-matter keys.
- Keep placeholders, variables and product names unchanged.
- Return only the translated document, with no commentary."""


class TranslationError(Exception):
    """A translate call failed and should be recorded against the unit."""


class ModelUnavailableError(TranslationError):
    """The requested model cannot be used; the next model may be tried."""

    def __init__(self, model: str, reason: str) -> None:
        super().__init__(f"Model {model} unavailable: {reason}")
        self.model = model
        self.reason = reason


def language_label(code: str) -> str:
    name = cfg.SUPPORTED_LANGUAGES.get(code)
    return f"{name} ({code})" if name else code


def build_model_chain(
    preferred: Optional[str] = None,
    priority: Optional[Iterable[str]] = None,
) -> List[str]:
    """Preferred model first, then the priority list, without repeats."""
    priority = cfg.MODEL_PRIORITY if priority is None else priority
    chain = [preferred] if preferred else []
    chain.extend(priority)
    return list(dict.fromkeys(chain))


class OpenRouterTranslator:
    """Single-model translate operation backed by the ``openai`` SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url or cfg.OPENROUTER_BASE_URL
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            api_key = self._api_key or cfg.OPENROUTER_API_KEY
            if not api_key:
                raise TranslationError("OPENROUTER_API_KEY not configured")
            self._client = OpenAI(
                api_key=api_key,
                base_url=self._base_url,
                timeout=cfg.OPENROUTER_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def translate(
        self, text: str, source_lang: str, target_lang: str, model: str
    ) -> str:
        messages = [
            {
                "role": "system",
                "content": SYSTEM_PROMPT.format(
                    source=language_label(source_lang),
                    target=language_label(target_lang),
                ),
            },
            {"role": "user", "content": text},
        ]
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=cfg.OPENROUTER_TEMPERATURE,
                max_tokens=cfg.OPENROUTER_MAX_TOKENS,
            )
        except openai.APIStatusError as exc:
            if exc.status_code in _UNAVAILABLE_STATUSES or _names_invalid_model(exc):
                raise ModelUnavailableError(model, str(exc)) from exc
            raise TranslationError(f"{model}: {exc}") from exc
        except openai.APIError as exc:
            raise TranslationError(f"{model}: {exc}") from exc

        if not response.choices:
            raise TranslationError(f"{model}: empty response")
        content = response.choices[0].message.content or ""
        if not content.strip():
            raise TranslationError(f"{model}: empty completion")
        return content


def _names_invalid_model(exc: "openai.APIStatusError") -> bool:
    return exc.status_code == 400 and "model" in str(exc).lower()


class FallbackTranslator:
    """Try each model of a chain in order until one is available."""

    def __init__(self, translator: OpenRouterTranslator) -> None:
        self._translator = translator

    def translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        models: Iterable[str],
    ) -> Tuple[str, str]:
        """Return ``(translated_text, model_used)``."""
        unavailable = []
        for model in models:
            try:
                translated = self._translator.translate(
                    text, source_lang, target_lang, model
                )
                return translated, model
            except ModelUnavailableError as exc:
                logger.warning("%s; trying next model", exc)
                unavailable.append(model)
        raise TranslationError(
            "No model available (tried: %s)" % ", ".join(unavailable or ["none"])
        )
