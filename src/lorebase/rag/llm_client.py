"""LiteLLM client wrapper: text generation, voice transcription, API key checks.

All model calls route through this module. LiteLLM's built-in retry is used
(``num_retries``, exponential backoff). Provider failures surface as
GenerationError so callers only have to handle one failure type.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import litellm
from loguru import logger

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

SUPPORTED_AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a", ".ogg", ".flac", ".mp4", ".webm"}
MAX_AUDIO_BYTES = 25 * 1024 * 1024  # 25 MB
DEFAULT_TRANSCRIPTION_MODEL = "openai/whisper-1"


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


class GenerationError(RuntimeError):
    """Raised when the generation or transcription provider fails."""


@dataclass
class GenerationConfig:
    model: str = "gemini/gemini-2.0-flash"
    temperature: float = 0.7
    max_tokens: int = 2_000
    num_retries: int = 3


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string ('openai' if none)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(model: str) -> str | None:
    """Return the env var holding the API key for *model*, or None if none is needed."""
    return _PROVIDER_ENV.get(provider_of(model))


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    env_var = api_key_env(model)
    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider_of(model)}'. "
            f"Set the {env_var} environment variable."
        )


def generate(prompt: str, config: GenerationConfig) -> str:
    """Send *prompt* as a single user message and return the reply text.

    Raises:
        GenerationError: On persistent provider failure after retries, or an
            empty reply.
    """
    try:
        response = litellm.completion(
            model=config.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            num_retries=config.num_retries,
        )
        text = response.choices[0].message.content or ""
    except Exception as exc:
        logger.error("Generation with {} failed: {}", config.model, exc)
        raise GenerationError(f"Generation failed ({config.model}): {exc}") from exc

    if not text.strip():
        raise GenerationError(f"Generation returned an empty reply ({config.model})")
    return text


def validate_audio(path: Path) -> None:
    """Raise ValueError for unsupported audio extensions or oversized files."""
    ext = path.suffix.lower()
    if ext not in SUPPORTED_AUDIO_EXTENSIONS:
        raise ValueError(
            f"Unsupported audio format '{ext}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_AUDIO_EXTENSIONS))}"
        )

    try:
        size = path.stat().st_size
    except OSError as exc:
        raise ValueError(f"Cannot access audio file '{path}': {exc}") from exc

    if size > MAX_AUDIO_BYTES:
        raise ValueError(
            f"Audio file '{path}' exceeds the 25 MB limit ({size / (1024 * 1024):.1f} MB)."
        )


def transcribe(path: Path, model: str = DEFAULT_TRANSCRIPTION_MODEL) -> str:
    """Transcribe a spoken question to text.

    Raises:
        ValueError: If the file is unsupported or too large (checked before
            any API call).
        GenerationError: If the transcription provider fails.
    """
    validate_audio(path)
    try:
        with path.open("rb") as audio_file:
            response = litellm.transcription(model=model, file=audio_file)
    except Exception as exc:
        logger.error("Transcription of {} failed: {}", path.name, exc)
        raise GenerationError(f"Transcription failed ({model}): {exc}") from exc
    return (response.text or "").strip()
