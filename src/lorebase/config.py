"""Lorebase configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (LOREBASE_GENERATION_MODEL, LOREBASE_DB)
  3. Per-project lorebase.yaml  (working directory)
  4. Global ~/.lorebase/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or the GitHub token; those come
from environment variables (GITHUB_TOKEN, GEMINI_API_KEY, OPENAI_API_KEY, ...).
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lorebase"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lorebase.yaml"

DEFAULT_DB: str = ".lorebase.db"

# Fields that suggest a credential are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["project", "generation", "indexing", "retrieval", "channels", "chat", "modes", "access"]
)

CHANNELS: tuple[str, ...] = ("text", "voice")

_DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful documentation assistant. Answer the user's questions "
    "clearly, grounding your answers in the loaded knowledge base when it is "
    "relevant. If the knowledge base does not cover the question, say so."
)

_VOICE_INSTRUCTIONS = (
    "Respond naturally and conversationally. Keep responses concise for voice "
    "interaction (2-3 sentences max unless the topic requires more)."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ProjectCfg:
    """Project-level metadata (lorebase.yaml: project:)."""

    name: str = ""


@dataclass
class GenerationCfg:
    """LLM generation configuration (lorebase.yaml: generation:)."""

    model: str = "gemini/gemini-2.0-flash"
    temperature: float = 0.7
    max_tokens: int = 2_000
    num_retries: int = 3


@dataclass
class IndexingCfg:
    """Repository indexing configuration (lorebase.yaml: indexing:).

    Attributes:
        chunk_size: Maximum chunk length in characters.
        chunk_overlap: Characters repeated at the start of the next chunk.
        min_chunk_chars: Fragments shorter than this (after strip) are dropped.
        file_batch_size: Files fetched concurrently per batch.
        write_batch_size: Maximum rows per bulk write/delete statement group.
        max_file_size: Files larger than this (bytes) are skipped.
        allowed_extensions: Only files with these extensions are indexed.
        ignored_dirs: Files under any of these directory names are skipped.
        default_branch: Branch used when a source is registered without one.
        lease_seconds: Lifetime of an indexing lease before it counts as abandoned.
    """

    chunk_size: int = 1_500
    chunk_overlap: int = 200
    min_chunk_chars: int = 100
    file_batch_size: int = 10
    write_batch_size: int = 500
    max_file_size: int = 500_000
    allowed_extensions: list[str] = field(default_factory=lambda: [".md"])
    ignored_dirs: list[str] = field(
        default_factory=lambda: [
            "node_modules", ".git", "dist", "build", "__pycache__",
            "venv", ".venv", "vendor", "target", ".next",
        ]
    )
    default_branch: str = "main"
    lease_seconds: int = 900


@dataclass
class RetrievalCfg:
    """Lexical retrieval configuration (lorebase.yaml: retrieval:)."""

    scan_limit: int = 200
    phrase_bonus: int = 10
    min_token_length: int = 3


@dataclass
class ChannelCfg:
    """Per-channel prompt settings (lorebase.yaml: channels.<name>:)."""

    max_chunks: int = 5
    history_window: int = 10
    max_tokens: int | None = None  # None: use generation.max_tokens
    instructions: str = ""


@dataclass
class ChannelsCfg:
    text: ChannelCfg = field(default_factory=ChannelCfg)
    voice: ChannelCfg = field(
        default_factory=lambda: ChannelCfg(
            max_chunks=3,
            history_window=20,
            max_tokens=500,
            instructions=_VOICE_INSTRUCTIONS,
        )
    )

    def get(self, channel: str) -> ChannelCfg:
        if channel not in CHANNELS:
            raise ConfigError(f"Unknown channel '{channel}'. Use one of: {', '.join(CHANNELS)}")
        return getattr(self, channel)


@dataclass
class ChatCfg:
    """Conversation settings (lorebase.yaml: chat:)."""

    max_message_chars: int = 10_000
    system_prompt: str = _DEFAULT_SYSTEM_PROMPT
    assistant_name: str = "Assistant"
    default_title: str = "New Chat"


@dataclass
class ModeCfg:
    """A guided conversation mode (lorebase.yaml: modes.<id>:).

    Attributes:
        title: Short name shown to the user and added to the prompt as the focus.
        description: What the mode guides the user through.
        system_prompt: Replaces chat.system_prompt while the mode is in use.
        active: Inactive modes are ignored (the default prompt is used).
    """

    title: str = ""
    description: str = ""
    system_prompt: str = ""
    active: bool = True


@dataclass
class AccessCfg:
    """Admin identity check (lorebase.yaml: access:).

    An empty *admins* list means every local user may run admin commands.
    """

    admins: list[str] = field(default_factory=list)

    def is_admin(self, actor: str) -> bool:
        return not self.admins or actor in self.admins


@dataclass
class LorebaseConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    project: ProjectCfg = field(default_factory=ProjectCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    channels: ChannelsCfg = field(default_factory=ChannelsCfg)
    chat: ChatCfg = field(default_factory=ChatCfg)
    modes: dict[str, ModeCfg] = field(default_factory=dict)
    access: AccessCfg = field(default_factory=AccessCfg)
    db_path: str = DEFAULT_DB


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LorebaseConfig) -> None:
    ix = cfg.indexing
    if ix.chunk_size < 1:
        raise ConfigError("indexing.chunk_size must be >= 1")
    if not 0 <= ix.chunk_overlap < ix.chunk_size:
        raise ConfigError("indexing.chunk_overlap must be >= 0 and smaller than chunk_size")
    if ix.file_batch_size < 1 or ix.write_batch_size < 1:
        raise ConfigError("indexing batch sizes must be >= 1")
    for ext in ix.allowed_extensions:
        if not ext.startswith("."):
            raise ConfigError(f"indexing.allowed_extensions entries must start with '.': '{ext}'")
    if cfg.retrieval.scan_limit < 1:
        raise ConfigError("retrieval.scan_limit must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _parse_channel(raw: dict[str, Any], defaults: ChannelCfg) -> ChannelCfg:
    return ChannelCfg(
        max_chunks=int(raw.get("max_chunks", defaults.max_chunks)),
        history_window=int(raw.get("history_window", defaults.history_window)),
        max_tokens=_optional_int(raw.get("max_tokens", defaults.max_tokens)),
        instructions=str(raw.get("instructions", defaults.instructions)),
    )


def _cfg_from_dict(data: dict[str, Any]) -> LorebaseConfig:
    """Build a *LorebaseConfig* from a merged raw YAML dict."""
    cfg = LorebaseConfig()

    if "project" in data:
        p = data["project"]
        cfg.project = ProjectCfg(name=str(p.get("name", cfg.project.name)))

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
        )

    if "indexing" in data:
        i = data["indexing"]
        d = cfg.indexing
        cfg.indexing = IndexingCfg(
            chunk_size=int(i.get("chunk_size", d.chunk_size)),
            chunk_overlap=int(i.get("chunk_overlap", d.chunk_overlap)),
            min_chunk_chars=int(i.get("min_chunk_chars", d.min_chunk_chars)),
            file_batch_size=int(i.get("file_batch_size", d.file_batch_size)),
            write_batch_size=int(i.get("write_batch_size", d.write_batch_size)),
            max_file_size=int(i.get("max_file_size", d.max_file_size)),
            allowed_extensions=[str(e).lower() for e in i.get("allowed_extensions", d.allowed_extensions)],
            ignored_dirs=[str(x) for x in i.get("ignored_dirs", d.ignored_dirs)],
            default_branch=str(i.get("default_branch", d.default_branch)),
            lease_seconds=int(i.get("lease_seconds", d.lease_seconds)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            scan_limit=int(r.get("scan_limit", cfg.retrieval.scan_limit)),
            phrase_bonus=int(r.get("phrase_bonus", cfg.retrieval.phrase_bonus)),
            min_token_length=int(r.get("min_token_length", cfg.retrieval.min_token_length)),
        )

    if "channels" in data:
        ch = data["channels"]
        cfg.channels = ChannelsCfg(
            text=_parse_channel(ch.get("text", {}), cfg.channels.text),
            voice=_parse_channel(ch.get("voice", {}), cfg.channels.voice),
        )

    if "chat" in data:
        c = data["chat"]
        cfg.chat = ChatCfg(
            max_message_chars=int(c.get("max_message_chars", cfg.chat.max_message_chars)),
            system_prompt=str(c.get("system_prompt", cfg.chat.system_prompt)),
            assistant_name=str(c.get("assistant_name", cfg.chat.assistant_name)),
            default_title=str(c.get("default_title", cfg.chat.default_title)),
        )

    if "modes" in data:
        modes: dict[str, ModeCfg] = {}
        for mode_id, m in (data["modes"] or {}).items():
            modes[str(mode_id)] = ModeCfg(
                title=str(m.get("title", "")),
                description=str(m.get("description", "")),
                system_prompt=str(m.get("system_prompt", "")),
                active=bool(m.get("active", True)),
            )
        cfg.modes = modes

    if "access" in data:
        a = data["access"]
        cfg.access = AccessCfg(admins=[str(x) for x in a.get("admins", [])])

    return cfg


def _apply_env_overrides(cfg: LorebaseConfig) -> LorebaseConfig:
    """Apply LOREBASE_* environment variable overrides."""
    if model := os.environ.get("LOREBASE_GENERATION_MODEL"):
        cfg.generation.model = model
    if db := os.environ.get("LOREBASE_DB"):
        cfg.db_path = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LorebaseConfig:
    """Load and return a merged *LorebaseConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *lorebase.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains credential-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    _validate(cfg)
    return _apply_env_overrides(cfg)


def project_config_template(project_name: str) -> str:
    """Return the lorebase.yaml written by ``lorebase init``."""
    return (
        "# Lorebase project configuration.\n"
        "# Credentials are read from the environment only:\n"
        "#   export GITHUB_TOKEN=ghp_...      (optional, private repos / rate limits)\n"
        "#   export GEMINI_API_KEY=...        (or the key for your generation provider)\n"
        "\n"
        "project:\n"
        f"  name: {project_name!r}\n"
        "\n"
        "generation:\n"
        "  model: gemini/gemini-2.0-flash\n"
        "  temperature: 0.7\n"
        "  max_tokens: 2000\n"
        "\n"
        "indexing:\n"
        "  chunk_size: 1500\n"
        "  chunk_overlap: 200\n"
        "  allowed_extensions: [.md]\n"
        "\n"
        "retrieval:\n"
        "  scan_limit: 200\n"
        "\n"
        "# modes:\n"
        "#   onboarding:\n"
        "#     title: Onboarding\n"
        "#     description: Walk a new contributor through the project docs.\n"
        "#     system_prompt: You are a patient guide for new contributors.\n"
        "\n"
        "# access:\n"
        "#   admins: [alice]\n"
    )
