"""
Configuration Management for paperlm

Loads configuration from ~/.paperlm/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from .errors import ConfigurationError

logger = logging.getLogger("paperlm.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".paperlm"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class MilvusConfig:
    """Milvus vector database configuration"""
    uri: str = "http://localhost:19530"
    token: str = ""
    collection: str = "paperlm_documents"
    timeout: float = 30.0


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    mode: str = "openai"  # "openai" or "femb" (fastembed, on-device)
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    batch_size: int = 10
    concurrency: int = 4
    timeout: float = 30.0
    seed: int = -1  # fallback vector rng seed; -1 means unseeded


@dataclass
class LLMConfig:
    """LLM provider configuration shared by query enhancement and synthesis"""
    provider: str = "openai"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"
    timeout: float = 60.0


@dataclass
class ChunkingConfig:
    """Text chunking configuration"""
    chunk_size: int = 1200
    chunk_overlap: int = 250
    preserve_structure: bool = True


@dataclass
class RetrieverConfig:
    """Retrieval, ranking and synthesis configuration"""
    topk: int = 10
    max_strategies: int = 5
    use_hyde: bool = True
    use_expansion: bool = True
    history_turns: int = 3
    concurrency: int = 5
    keyword_weight: float = 0.4
    confidence_weight: float = 0.4
    quality_weight: float = 0.2
    quality_norm_length: int = 1000
    max_context_length: int = 2000
    min_citation_confidence: float = 0.3


@dataclass
class SessionConfig:
    """Lifetime of session-scoped documents held in memory"""
    ttl_hours: float = 2.0


@dataclass
class PaperLMConfig:
    """Main paperlm configuration"""
    milvus: MilvusConfig = field(default_factory=MilvusConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_section(cls, data: dict, name: str):
    """Build a config section from ``data[name]``, ignoring unknown keys."""
    section = data.get(name) or {}
    defaults = cls()
    values = {}
    for key in defaults.__dataclass_fields__:
        if key in section:
            values[key] = type(getattr(defaults, key))(section[key])
    return cls(**values)


def load_config() -> PaperLMConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.paperlm/config.json)
    3. Default values
    """
    config = PaperLMConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.milvus = _parse_section(MilvusConfig, data, "milvus")
            config.embedding = _parse_section(EmbeddingConfig, data, "embedding")
            config.llm = _parse_section(LLMConfig, data, "llm")
            config.chunking = _parse_section(ChunkingConfig, data, "chunking")
            config.retriever = _parse_section(RetrieverConfig, data, "retriever")
            config.session = _parse_section(SessionConfig, data, "session")
        except (json.JSONDecodeError, IOError, TypeError, ValueError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    if os.getenv("MILVUS_URI"):
        config.milvus.uri = os.getenv("MILVUS_URI")
    if os.getenv("MILVUS_TOKEN"):
        config.milvus.token = os.getenv("MILVUS_TOKEN")
    if os.getenv("PAPERLM_COLLECTION"):
        config.milvus.collection = os.getenv("PAPERLM_COLLECTION")

    if os.getenv("EMBEDDING_MODE"):
        config.embedding.mode = os.getenv("EMBEDDING_MODE")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")
    if os.getenv("EMBEDDING_DIMENSION"):
        config.embedding.dimension = int(os.getenv("EMBEDDING_DIMENSION"))

    if os.getenv("PAPERLM_TOPK"):
        config.retriever.topk = int(os.getenv("PAPERLM_TOPK"))
    if os.getenv("PAPERLM_SESSION_TTL_HOURS"):
        config.session.ttl_hours = float(os.getenv("PAPERLM_SESSION_TTL_HOURS"))

    # LLM env var overrides (track env-sourced keys so they are never persisted)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "PAPERLM_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def validate_config(config: PaperLMConfig) -> None:
    """Reject values the pipeline cannot run with."""
    if config.embedding.dimension <= 0:
        raise ConfigurationError(f"embedding.dimension must be positive, got {config.embedding.dimension}")
    if config.embedding.batch_size <= 0:
        raise ConfigurationError(f"embedding.batch_size must be positive, got {config.embedding.batch_size}")
    if config.chunking.chunk_size <= 0:
        raise ConfigurationError(f"chunking.chunk_size must be positive, got {config.chunking.chunk_size}")
    if not 0 <= config.chunking.chunk_overlap < config.chunking.chunk_size:
        raise ConfigurationError(
            f"chunking.chunk_overlap must be in [0, chunk_size), got {config.chunking.chunk_overlap}"
        )
    weights = (
        config.retriever.keyword_weight,
        config.retriever.confidence_weight,
        config.retriever.quality_weight,
    )
    if any(w < 0 for w in weights):
        raise ConfigurationError(f"ranking weights must be non-negative, got {weights}")
    if config.embedding.mode not in ("openai", "femb"):
        raise ConfigurationError(f"Unsupported embedding mode: {config.embedding.mode}")


def resolve_llm_provider(llm: LLMConfig) -> str:
    """Resolve ``"auto"`` to the first provider with an API key.

    Explicit providers are returned unchanged. ``"auto"`` with no keys at all
    resolves to ``"openai"``, which leaves the client unavailable.
    """
    provider = (llm.provider or "openai").lower()
    if provider != "auto":
        return provider
    for name, key in (
        ("anthropic", llm.anthropic_api_key),
        ("openai", llm.openai_api_key),
        ("google", llm.google_api_key),
    ):
        if key:
            return name
    return "openai"


def llm_model_for(llm: LLMConfig, provider: str) -> str:
    return {
        "anthropic": llm.anthropic_model,
        "openai": llm.openai_model,
        "google": llm.google_model,
    }.get(provider, "")


def save_config(config: PaperLMConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
        "timeout": config.llm.timeout,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "milvus": {
            "uri": config.milvus.uri,
            "token": config.milvus.token,
            "collection": config.milvus.collection,
            "timeout": config.milvus.timeout,
        },
        "embedding": {
            "mode": config.embedding.mode,
            "model": config.embedding.model,
            "dimension": config.embedding.dimension,
            "batch_size": config.embedding.batch_size,
            "concurrency": config.embedding.concurrency,
            "timeout": config.embedding.timeout,
            "seed": config.embedding.seed,
        },
        "llm": llm_section,
        "chunking": {
            "chunk_size": config.chunking.chunk_size,
            "chunk_overlap": config.chunking.chunk_overlap,
            "preserve_structure": config.chunking.preserve_structure,
        },
        "retriever": dict(vars(config.retriever)),
        "session": {
            "ttl_hours": config.session.ttl_hours,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
