"""Configuration loading for the study engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml


DEFAULT_GENERATION_MODELS = "gemini-2.0-flash,gemini-1.5-flash,gemini-1.5-flash-8b"
DEFAULT_EMBEDDING_MODELS = "gemini-embedding-001,text-embedding-004"


def _resolve_path(raw_path: str, base_dir: Path) -> str:
    if raw_path == ":memory:":
        return raw_path
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)


def parse_model_list(raw: Optional[str], defaults: str) -> List[str]:
    """Split a comma-separated model list and add the ``models/`` prefix."""
    source = raw or defaults
    models = []
    for name in source.split(","):
        name = name.strip()
        if not name:
            continue
        models.append(name if name.startswith("models/") else f"models/{name}")
    return models


def normalize_api_key(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    key = str(raw).strip().strip("'\"")
    return key or None


@dataclass
class PathsConfig:
    """Filesystem locations used by the engine."""

    sqlite_path: str = "data/study.db"
    chroma_dir: str = "data/chroma"


@dataclass
class ChunkingConfig:
    """Character-budget chunking with a token overlap window."""

    chunk_size: int = 1000
    overlap: int = 200
    chars_per_token: int = 10


@dataclass
class ProviderConfig:
    """Remote Gemini model candidates and retry policy."""

    generation_models: List[str] = field(
        default_factory=lambda: parse_model_list(None, DEFAULT_GENERATION_MODELS)
    )
    embedding_models: List[str] = field(
        default_factory=lambda: parse_model_list(None, DEFAULT_EMBEDDING_MODELS)
    )
    embedding_dimensions: int = 768
    batch_size: int = 100
    max_retries: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class VectorIndexConfig:
    """External Chroma index settings; ``backend: sqlite`` skips Chroma entirely."""

    backend: str = "chroma"
    collection_name: str = "document_embeddings"
    chroma_host: Optional[str] = None
    chroma_port: int = 8000


@dataclass
class RetrievalConfig:
    """Hybrid retrieval defaults and ranking weights."""

    default_limit: int = 5
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    min_keyword_length: int = 4
    fallback_relevance: float = 0.5


@dataclass
class TrustGateConfig:
    evidence_count: int = 5
    block_threshold: float = 0.35
    high_trust_threshold: float = 0.75


@dataclass
class GraphConfig:
    threshold: float = 0.3
    rebuild_on_ingest: bool = True


@dataclass
class ExamConfig:
    context_chunks: int = 25
    default_questions: int = 8
    max_questions: int = 50


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    """Top-level app configuration."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    trust_gate: TrustGateConfig = field(default_factory=TrustGateConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    exam: ExamConfig = field(default_factory=ExamConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    google_api_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "AppConfig":
        """Build config from a dictionary."""
        base = Path.cwd() if base_dir is None else base_dir

        paths_data = data.get("paths", {})
        paths = PathsConfig(
            sqlite_path=_resolve_path(paths_data.get("sqlite_path", "data/study.db"), base),
            chroma_dir=_resolve_path(paths_data.get("chroma_dir", "data/chroma"), base),
        )

        providers_data = dict(data.get("providers", {}))
        for key, defaults in (
            ("generation_models", DEFAULT_GENERATION_MODELS),
            ("embedding_models", DEFAULT_EMBEDDING_MODELS),
        ):
            value = providers_data.get(key)
            if isinstance(value, list):
                value = ",".join(str(v) for v in value)
            providers_data[key] = parse_model_list(value, defaults)

        return cls(
            paths=paths,
            chunking=ChunkingConfig(**data.get("chunking", {})),
            providers=ProviderConfig(**providers_data),
            vector_index=VectorIndexConfig(**data.get("vector_index", {})),
            retrieval=RetrievalConfig(**data.get("retrieval", {})),
            trust_gate=TrustGateConfig(**data.get("trust_gate", {})),
            graph=GraphConfig(**data.get("graph", {})),
            exam=ExamConfig(**data.get("exam", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            google_api_key=normalize_api_key(data.get("google_api_key")),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "AppConfig":
        """Load config from YAML, then overlay the environment."""
        config_path = Path(path).resolve()
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        return cls.from_dict(data, base_dir=config_path.parent).apply_env()

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Overlay environment variables onto this config in place."""
        env = os.environ if environ is None else environ

        key = normalize_api_key(env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY"))
        if key:
            self.google_api_key = key
        if env.get("GEMINI_GENERATION_MODELS"):
            self.providers.generation_models = parse_model_list(
                env["GEMINI_GENERATION_MODELS"], DEFAULT_GENERATION_MODELS
            )
        if env.get("GEMINI_EMBEDDING_MODELS"):
            self.providers.embedding_models = parse_model_list(
                env["GEMINI_EMBEDDING_MODELS"], DEFAULT_EMBEDDING_MODELS
            )
        if env.get("CHROMA_HOST"):
            self.vector_index.chroma_host = env["CHROMA_HOST"]
        if env.get("CHROMA_PORT"):
            self.vector_index.chroma_port = int(env["CHROMA_PORT"])
        if env.get("STUDY_ENGINE_DB_PATH"):
            self.paths.sqlite_path = env["STUDY_ENGINE_DB_PATH"]
        if env.get("STUDY_ENGINE_LOG_LEVEL"):
            self.logging.level = env["STUDY_ENGINE_LOG_LEVEL"]
        return self
