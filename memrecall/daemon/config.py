"""Configuration management for memrecall."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator


class RankingConfig(BaseModel):
    """Fixed weights for the linear confidence formula."""
    w_semantic: float = 0.40
    w_keyword: float = 0.30
    w_time: float = 0.15
    w_app: float = 0.10
    w_source: float = 0.05
    half_life_days: float = 7.0
    max_horizon_days: float = 90.0
    source_bonus: float = 1.0
    reliable_hosts: List[str] = Field(default_factory=lambda: [
        "amazon.com",
        "youtube.com",
        "github.com",
        "stackoverflow.com",
    ])
    tie_epsilon: float = 1e-9
    # strict queries scale down semantic-only evidence by this fraction
    strict_fuzzy_penalty: float = 0.5

    @field_validator("w_semantic", "w_keyword", "w_time", "w_app", "w_source", "source_bonus", "strict_fuzzy_penalty")
    @classmethod
    def validate_unit(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("weights and bonuses must be between 0 and 1")
        return v

    @field_validator("half_life_days", "max_horizon_days")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def validate_weight_sum(self) -> "RankingConfig":
        total = self.w_semantic + self.w_keyword + self.w_time + self.w_app + self.w_source
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"ranking weights must sum to 1, got {total:.6f}")
        return self


class ModeConfig(BaseModel):
    high_threshold: float = 0.78
    exact_max_cards: int = 3
    jog_max_cards: int = 6

    @field_validator("high_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("high_threshold must be between 0 and 1")
        return v


class NuggetConfig(BaseModel):
    price_confidence: float = 0.85
    score_confidence: float = 0.80
    title_confidence: float = 0.90
    generic_confidence: float = 0.50
    score_labels: List[str] = Field(default_factory=lambda: [
        "SCORE", "KILLS", "POINTS", "XP", "RANKED",
    ])
    generic_max_chars: int = 80


class ChannelsConfig(BaseModel):
    keyword_timeout_ms: int = 300
    semantic_timeout_ms: int = 800
    candidate_multiplier: int = 2


class CacheConfig(BaseModel):
    enabled: bool = True
    max_size: int = 1000
    ttl_seconds: int = 300
    embedding_max_size: int = 500
    embedding_ttl_seconds: int = 1800


class EmbeddingConfig(BaseModel):
    provider: str = "sentence-transformers"
    model: str = "all-MiniLM-L6-v2"
    dim: int = 384
    base_url: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v not in ("sentence-transformers", "http", "none"):
            raise ValueError(f"unknown embedding provider: {v}")
        return v


class StorageConfig(BaseModel):
    sqlite_path: Path = Path("data/sqlite/memories.db")
    vector_path: Path = Path("data/vectors/mem_text.npz")


class ServerConfig(BaseModel):
    host: str = "localhost"
    port: int = 8765


class SearchConfig(BaseModel):
    default_k: int = 6
    max_k: int = 20

    @model_validator(mode="after")
    def validate_k(self) -> "SearchConfig":
        if not 1 <= self.default_k <= self.max_k:
            raise ValueError("default_k must be between 1 and max_k")
        return self


class QueryConfig(BaseModel):
    # alias -> canonical app/site id, merged over the built-in table
    app_aliases: Dict[str, str] = Field(default_factory=dict)


class Config(BaseModel):
    """Main configuration, constructed once and injected into the orchestrator."""

    ranking: RankingConfig = Field(default_factory=RankingConfig)
    mode: ModeConfig = Field(default_factory=ModeConfig)
    nuggets: NuggetConfig = Field(default_factory=NuggetConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    log_level: str = "INFO"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML, falling back to defaults."""
        if config_path is None:
            candidates = [
                Path("memrecall.yaml"),
                Path.home() / ".config" / "memrecall" / "config.yaml",
                Path("/etc/memrecall/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break

        data = {}
        if config_path is not None:
            logger.info(f"Loading config from: {config_path}")
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        else:
            logger.info("No config file found, using defaults")

        config = cls(**data)
        return config.with_env_overrides()

    def with_env_overrides(self) -> "Config":
        """Apply MEMRECALL_CONFIDENCE_T_HIGH and MEMRECALL_SEARCH_K."""
        data = self.model_dump()
        threshold = os.environ.get("MEMRECALL_CONFIDENCE_T_HIGH")
        if threshold:
            data["mode"]["high_threshold"] = float(threshold)
        search_k = os.environ.get("MEMRECALL_SEARCH_K")
        if search_k:
            data["search"]["default_k"] = int(search_k)
        if threshold or search_k:
            return Config(**data)
        return self

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
