"""Main daemon process for memrecall."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import psutil
from aiohttp import web
from loguru import logger

from .. import __version__
from .api import create_api_app
from .channels import KeywordChannel, SemanticChannel
from .config import Config, EmbeddingConfig
from .indexers import HttpEmbedder, NumpyVectorStore, SentenceTransformerEmbedder, SQLiteMemoryStore
from .search_orchestrator import SearchOrchestrator


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Console logging plus a rotating debug log file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    log_dir = log_dir or Path.home() / ".local" / "share" / "memrecall" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG"
    )


def build_embedder(config: EmbeddingConfig):
    """Construct the configured embedder, or None when semantic search is off or unusable."""
    if config.provider == "none":
        logger.info("Embedding provider disabled, semantic channel unavailable")
        return None

    try:
        if config.provider == "http":
            return HttpEmbedder.from_env(config.base_url, config.model, config.api_key_env, dim=config.dim)
        return SentenceTransformerEmbedder(config.model)
    except Exception as e:
        logger.warning(f"Embedder {config.provider}/{config.model} unavailable, semantic channel disabled: {e}")
        return None


def build_vector_store(config: Config, embedder) -> Optional[NumpyVectorStore]:
    if embedder is None:
        return None
    dim = getattr(embedder, "dim", None) or config.embedding.dim
    try:
        return NumpyVectorStore(dim=dim, path=config.storage.vector_path)
    except Exception as e:
        logger.warning(f"Vector index at {config.storage.vector_path} unusable, semantic channel disabled: {e}")
        return None


class MemRecallDaemon:
    """Main daemon wiring storage, retrieval and the HTTP API."""

    def __init__(self, config: Config, orchestrator: Optional[SearchOrchestrator] = None):
        self.config = config
        self.start_time = datetime.utcnow()
        self.memory_store: Optional[SQLiteMemoryStore] = None
        self.vector_store: Optional[NumpyVectorStore] = None
        self.embedder = None

        if orchestrator is None:
            orchestrator = self._build_orchestrator()
        self.orchestrator = orchestrator

        # HTTP API
        self.api_app = None
        self.api_runner = None
        self.api_site = None

    def _build_orchestrator(self) -> SearchOrchestrator:
        self.memory_store = SQLiteMemoryStore(self.config.storage.sqlite_path)
        self.embedder = build_embedder(self.config.embedding)
        self.vector_store = build_vector_store(self.config, self.embedder)

        semantic = SemanticChannel(
            self.embedder,
            self.vector_store,
            embedding_cache_size=self.config.cache.embedding_max_size,
            embedding_ttl_seconds=self.config.cache.embedding_ttl_seconds,
        )
        return SearchOrchestrator(
            self.config,
            keyword_channel=KeywordChannel(self.memory_store),
            semantic_channel=semantic,
            record_store=self.memory_store,
        )

    async def start(self) -> None:
        """Start the HTTP API."""
        logger.info("Starting memrecall daemon...")

        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        host, port = self.config.server.host, self.config.server.port
        self.api_site = web.TCPSite(self.api_runner, host, port)
        await self.api_site.start()

        logger.info(f"API server started on http://{host}:{port}")

    async def stop(self) -> None:
        logger.info("Stopping memrecall daemon...")

        if self.api_site:
            await self.api_site.stop()
        if self.api_runner:
            await self.api_runner.cleanup()
        if isinstance(self.embedder, HttpEmbedder):
            await self.embedder.close()

        logger.info("memrecall daemon stopped")

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.utcnow() - self.start_time).total_seconds()

        return {
            "status": "ok",
            "version": __version__,
            "uptime": f"{uptime:.0f}s",
            "stats": {
                "search_count": self.orchestrator.metrics.counters.get("search.requests", 0),
                "memory_mb": process.memory_info().rss / 1024 / 1024,
                "cpu_percent": process.cpu_percent()
            },
            "channels": {
                "keyword": self.orchestrator.keyword_channel.available,
                "semantic": self.orchestrator.semantic_channel.available,
            },
            "config": {
                "sqlite_path": str(self.config.storage.sqlite_path),
                "vector_path": str(self.config.storage.vector_path),
                "embedding_provider": self.config.embedding.provider,
                "high_threshold": self.config.mode.high_threshold,
            }
        }


async def main(config_path: Optional[str] = None):
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except FileNotFoundError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.log_level)
    daemon = MemRecallDaemon(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await daemon.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
    finally:
        await daemon.stop()


if __name__ == "__main__":
    asyncio.run(main())
