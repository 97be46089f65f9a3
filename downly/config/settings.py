import json
import logging
import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.json")

class RedisConfig(BaseModel):
    url: str = Field(default="redis://redis:6379", description="Redis connection URL")
    socket_timeout: int = Field(default=5, description="Redis socket timeout in seconds")

class RateLimitConfig(BaseModel):
    enabled: bool = Field(default=True, description="Enable rate limiting")
    inspect_max_requests: int = Field(default=30, ge=1, description="Max inspect requests per client per window")
    download_max_requests: int = Field(default=10, ge=1, description="Max download requests per client per window")
    window_seconds: int = Field(default=60, ge=1, description="Rate limit window in seconds")

class DownloadConfig(BaseModel):
    max_concurrent: int = Field(default=10, ge=1, le=100, description="Max concurrent downloads")
    max_per_client: int = Field(default=2, ge=1, description="Max concurrent downloads per client")
    slot_ttl_seconds: int = Field(default=3600, ge=60, description="Lifetime of a download slot in Redis")

class ToolsConfig(BaseModel):
    cache_dir: Optional[str] = Field(default=None, description="Explicit directory for provisioned binaries")
    use_system_binaries: bool = Field(default=False, description="Prefer yt-dlp/ffmpeg found on PATH")
    download_timeout: float = Field(default=120.0, gt=0, description="Binary download timeout in seconds")
    max_redirects: int = Field(default=5, ge=0, description="Redirect hops followed for binary downloads")
    extractor_urls: Dict[str, str] = Field(
        default={
            "win32": "https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp.exe",
            "darwin": "https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp_macos",
            "linux": "https://github.com/yt-dlp/yt-dlp/releases/latest/download/yt-dlp_linux",
        },
        description="yt-dlp download URL per OS",
    )
    transcoder_urls: Dict[str, str] = Field(
        default={
            "win32": "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.0/ffmpeg-win32-x64",
            "darwin": "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.0/ffmpeg-darwin-x64",
            "linux": "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.0/ffmpeg-linux-x64",
        },
        description="ffmpeg download URL per OS",
    )

class ProcessConfig(BaseModel):
    first_byte_timeout: float = Field(default=90.0, gt=0, description="Kill a streaming process that produced no bytes in this many seconds")
    inspect_timeout: float = Field(default=60.0, gt=0, description="Timeout for metadata dumps")
    lookup_timeout: float = Field(default=20.0, gt=0, description="Timeout for the best-effort filename lookup")
    extract_timeout: float = Field(default=900.0, gt=0, description="Timeout for downloads to a temp file")
    transcode_timeout: float = Field(default=600.0, gt=0, description="Timeout for ffmpeg runs")
    retries: int = Field(default=3, ge=0, description="Retry count passed to yt-dlp")
    socket_timeout: int = Field(default=15, ge=1, description="Socket timeout passed to yt-dlp")
    chunk_size: int = Field(default=64 * 1024, ge=1024, description="Read size for streamed output")
    queue_depth: int = Field(default=4, ge=1, description="Chunks buffered between a process and the client")

class StorageConfig(BaseModel):
    downloads_dir: Optional[str] = Field(default=None, description="Explicit directory for temp artifacts")
    release_delay: float = Field(default=10.0, ge=0, description="Grace delay before deleting orphaned artifacts")
    stale_after: float = Field(default=3600.0, gt=0, description="Age after which leftover artifacts are swept")
    max_bytes: int = Field(default=2 * 1024 ** 3, ge=0, description="Disk budget for temp artifacts (0 disables)")

class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="%(message)s", description="Log format")
    enable_rich: bool = Field(default=True, description="Enable rich console logging")

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

class ApiConfig(BaseModel):
    title: str = Field(default="Downly API", description="API title")
    version: str = Field(default="1.0.0", description="API version")
    product_name: str = Field(default="Downly", description="Prefix for download filenames")
    cors_origins: list = Field(default=["*"], description="CORS allowed origins")
    debug: bool = Field(default=False, description="Enable debug mode")

class Config(BaseSettings):
    """Main configuration model"""
    model_config = SettingsConfigDict(env_prefix="DOWNLY_", env_nested_delimiter="__")

    redis: RedisConfig = Field(default_factory=RedisConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @classmethod
    def load_from_file(cls, config_path: str = CONFIG_PATH) -> "Config":
        """Load configuration from JSON file, environment still applies to missing keys"""
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                logger.info(f"Configuration loaded from {config_path}")
                return cls(**config_data)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load config from {config_path}: {str(e)}")
                logger.info("Using default configuration")
        return cls()

    def save_to_file(self, config_path: str = CONFIG_PATH):
        """Save configuration to JSON file"""
        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                json.dump(self.model_dump(exclude_none=True), f, indent=2, ensure_ascii=False)
            logger.info(f"Configuration saved to {config_path}")
        except OSError as e:
            logger.error(f"Failed to save config to {config_path}: {str(e)}")

config = Config.load_from_file(CONFIG_PATH)
