"""Application configuration settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache

# Skill directories of supported AI coding tools, relative to the home directory.
# Order matters: local copies are searched in this order and the first match wins,
# and pulls land in the first available root.
DEFAULT_INSTALL_ROOTS: list[str] = [
    ".claude/skills",
    ".codex/skills",
    ".cursor/commands",
    ".cline/commands",
    ".roo/commands",
    ".windsurf/commands",
    ".aider/commands",
    ".augment/commands",
    ".continue/commands",
    ".gemini/commands",
    ".config/opencode/skill",
    ".kiro/commands",
    ".kilocode/commands",
    ".zencoder/commands",
    ".zed/commands",
    ".vscode/commands",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SkillHub Sync API"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8765

    # CORS - include Tauri origins for desktop app
    cors_origins: list[str] = ["http://localhost:1420", "tauri://localhost", "https://tauri.localhost", "http://tauri.localhost"]

    # Remote skill hosting service
    skillhub_url: str = "https://www.skillhub.club"
    skillhub_access_token: str = ""
    request_timeout: float = 30.0  # Seconds, applied to every remote call

    # Local copies
    install_roots: list[str] = []  # Empty means DEFAULT_INSTALL_ROOTS under the home directory
    sync_meta_filename: str = ".skillhub.json"

    # Push behaviour
    push_source: str = "desktop"
    default_change_summary: str = "Desktop sync"
    # Record the server-assigned version after a push instead of previous + 1
    trust_push_ack_version: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def resolved_install_roots(self) -> list[Path]:
        """Install roots in search order, with ~ expanded."""
        if self.install_roots:
            return [Path(root).expanduser() for root in self.install_roots]
        home = Path.home()
        return [home / root for root in DEFAULT_INSTALL_ROOTS]

    def platform_url(self, skill_slug: str) -> str:
        """Public page of a skill on the hosting service."""
        return f"{self.skillhub_url.rstrip('/')}/skills/{skill_slug}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
