"""KoruClub configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class BotConfig(BaseModel):
    """Chat-facing behaviour (bot.*)."""

    name: str = "KoruClub"
    command_prefix: str = "!bot"
    admin_chat_id: str = ""  # only DMs from this chat id are answered
    kickoff_window_hours: int = 48
    completion_keywords: list[str] = Field(
        default_factory=lambda: [
            "done",
            "finished",
            "completed",
            "shipped",
            "launched",
            "deployed",
            "✅",
            "🎉",
        ]
    )


class SchedulerConfig(BaseModel):
    """Sprint cadence scheduler (scheduler.*)."""

    enabled: bool = True
    timezone: str = "Pacific/Auckland"
    heartbeat_interval_s: int = 60
    min_downtime_s: int = 60
    max_attempts: int = 3
    retry_base_delay_s: float = 60.0
    auto_start: bool = True  # start on boot when whatsapp.target_group is set


class WhatsAppConfig(BaseModel):
    """WAHA connection + group routing (whatsapp.*)."""

    waha_url: str = "http://localhost:3000"
    session: str = "default"
    api_key: str = ""
    target_group: str = ""  # "<id>@g.us"; empty → first group that talks to the bot


class LLMConfig(BaseModel):
    """Goal extraction / mentorship model (llm.*)."""

    enabled: bool = True
    model: str = "ollama/qwen2:0.5b"
    api_base: str | None = "http://localhost:11434"
    api_key: str = ""
    timeout_s: float = 60.0


class DatabaseConfig(BaseModel):
    path: str = "data/koruclub.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        KORUCLUB_WHATSAPP__TARGET_GROUP=1203630xxxx@g.us
        KORUCLUB_SCHEDULER__TIMEZONE=Pacific/Auckland
        KORUCLUB_LLM__MODEL=openai/gpt-4o-mini
    """

    model_config = SettingsConfigDict(
        env_prefix="KORUCLUB_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bot: BotConfig = Field(default_factory=BotConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env must still win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    @property
    def admin_enabled(self) -> bool:
        """True when an admin chat id is configured (DM commands active)."""
        return bool(self.bot.admin_chat_id)

    def command(self, name: str) -> str:
        """Full command text, e.g. ``command("start")`` → ``"!bot start"``."""
        return f"{self.bot.command_prefix} {name}"
