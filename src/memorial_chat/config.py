"""
Environment configuration.

Each concern reads its own prefix so a deployment can override a single value
(e.g. 'CHAT_ANSWER_TIMEOUT=60') without touching the rest.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SUPABASE_", env_file=".env", extra="ignore")

    url: str = Field(default="http://localhost:54321", description="Project URL")
    anon_key: str = Field(default="", description="Public key used for chat reads and the answer function")
    service_role_key: str | None = Field(default=None, description="Server key used for guestbook writes")
    answer_function: str = Field(default="send-chat-message", description="Edge function that queues the answer")
    turns_table: str = Field(default="n8n_chat_histories")
    sources_table: str = Field(default="sources")
    notebooks_table: str = Field(default="notebooks")
    tributes_table: str = Field(default="replies")
    timeout: float = Field(default=10.0, gt=0)


class ChatSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHAT_", env_file=".env", extra="ignore")

    refetch_delays: list[float] = Field(default_factory=lambda: [2.0, 5.0, 10.0])
    answer_timeout: float = Field(default=30.0, gt=0, description="Seconds before an unanswered question times out")
    poll_interval: float = Field(default=1.0, gt=0)
    user_id: str = Field(default="public-user")

    @model_validator(mode="after")
    def _timeout_after_last_refetch(self) -> "ChatSettings":
        if self.refetch_delays and self.answer_timeout < max(self.refetch_delays):
            raise ValueError("CHAT_ANSWER_TIMEOUT must not be shorter than the last CHAT_REFETCH_DELAYS entry")
        return self


class TributeSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TRIBUTE_", env_file=".env", extra="ignore")

    default_name: str = "Tưởng nhớ"
    page_size: int = Field(default=50, ge=1, le=500)
    timezone_offset_hours: int = Field(default=7, ge=-12, le=14)
