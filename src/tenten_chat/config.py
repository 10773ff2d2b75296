"""Configuration management for TenTen Chat."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from tenten_chat.types import ProviderFamily

_logger = logging.getLogger(__name__)

ApiMode = Literal["n8n", "remote-git", "local-git"]
RoutingMode = Literal["thread", "content", "exam"]
Environment = Literal["prod", "stage", "local"]

DEFAULT_WEBHOOK_URL = "https://n8n-prod.10minuteschool.com/webhook/supersolve-ai-v1"
DEFAULT_REMOTE_GIT_URL = (
    "https://local-api.10minuteschool.net/tenten-ai-service/api/v1/messages"
)
DEFAULT_LOCAL_GIT_URL = "http://localhost:8000/api/v1/messages"

# Large image payloads may need server-side analysis
REQUEST_TIMEOUT = 600.0


class RequesterIdentity(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    auth_user_id: str = "623a3187fb492fa5df0c2277"
    user_name: str = "TenTen User"
    live_class_id: str = "NoVKlRff9E"


class ApiConfig(BaseModel):
    """Backend selection and routing for one exchange.

    Frozen: an in-flight exchange keeps the snapshot it started with.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    mode: ApiMode = "n8n"
    authorization_token: str = ""
    session_id: str | None = None
    thread_id: int = 1
    webhook_url: str = DEFAULT_WEBHOOK_URL
    remote_git_url: str = DEFAULT_REMOTE_GIT_URL
    local_git_url: str = DEFAULT_LOCAL_GIT_URL
    environment: Environment = "prod"

    # Event-family sub-mode routing
    routing: RoutingMode = "thread"
    content_type: str | None = None
    content_id: str | None = None
    segment_id: str | None = None
    exam_id: str | None = None
    question_id: str | None = None

    # Workflow-family labels
    program_name: str | None = None
    identity: RequesterIdentity = Field(default_factory=RequesterIdentity)

    timeout: float = REQUEST_TIMEOUT

    @property
    def is_git_mode(self) -> bool:
        return self.mode in ("remote-git", "local-git")

    @property
    def provider_family(self) -> ProviderFamily:
        if self.is_git_mode:
            return ProviderFamily.EVENT_TAGGED
        return ProviderFamily.FREE_FORM

    def api_url(self) -> str:
        if self.mode == "remote-git":
            return self.remote_git_url
        if self.mode == "local-git":
            return self.local_git_url
        return self.webhook_url

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.is_git_mode:
            token = self.authorization_token
            if not token.startswith("Bearer "):
                token = f"Bearer {token}"
            headers["Authorization"] = token
        return headers

    def with_session(self, session_id: str | None) -> ApiConfig:
        """Return a copy bound to *session_id*."""
        return self.model_copy(update={"session_id": session_id})


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    db_path: str = "~/.tenten_chat/sessions.db"


class ChatConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api: ApiConfig = Field(default_factory=ApiConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    typing_delay: float = 0.05  # seconds between synthesized words


# ---------------------------------------------------------------------------
# Thread mappings
# ---------------------------------------------------------------------------

# (thread_id, label, subject) per environment
THREAD_MAPPINGS: dict[str, list[tuple[int, str, str]]] = {
    "prod": [
        (1, "Physics", "physics"),
        (2, "Chemistry", "chemistry"),
        (4, "Biology", "biology"),
        (3, "Math", "mathematics"),
        (69, "Science", "science"),
        (35, "English", "english"),
        (68, "Higher Math", "higher-math"),
        (67, "ICT", "ict"),
        (34, "Bangla", "bangla"),
    ],
    "stage": [
        (3, "ICT", "ict"),
        (4, "Biology", "biology"),
        (2, "Chemistry", "chemistry"),
        (5, "Bangla", "bangla"),
        (7, "Physics", "physics"),
        (6, "English", "english"),
        (1, "Math", "mathematics"),
        (8, "Science", "science"),
        (9, "Higher Math", "higher-math"),
    ],
}
THREAD_MAPPINGS["local"] = list(THREAD_MAPPINGS["stage"])


def thread_options(environment: str) -> list[tuple[int, str, str]]:
    return list(THREAD_MAPPINGS.get(environment, []))


def subject_for_thread(thread_id: int | None, environment: str) -> str | None:
    if thread_id is None:
        return None
    for tid, _label, subject in THREAD_MAPPINGS.get(environment, []):
        if tid == thread_id:
            return subject
    return None


def label_for_thread(thread_id: int | None, environment: str) -> str | None:
    if thread_id is None:
        return None
    for tid, label, _subject in THREAD_MAPPINGS.get(environment, []):
        if tid == thread_id:
            return label
    return None


def thread_for_subject(subject: str, environment: str) -> int | None:
    for tid, _label, subj in THREAD_MAPPINGS.get(environment, []):
        if subj == subject:
            return tid
    return None


# ---------------------------------------------------------------------------
# Loading / saving
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "tenten_chat.yaml"


def _search_paths() -> list[Path]:
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.home() / ".tenten_chat" / CONFIG_FILENAME,
    ]


def load_config(
    config_path: str | Path | None = None,
) -> tuple[ChatConfig, Path | None]:
    """Load configuration from a YAML file.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Search order (first match wins):
      1. Explicit ``--config`` path
      2. Current working directory: ``./tenten_chat.yaml``
      3. User config dir: ``~/.tenten_chat/tenten_chat.yaml``
    """
    if config_path is None:
        for candidate in _search_paths():
            if candidate.exists():
                config_path = candidate
                break

    resolved: Path | None = Path(config_path) if config_path else None
    if resolved and resolved.exists():
        _logger.info("Loading config from %s", resolved)
        with open(resolved) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return ChatConfig.model_validate(raw), resolved.resolve()

    if config_path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _logger.info("No config file found, using defaults")
    return ChatConfig(), None


def save_config(config: ChatConfig, path: str | Path) -> Path:
    """Write *config* as YAML, creating parent directories."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        yaml.safe_dump(config.model_dump(), f, sort_keys=False, allow_unicode=True)
    return target


def reset_config(path: str | Path) -> ChatConfig:
    """Overwrite *path* with built-in defaults and return them."""
    config = ChatConfig()
    save_config(config, path)
    _logger.info("Reset config at %s to defaults", path)
    return config
