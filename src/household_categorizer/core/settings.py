import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from household_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "BACKEND_URL",
    "BACKEND_KEY",
    "CLASSIFIER_URL",
    "CLASSIFIER_KEY",
    "CLASSIFIER_TIMEOUT",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "AI_CHUNK_SIZE",
    "AI_MAX_ATTEMPTS",
    "AI_RETRY_BASE_DELAY",
    "AI_RATE_LIMIT_MULTIPLIER",
    "AI_MAX_CONCURRENCY",
    "AI_CONFIDENCE",
    "HISTORY_LIMIT",
    "ENABLE_USER_HISTORY",
    "ENABLE_USER_RULES",
    "ENABLE_SYSTEM_RULES",
    "ENABLE_AI_FALLBACK",
    "ANNOTATE_TRANSFER_DIRECTION",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    """Cut a trailing ` # comment`, ignoring `#` inside quotes or glued to a word."""
    in_single = False
    in_double = False
    escaped = False
    for index, char in enumerate(raw_value):
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
        elif char == "'" and not in_double:
            in_single = not in_single
        elif char == "#" and not in_single and not in_double:
            if index == 0 or raw_value[index - 1].isspace():
                return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) < 2:
        return raw_value
    quote = raw_value[0]
    if quote in {"'", '"'} and raw_value[-1] == quote:
        inner = raw_value[1:-1]
        return inner.replace(f"\\{quote}", quote).replace("\\\\", "\\")
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat ``KEY: value`` file. Nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            if not key:
                continue
            cleaned = _strip_inline_comment(raw_value).strip()
            if not cleaned:
                continue
            value = _unquote_value(cleaned)
            if value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
    return default


_SENSITIVE_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD")


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    sensitive = any(marker in name.upper() for marker in _SENSITIVE_MARKERS)
    if not sensitive and not sanitized.startswith(("sk-", "eyJ", "Bearer ")):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Effective configuration (masked where needed).")
    config_path = get_config_path()
    if config_path and os.path.exists(config_path):
        logger.info("[ENV] Config file: %s", config_path)
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else _mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


MAX_AI_CONCURRENCY = 3


@dataclass(frozen=True)
class CategorizerConfig:
    """Tier switches and batch tuning handed to each categorizer."""

    enable_user_history: bool = True
    enable_user_rules: bool = True
    enable_system_rules: bool = True
    enable_ai_fallback: bool = True
    annotate_transfer_direction: bool = True
    history_limit: int = 100
    chunk_size: int = 15
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    rate_limit_multiplier: float = 2.0
    max_concurrency: int = 1
    ai_confidence: float = 0.75

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.rate_limit_multiplier < 2.0:
            raise ValueError("rate_limit_multiplier must be at least 2")
        if not 1 <= self.max_concurrency <= MAX_AI_CONCURRENCY:
            raise ValueError(f"max_concurrency must be between 1 and {MAX_AI_CONCURRENCY}")
        if not 0.0 < self.ai_confidence <= 1.0:
            raise ValueError("ai_confidence must be in (0, 1]")

    @classmethod
    def from_env(cls) -> "CategorizerConfig":
        defaults = cls()
        return cls(
            enable_user_history=get_env_bool("ENABLE_USER_HISTORY", defaults.enable_user_history),
            enable_user_rules=get_env_bool("ENABLE_USER_RULES", defaults.enable_user_rules),
            enable_system_rules=get_env_bool("ENABLE_SYSTEM_RULES", defaults.enable_system_rules),
            enable_ai_fallback=get_env_bool("ENABLE_AI_FALLBACK", defaults.enable_ai_fallback),
            annotate_transfer_direction=get_env_bool(
                "ANNOTATE_TRANSFER_DIRECTION", defaults.annotate_transfer_direction
            ),
            history_limit=get_env_int("HISTORY_LIMIT", defaults.history_limit, min_value=1),
            chunk_size=get_env_int("AI_CHUNK_SIZE", defaults.chunk_size, min_value=1),
            max_attempts=get_env_int("AI_MAX_ATTEMPTS", defaults.max_attempts, min_value=1),
            retry_base_delay=get_env_float("AI_RETRY_BASE_DELAY", defaults.retry_base_delay, min_value=0.0),
            rate_limit_multiplier=get_env_float(
                "AI_RATE_LIMIT_MULTIPLIER", defaults.rate_limit_multiplier, min_value=2.0
            ),
            max_concurrency=min(
                get_env_int("AI_MAX_CONCURRENCY", defaults.max_concurrency, min_value=1),
                MAX_AI_CONCURRENCY,
            ),
            ai_confidence=min(
                get_env_float("AI_CONFIDENCE", defaults.ai_confidence, min_value=0.01),
                1.0,
            ),
        )


load_environment()
