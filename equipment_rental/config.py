import os

from dotenv import load_dotenv

load_dotenv()


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def database_url() -> str:
    return _require_env("RENTAL_ENGINE_DB_URL")


DISCOUNT_APPROVAL_RATIO = _env_float("RENTAL_DISCOUNT_APPROVAL_RATIO", 0.10)
LATE_FEE_MULTIPLIER = _env_float("RENTAL_LATE_FEE_MULTIPLIER", 1.5)
AUTO_APPLY_LATE_FEE = _env_bool("RENTAL_AUTO_LATE_FEE", True)
EARLY_RETURN_DISCOUNT_PER_DAY = _env_float("RENTAL_EARLY_RETURN_DISCOUNT_PER_DAY", 0.10)
EARLY_RETURN_DISCOUNT_CAP = _env_float("RENTAL_EARLY_RETURN_DISCOUNT_CAP", 0.30)
RENTAL_NUMBER_PREFIX = (os.environ.get("RENTAL_NUMBER_PREFIX") or "RNT").strip().upper()
CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
