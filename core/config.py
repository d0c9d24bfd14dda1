import os
from dotenv import load_dotenv
from dataclasses import dataclass, field

load_dotenv()

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _resolve_db_path(raw_path: str) -> str:
    candidate = (raw_path or "").strip() or "./mathbridge.db"
    candidate = os.path.expanduser(candidate)
    if os.path.isabs(candidate):
        return os.path.abspath(candidate)
    return os.path.abspath(os.path.join(_PROJECT_ROOT, candidate))


def _split_csv(raw: str) -> tuple[str, ...]:
    items = [part.strip().lower() for part in (raw or "").split(",")]
    return tuple(item for item in items if item)


@dataclass(frozen=True)
class Config:
    # Deployment target: "embedded" (offline relational store) or "remote" (document store)
    store_backend: str = os.getenv("STORE_BACKEND", "embedded").strip().lower()
    db_path: str = _resolve_db_path(os.getenv("DB_PATH", "./mathbridge.db"))

    # Document database for the remote target
    firestore_database: str = os.getenv("FIRESTORE_DATABASE", "(default)").strip()

    # Identity provider (remote target)
    firebase_api_key: str = os.getenv("FIREBASE_API_KEY", "").strip()
    firebase_project_id: str = os.getenv("FIREBASE_PROJECT_ID", "").strip()
    firebase_service_account: str = os.getenv("FIREBASE_SERVICE_ACCOUNT", "").strip()
    identity_toolkit_url: str = os.getenv(
        "IDENTITY_TOOLKIT_URL", "https://identitytoolkit.googleapis.com/v1"
    ).strip().rstrip("/")

    # Access
    admin_emails: tuple[str, ...] = field(
        default_factory=lambda: _split_csv(os.getenv("ADMIN_EMAILS", "admin@example.com"))
    )
    placeholder_email_domains: tuple[str, ...] = field(
        default_factory=lambda: _split_csv(os.getenv("PLACEHOLDER_EMAIL_DOMAINS", "noemail.mathbridge.app"))
    )
    min_password_length: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

    # Read caps
    scores_page_size: int = int(os.getenv("SCORES_PAGE_SIZE", "50"))
    admin_scores_cap: int = int(os.getenv("ADMIN_SCORES_CAP", "100"))

    def is_admin_email(self, email: str | None) -> bool:
        return (email or "").strip().lower() in self.admin_emails

    def is_placeholder_email(self, email: str | None) -> bool:
        text = (email or "").strip().lower()
        if "@" not in text:
            return False
        _, _, domain = text.rpartition("@")
        return domain in self.placeholder_email_domains


# Global Instance
settings = Config()
