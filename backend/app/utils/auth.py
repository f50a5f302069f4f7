"""Email domain helpers for access control."""

from app.config import settings


def get_email_domain(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    return email.rsplit("@", 1)[-1].strip().lower() or None


def is_allowed_domain(email: str | None, allowed_domains: list[str] | None = None) -> bool:
    """True when ``email`` belongs to one of the allowed domains."""
    domain = get_email_domain(email)
    if not domain:
        return False
    allowed = allowed_domains if allowed_domains is not None else settings.allowed_email_domains
    return domain in {d.strip().lower() for d in allowed if d.strip()}
