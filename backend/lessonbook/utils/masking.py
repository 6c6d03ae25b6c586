"""Helpers for keeping personal data out of log lines."""


def mask_email(email: str) -> str:
    """
    Mask an email address for logging.

    Examples:
        >>> mask_email("asmith@example.com")
        'a***@example.com'
        >>> mask_email("invalid")
        '***'
    """
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    masked_local = local[0] + "***" if local else "***"
    return f"{masked_local}@{domain}"
