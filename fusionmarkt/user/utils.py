from email_validator import EmailNotValidError, validate_email


def normalize_email_address(email: str) -> str:
    """Syntax-checked, lowercased address used as the account key. Raises ValueError."""
    try:
        checked = validate_email((email or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"invalid email address: {e}") from e
    return checked.normalized.lower()
