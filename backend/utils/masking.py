from typing import Any

SENSITIVE_KEYS = {
    "password",
    "hashed_password",
    "cpf",
    "holder_cpf",
    "cardnumber",
    "card_number",
    "cvv",
    "account",
    "agency",
    "pixkey",
    "pix_key",
}


def mask_value(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 4) + text[-2:]


def mask_sensitive_data(data: Any) -> Any:
    """Recursively mask sensitive keys in dicts and lists"""
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_KEYS and value is not None and not isinstance(value, (dict, list)):
                masked[key] = mask_value(value)
            else:
                masked[key] = mask_sensitive_data(value)
        return masked
    if isinstance(data, list):
        return [mask_sensitive_data(item) for item in data]
    return data
