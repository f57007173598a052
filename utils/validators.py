from typing import Any, Dict, List, Optional


class TextValidator:
    """Presence checks for request input. Nothing is rewritten or sanitized."""

    @staticmethod
    def is_present(value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, str):
            return bool(value.strip())
        return True

    @staticmethod
    def missing_fields(values: Dict[str, Any]) -> List[str]:
        return [name for name, value in values.items() if not TextValidator.is_present(value)]


def normalize_email(raw: Optional[str]) -> str:
    if raw is None:
        return ""
    return raw.strip()
