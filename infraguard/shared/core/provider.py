from __future__ import annotations

from typing import Any


PROVIDER_AZURE = "Azure"
PROVIDER_AWS = "AWS"
PROVIDER_GCP = "GCP"
PROVIDER_KUBERNETES = "Kubernetes"

SUPPORTED_PROVIDERS: dict[str, str] = {
    "azure": PROVIDER_AZURE,
    "aws": PROVIDER_AWS,
    "gcp": PROVIDER_GCP,
    "kubernetes": PROVIDER_KUBERNETES,
}


def normalize_provider(value: Any) -> str:
    """
    Return the canonical display name for a provider tag.

    Known providers are matched case-insensitively ("azure" -> "Azure");
    any other non-empty tag is preserved as given, minus surrounding whitespace.
    """
    explicit_enum_value = getattr(value, "value", None)
    if isinstance(explicit_enum_value, str):
        value = explicit_enum_value
    normalized = str(value or "").strip()
    return SUPPORTED_PROVIDERS.get(normalized.lower(), normalized)
