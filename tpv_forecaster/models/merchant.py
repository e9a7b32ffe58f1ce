"""
Merchant registration record.

``MerchantAttributes`` is the row contract of the registration table that
upstream cleansing hands to the core: one record per merchant, immutable
within a pipeline run. The table itself travels as a ``pandas.DataFrame``;
this model is used to validate rows at the ingestion boundary.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from tpv_forecaster.taxonomy.states import normalize_state

REGISTRATION_COLUMNS: tuple[str, ...] = (
    "merchant_id",
    "size_tier",
    "category",
    "state",
    "document_type",
    "ticket_category",
    "estimated_volume",
)

VALID_DOCUMENT_TYPES = frozenset({"CPF", "CNPJ"})


class MerchantAttributes(BaseModel):
    """Static registration attributes of one merchant.

    Attributes:
        merchant_id: Unique merchant key.
        size_tier: Ordinal business size tier (0 = smallest).
        category: Merchant category / segment code.
        state: Two-letter state code, normalized through the state lookup.
        document_type: ``"CPF"`` (individual) or ``"CNPJ"`` (company).
        ticket_category: Average ticket-size bucket.
        estimated_volume: Volume estimate declared at registration.
    """

    model_config = ConfigDict(frozen=True)

    merchant_id: str
    size_tier: int
    category: str
    state: str
    document_type: str
    ticket_category: str
    estimated_volume: Optional[float] = None

    @field_validator("merchant_id", mode="before")
    @classmethod
    def coerce_merchant_id(cls, v: object) -> str:
        text = str(v).strip()
        if not text:
            raise ValueError("merchant_id must not be empty.")
        return text

    @field_validator("size_tier")
    @classmethod
    def validate_size_tier(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"size_tier must be >= 0, got {v}.")
        return v

    @field_validator("state", mode="before")
    @classmethod
    def normalize_state_value(cls, v: object) -> str:
        return normalize_state(v)

    @field_validator("document_type", mode="before")
    @classmethod
    def validate_document_type(cls, v: object) -> str:
        text = str(v).strip().upper()
        if text not in VALID_DOCUMENT_TYPES:
            raise ValueError(
                f"document_type must be one of {sorted(VALID_DOCUMENT_TYPES)}, got '{v}'."
            )
        return text

    @field_validator("estimated_volume")
    @classmethod
    def validate_estimated_volume(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError(f"estimated_volume must be non-negative, got {v}.")
        return v
