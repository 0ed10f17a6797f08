from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator

from poster_sync.sync.normalize import to_id


class PosterPayload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class RawModification(PosterPayload):
    """Legacy modifier reference: ``m`` is the modifier id, ``a`` the amount."""

    m: str | None = None
    a: str | None = None
    modification_name: str | None = None


class RawNamedModifier(PosterPayload):
    group: str | None = None
    name: str | None = None


class RawProductLine(PosterPayload):
    product_id: str | None = None
    category_id: str | None = None
    product_name: str | None = None
    num: str | None = None
    product_sum: str | None = None
    modifiers: list[RawNamedModifier] | None = None
    modification: list[RawModification] | None = None


class RawHistoryEntry(PosterPayload):
    type_history: str | None = None
    value: str | None = None


class RawTransaction(PosterPayload):
    transaction_id: str
    client_id: str | None = None
    spot_id: str | None = None
    table_id: str | None = None
    user_id: str | None = None
    status: str | None = None
    processing_status: str | None = None
    service_mode: str | None = None
    pay_type: str | None = None
    type: str | None = None
    reason: str | None = None

    date_start: str | None = None
    date_create: str | None = None
    date_close: str | None = None

    payed_sum: str | None = None
    payed_cash: str | None = None
    payed_card: str | None = None
    payed_cert: str | None = None
    payed_bonus: str | None = None
    payed_third_party: str | None = None
    round_sum: str | None = None
    tip_sum: str | None = None
    sum: str | None = None
    discount: str | None = None

    transaction_comment: str | None = None
    comment: str | None = None

    products: list[RawProductLine] | None = None
    history: list[RawHistoryEntry] | None = None

    @field_validator("transaction_id")
    @classmethod
    def _positive_id(cls, value: str) -> str:
        if to_id(value) is None:
            raise ValueError(f"transaction_id must be a positive integer, got {value!r}")
        return value.strip()

    @property
    def id(self) -> int:
        return int(self.transaction_id)

    @property
    def is_accepted(self) -> bool:
        # Accepting an order in Poster adds a changeorderstatus history entry with value 1.
        return any(
            h.type_history == "changeorderstatus" and h.value == "1"
            for h in self.history or []
        )
