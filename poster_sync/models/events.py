from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

ChangeAction = Literal["created", "updated"]


@dataclass(frozen=True)
class TransactionChange:
    transaction_id: int
    action: ChangeAction
    customer_id: int | None
    processing_status: int
    status: int
    service_mode: int | None
    date_start: str | None
    date_created: str
    date_close: str | None = None
    payed_sum: int = 0
    income_amount: int = 0
    user_id: int | None = None
    is_accepted: bool = False
    old_processing_status: int | None = None
    old_status: int | None = None
    old_date_close: str | None = None
    old_user_id: int | None = None
    old_is_accepted: bool = False
    product_ids: tuple[int, ...] = field(default_factory=tuple)


class BaseLifecycleEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer_id: int
    transaction_id: int


class FirstTimeCustomerData(BaseModel):
    payed_sum: int
    transaction_date: str


class FirstTimeCustomerEvent(BaseLifecycleEvent):
    type: Literal["first_time_customer"] = "first_time_customer"
    data: FirstTimeCustomerData


class RevivalData(BaseModel):
    days_since_last_order: int
    last_transaction_date: str
    transaction_date: str


class RevivalEvent(BaseLifecycleEvent):
    type: Literal["revival"] = "revival"
    data: RevivalData


class MilestoneOrderData(BaseModel):
    order_count: int


class MilestoneOrderEvent(BaseLifecycleEvent):
    type: Literal["milestone_order"] = "milestone_order"
    data: MilestoneOrderData


class ProductDiscoveryData(BaseModel):
    discovered_product_ids: list[int]


class ProductDiscoveryEvent(BaseLifecycleEvent):
    type: Literal["product_discovery"] = "product_discovery"
    data: ProductDiscoveryData


class PaymentCompletionData(BaseModel):
    date_close: str
    payed_sum: int


class PaymentCompletionEvent(BaseLifecycleEvent):
    type: Literal["payment_completion"] = "payment_completion"
    data: PaymentCompletionData


class WaiterChangeData(BaseModel):
    current_waiter_id: int
    previous_waiter_id: int | None


class WaiterChangeEvent(BaseLifecycleEvent):
    type: Literal["waiter_change"] = "waiter_change"
    data: WaiterChangeData


CustomerLifecycleEvent = Annotated[
    Union[
        FirstTimeCustomerEvent,
        RevivalEvent,
        MilestoneOrderEvent,
        ProductDiscoveryEvent,
        PaymentCompletionEvent,
        WaiterChangeEvent,
    ],
    Field(discriminator="type"),
]

lifecycle_event_adapter: TypeAdapter[CustomerLifecycleEvent] = TypeAdapter(
    CustomerLifecycleEvent
)


class PushMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


OrderEventType = Literal[
    "order:created",
    "order:accepted",
    "order:ready",
    "order:delivered",
    "order:closed",
    "order:declined",
]
ServiceModeName = Literal["dine_in", "takeaway", "delivery", "unknown"]


class OrderEvent(BaseModel):
    """Analytics record for one step of an order, keyed by customer."""

    model_config = ConfigDict(frozen=True)

    type: OrderEventType
    customer_id: int
    transaction_id: int
    service_mode: ServiceModeName = "unknown"
    payed_sum: int = 0
    income_amount: int = 0
    # Only set on order:closed.
    currency: str | None = None
    order_count: int | None = None
