"""订单草稿构建器（纯计算，无副作用）

购物车选中条目 + 履约方式（配送 / 自提） -> OrderDraft。
校验失败时抛出带字段级错误表的 DraftValidationError 子类，不会产生部分提交。
服务端下单时复用同一套金额计算与自提门店解析。
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from app.core.config import settings
from app.core.exceptions import (
    DraftValidationError,
    EmptyCart,
    MissingShippingField,
    UnresolvedPickupStore,
)
from app.models.order import FulfillmentType
from app.utils.formatting import build_shipping_address, format_phone_number

DELIVERY_FEE = settings.DELIVERY_FEE

PHONE_PATTERN = re.compile(r"^01[0-9]-?[0-9]{3,4}-?[0-9]{4}$")
POSTAL_CODE_PATTERN = re.compile(r"^\d{5}$")

SHIPPING_MESSAGES = {
    "recipient": "수령인을 입력해주세요.",
    "phone": "연락처를 입력해주세요.",
    "phone_invalid": "010-1234-5678 형식으로 입력해주세요.",
    "postal_code": "우편번호를 입력해주세요.",
    "postal_code_invalid": "5자리 우편번호를 입력해주세요.",
    "address1": "도로명 주소를 입력해주세요.",
}


@dataclass(frozen=True)
class CartLineSelection:
    """购物车中被选中的一行（购物车服务提供，只读）"""
    product_id: int
    quantity: int
    unit_price: int
    option_id: Optional[int] = None
    option_surcharge: int = 0
    store_id: Optional[int] = None
    product_name: str = ""
    option_snapshot: str = ""
    cart_item_id: Optional[int] = None

    @property
    def effective_unit_price(self) -> int:
        return self.unit_price + self.option_surcharge

    @property
    def line_total(self) -> int:
        return self.effective_unit_price * self.quantity


@dataclass(frozen=True)
class Delivery:
    recipient: str
    phone: str
    postal_code: str
    address1: str
    address2: str = ""
    save_as_default: bool = False

    fulfillment_type = FulfillmentType.DELIVERY

    def address_text(self) -> str:
        """下单请求中的 shipping_address 字符串"""
        return " | ".join([
            self.recipient.strip(),
            format_phone_number(self.phone.strip()),
            build_shipping_address(self.postal_code.strip(), self.address1.strip(), self.address2.strip()),
        ])


@dataclass(frozen=True)
class Pickup:
    # None 表示由第一条商品所属门店推断
    store_id: Optional[int] = None

    fulfillment_type = FulfillmentType.PICKUP


FulfillmentChoice = Union[Delivery, Pickup]


@dataclass(frozen=True)
class OrderDraft:
    lines: Tuple[CartLineSelection, ...]
    fulfillment: FulfillmentChoice
    subtotal: int
    fee: int
    total: int

    @property
    def fulfillment_type(self) -> FulfillmentType:
        return self.fulfillment.fulfillment_type


# ==================== 金额计算 ====================

def fulfillment_fee(fulfillment_type) -> int:
    return DELIVERY_FEE if fulfillment_type == FulfillmentType.DELIVERY else 0


def compute_subtotal(lines: Iterable[CartLineSelection]) -> int:
    return sum(line.line_total for line in lines)


def compute_totals(lines: Sequence[CartLineSelection], fulfillment_type) -> Tuple[int, int, int]:
    """返回 (subtotal, fee, total)，total 不小于 0"""
    subtotal = compute_subtotal(lines)
    fee = fulfillment_fee(fulfillment_type)
    return subtotal, fee, max(subtotal + fee, 0)


# ==================== 校验 ====================

def validate_lines(lines: Sequence[CartLineSelection]) -> None:
    if not lines:
        raise EmptyCart(errors={"items": EmptyCart.default_message})

    errors: Dict[str, str] = {}
    for index, line in enumerate(lines):
        if line.quantity < 1:
            errors[f"items[{index}].quantity"] = "수량은 최소 1개 이상이어야 합니다"
        if line.unit_price < 0 or line.option_surcharge < 0:
            errors[f"items[{index}].unit_price"] = "가격이 올바르지 않습니다"
    if errors:
        raise DraftValidationError(errors=errors)


def validate_delivery(delivery: Delivery) -> Dict[str, str]:
    """返回字段级错误表，空表示通过"""
    errors: Dict[str, str] = {}

    if not delivery.recipient.strip():
        errors["recipient"] = SHIPPING_MESSAGES["recipient"]

    phone = delivery.phone.strip()
    if not phone:
        errors["phone"] = SHIPPING_MESSAGES["phone"]
    elif not PHONE_PATTERN.match(phone):
        errors["phone"] = SHIPPING_MESSAGES["phone_invalid"]

    postal_code = delivery.postal_code.strip()
    if not postal_code:
        errors["postal_code"] = SHIPPING_MESSAGES["postal_code"]
    elif not POSTAL_CODE_PATTERN.match(postal_code):
        errors["postal_code"] = SHIPPING_MESSAGES["postal_code_invalid"]

    if not delivery.address1.strip():
        errors["address1"] = SHIPPING_MESSAGES["address1"]

    return errors


def resolve_pickup_store(lines: Sequence[CartLineSelection], store_id: Optional[int]) -> int:
    """自提门店必须拥有至少一件所选商品；未指定时取第一件商品的门店"""
    owning_stores: List[int] = [line.store_id for line in lines if line.store_id is not None]

    if store_id is None:
        if not owning_stores:
            raise UnresolvedPickupStore(errors={"pickup_store_id": UnresolvedPickupStore.default_message})
        return owning_stores[0]

    if store_id not in owning_stores:
        raise UnresolvedPickupStore(
            "선택한 매장에서 픽업할 수 있는 상품이 없습니다.",
            errors={"pickup_store_id": f"매장 #{store_id}에서 픽업할 수 있는 상품이 없습니다."},
        )
    return store_id


# ==================== 构建 ====================

def build_order_draft(lines: Sequence[CartLineSelection], fulfillment: FulfillmentChoice) -> OrderDraft:
    validate_lines(lines)

    if isinstance(fulfillment, Delivery):
        errors = validate_delivery(fulfillment)
        if errors:
            raise MissingShippingField(
                f"배송지 정보를 확인해주세요: {', '.join(errors)}",
                errors=errors,
            )
    elif isinstance(fulfillment, Pickup):
        store_id = resolve_pickup_store(lines, fulfillment.store_id)
        fulfillment = Pickup(store_id=store_id)
    else:
        raise TypeError(f"unsupported fulfillment choice: {type(fulfillment).__name__}")

    subtotal, fee, total = compute_totals(lines, fulfillment.fulfillment_type)
    return OrderDraft(
        lines=tuple(lines),
        fulfillment=fulfillment,
        subtotal=subtotal,
        fee=fee,
        total=total,
    )


def to_create_order_payload(draft: OrderDraft) -> dict:
    """渲染为下单接口请求体"""
    items = []
    for line in draft.lines:
        item = {"product_id": line.product_id, "quantity": line.quantity}
        if line.option_id is not None:
            item["product_option_id"] = line.option_id
        items.append(item)

    payload = {
        "items": items,
        "fulfillment_type": draft.fulfillment_type.value,
    }
    if isinstance(draft.fulfillment, Delivery):
        payload["shipping_address"] = draft.fulfillment.address_text()
    else:
        payload["pickup_store_id"] = draft.fulfillment.store_id
    return payload
