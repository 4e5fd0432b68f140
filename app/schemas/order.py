# app/schemas/order.py
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import List, Optional

from app.models.order import FulfillmentType, OrderStatus, PaymentStatus
from app.schemas.base import TimestampSchema


# ==================== 请求模型 ====================

class OrderItemRequest(BaseModel):
    """下单商品行（价格以服务端目录为准，客户端不传价格）"""
    product_id: int = Field(..., gt=0, description="商品ID", examples=[1])
    quantity: int = Field(..., gt=0, description="购买数量", examples=[2])
    product_option_id: Optional[int] = Field(None, gt=0, description="商品选项ID")


class CreateOrderRequest(BaseModel):
    """创建订单请求

    配送时 shipping_address 必填，自提时 pickup_store_id 必填，
    由 OrderService 校验并返回字段级错误。
    """
    items: List[OrderItemRequest] = Field(default_factory=list, description="下单商品")
    fulfillment_type: FulfillmentType = Field(..., description="delivery | pickup")
    shipping_address: Optional[str] = Field(None, description="配送地址")
    pickup_store_id: Optional[int] = Field(None, gt=0, description="自提门店ID")
    cart_item_ids: Optional[List[int]] = Field(
        None,
        description="结算来源的购物车条目，下单成功后从购物车移除；items 为空时由服务端据此读取购物车",
    )


class UpdateOrderStatusRequest(BaseModel):
    """卖家更新订单状态"""
    status: OrderStatus


# ==================== 响应模型 ====================

class OrderItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_option_id: Optional[int] = None
    store_id: int
    product_name: str = Field("", validation_alias=AliasChoices("product_name", "product_name_snapshot"))
    option_snapshot: str = ""
    quantity: int = Field(..., gt=0)
    price: int = Field(..., ge=0, validation_alias=AliasChoices("price", "unit_price"))


class OrderSchema(TimestampSchema):
    id: int
    user_id: int
    fulfillment_type: FulfillmentType
    shipping_address: Optional[str] = None
    pickup_store_id: Optional[int] = None
    subtotal: int = Field(..., ge=0)
    delivery_fee: int = Field(0, ge=0)
    total_amount: int = Field(..., ge=0)
    status: OrderStatus
    payment_status: PaymentStatus
    order_items: List[OrderItemSchema] = Field(
        default_factory=list,
        validation_alias=AliasChoices("order_items", "items"),
    )


class OrderResponse(BaseModel):
    message: str
    order: OrderSchema


class OrdersResponse(BaseModel):
    count: int = Field(..., ge=0)
    orders: List[OrderSchema]
