"""金额、电话、地址的展示格式化"""

import re

_NON_DIGIT = re.compile(r"\D")


def format_won(amount) -> str:
    """韩元金额：千分位 + ₩ 前缀，非法输入按 0 处理

    >>> format_won(1000000)
    '₩1,000,000'
    """
    try:
        value = int(amount)
    except (TypeError, ValueError):
        return "₩0"
    return f"₩{value:,}"


def format_phone_number(phone: str) -> str:
    """01012345678 / 010-1234-5678 统一为 010-1234-5678"""
    digits = _NON_DIGIT.sub("", phone or "")
    if len(digits) == 11:
        return f"{digits[:3]}-{digits[3:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    return phone


def build_shipping_address(postal_code: str, address1: str, address2: str = "") -> str:
    """(12345) 서울시 강남구 101동 101호"""
    return f"({postal_code}) {address1} {address2 or ''}".strip()
