"""当前用户上下文

认证由上游网关完成，本服务只读取网关注入的 X-User-Id / X-User-Role 头。
通过依赖注入获取当前用户，测试中可用 dependency_overrides 注入假会话。
"""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str = ROLE_BUYER

    @property
    def is_seller(self) -> bool:
        return self.role == ROLE_SELLER


def get_current_user(
    x_user_id: str = Header(None),
    x_user_role: str = Header(ROLE_BUYER),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="인증이 필요합니다.")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="인증이 필요합니다.")
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="인증이 필요합니다.")
    return CurrentUser(id=user_id, role=(x_user_role or ROLE_BUYER).lower())


def require_seller(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_seller:
        raise HTTPException(status_code=403, detail="판매자만 이용할 수 있습니다.")
    return user
