from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status

from leadportal.core.auth import Principal, Role, get_principal

INSUFFICIENT_PERMISSION = "Insufficient Permission. Please contact Admin."


def require_role(role: Role) -> Callable[[Principal], Awaitable[Principal]]:
    async def checker(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_role(role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=INSUFFICIENT_PERMISSION)
        return principal

    return checker


admin_auth = require_role(Role.ADMIN)
sales_auth = require_role(Role.SALES_REP)
