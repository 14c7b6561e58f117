from fastapi import APIRouter, Depends

from booking.auth.dependencies import get_current_principal
from booking.auth.principal import Principal

router = APIRouter()


@router.get("/me")
def me(principal: Principal = Depends(get_current_principal)):
    return {
        "id": principal.id,
        "roles": sorted(role.value for role in principal.roles),
        "is_admin": principal.is_admin,
    }
