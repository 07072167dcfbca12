"""
api/routes/v1/admin.py -- Administrative endpoints (admin role required).

Routes:
  GET    /api/v1/admin/blocked-addresses            -- list the block list
  DELETE /api/v1/admin/blocked-addresses/{address}  -- unblock an address; 404 if not blocked
  PATCH  /api/v1/admin/users/{id}                   -- change role
  DELETE /api/v1/admin/users/{id}                   -- soft-delete account, end its sessions
  POST   /api/v1/admin/users/{id}/restore           -- undo a soft delete
  DELETE /api/v1/admin/users/{id}/sessions          -- end every session of a user

Security:
  [M4] Role changes and deletes refuse to remove the last admin; admins
       cannot delete themselves.
  Every mutation is written to the target user's activity log with the
  acting admin's id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import BlockedAddressOut, RolePatch, UserOut, success_response
from auth.dependencies import get_request_context, require_admin
from auth.models import RequestContext, User
from auth.service import AuthService

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth


@router.get("/admin/blocked-addresses")
def list_blocked(request: Request, admin: User = Depends(require_admin)) -> JSONResponse:
    entries = _service(request).list_blocked()
    return success_response({"blocked": [BlockedAddressOut.from_blocked(e).model_dump() for e in entries]})


@router.delete("/admin/blocked-addresses/{address}")
def unblock_address(request: Request, address: str, admin: User = Depends(require_admin)) -> JSONResponse:
    _service(request).unblock_address(address, admin.id)
    return success_response(message="Address unblocked.")


@router.patch("/admin/users/{user_id}")
def change_role(
    request: Request,
    user_id: int,
    body: RolePatch,
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    user = _service(request).change_role(admin, user_id, body.role, context)
    return success_response({"user": UserOut.from_user(user).model_dump()}, message="Role updated.")


@router.delete("/admin/users/{user_id}")
def delete_user(
    request: Request,
    user_id: int,
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    _service(request).delete_account(admin, user_id, context)
    return success_response(message="User deleted.")


@router.post("/admin/users/{user_id}/restore")
def restore_user(
    request: Request,
    user_id: int,
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    user = _service(request).restore_account(admin, user_id, context)
    return success_response({"user": UserOut.from_user(user).model_dump()}, message="User restored.")


@router.delete("/admin/users/{user_id}/sessions")
def revoke_user_sessions(
    request: Request,
    user_id: int,
    admin: User = Depends(require_admin),
    context: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    count = _service(request).revoke_all_sessions(admin, user_id, context)
    return success_response({"revoked": count}, message="Sessions revoked.")
