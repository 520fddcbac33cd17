from fastapi import APIRouter, Request, Query, Body
from typing import Optional, Dict, Any
from noteclub.http_api.users import (
    login_handler,
    register_handler,
    get_user_handler,
    update_user_handler,
    admin_list_users_handler,
    admin_toggle_active_handler,
    admin_reset_password_handler,
    LoginRequest,
    RegisterRequest
)
from noteclub.http_api.groups import (
    get_groups_handler,
    create_group_handler,
    get_group_handler,
    update_group_handler,
    delete_group_handler,
    join_group_handler,
    leave_group_handler,
    remove_member_handler,
    admin_update_group_handler,
)
from noteclub.http_api.turns import (
    get_turn_status_handler,
    admin_advance_turn_handler,
    admin_set_turn_handler,
    admin_turn_state_handler,
    admin_list_groups_handler,
)
from noteclub.http_api.albums import (
    get_albums_handler,
    get_random_album_handler,
    get_album_handler,
    create_album_handler,
    update_album_handler,
    delete_album_handler,
    toggle_like_handler,
)
from noteclub.http_api.comments import (
    get_comments_handler,
    create_comment_handler,
    update_comment_handler,
    delete_comment_handler,
)
from noteclub.http_api.themes import get_themes_handler, create_theme_handler
from noteclub.http_api.notifications import get_notifications_handler, update_notifications_handler

router = APIRouter()

# Health check endpoint
@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": "1.0"}

# Authentication endpoints
@router.post("/auth/login")
async def login(request: Request, login_data: LoginRequest):
    """User login with email and password"""
    return await login_handler(request, login_data)

@router.post("/auth/register", status_code=201)
async def register(request: Request, register_data: RegisterRequest):
    """User registration"""
    return await register_handler(request, register_data)

# User endpoints
@router.get("/users/{user_id}")
async def get_user(request: Request, user_id: str, token: str = Query(...), album_limit: int = Query(10)):
    """Profile with recent albums"""
    return await get_user_handler(request, user_id, token, album_limit)

@router.put("/users/{user_id}")
async def update_user(request: Request, user_id: str, update_data: Dict[str, Any] = Body(...)):
    """Edit own profile"""
    return await update_user_handler(request, user_id, update_data)

# Group endpoints
@router.get("/groups")
async def get_groups(request: Request, token: str = Query(...), user_id: str = Query(...)):
    """Groups the member belongs to"""
    return await get_groups_handler(request, token, user_id)

@router.post("/groups", status_code=201)
async def create_group(request: Request, group_data: Dict[str, Any] = Body(...)):
    return await create_group_handler(request, group_data)

@router.post("/groups/join")
async def join_group(request: Request, join_data: Dict[str, Any] = Body(...)):
    """Join a group by invite code"""
    return await join_group_handler(request, join_data)

@router.get("/groups/{group_id}")
async def get_group(request: Request, group_id: str, token: str = Query(...), user_id: str = Query(...)):
    return await get_group_handler(request, group_id, token, user_id)

@router.put("/groups/{group_id}")
async def update_group(request: Request, group_id: str, update_data: Dict[str, Any] = Body(...)):
    return await update_group_handler(request, group_id, update_data)

@router.delete("/groups/{group_id}")
async def delete_group(request: Request, group_id: str, token: str = Query(...), user_id: str = Query(...)):
    return await delete_group_handler(request, group_id, token, user_id)

@router.post("/groups/{group_id}/leave")
async def leave_group(request: Request, group_id: str, leave_data: Dict[str, Any] = Body(...)):
    return await leave_group_handler(request, group_id, leave_data)

@router.delete("/groups/{group_id}/members/{member_id}")
async def remove_member(request: Request, group_id: str, member_id: str,
                        token: str = Query(...), user_id: str = Query(...)):
    """Group admin removes a member"""
    return await remove_member_handler(request, group_id, member_id, token, user_id)

# Turn status
@router.get("/turn-status")
async def get_turn_status(request: Request, token: str = Query(...), user_id: str = Query(...),
                          group_id: Optional[str] = Query(None)):
    """Whose turn it is in the member's group"""
    return await get_turn_status_handler(request, token, user_id, group_id)

# Album endpoints
@router.get("/albums")
async def get_albums(
    request: Request,
    token: str = Query(...),
    page: int = Query(1),
    limit: int = Query(10),
    group: Optional[str] = Query(None),
    theme: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort: str = Query("newest"),
):
    """Paginated album feed"""
    return await get_albums_handler(request, token, page, limit, group, theme, search, sort)

@router.get("/albums/random")
async def get_random_album(request: Request, token: str = Query(...), group: Optional[str] = Query(None)):
    return await get_random_album_handler(request, token, group)

@router.get("/albums/{album_id}")
async def get_album(request: Request, album_id: str, token: str = Query(...)):
    return await get_album_handler(request, album_id, token)

@router.post("/albums", status_code=201)
async def create_album(request: Request, album_data: Dict[str, Any] = Body(...)):
    """Post an album in turn"""
    return await create_album_handler(request, album_data)

@router.put("/albums/{album_id}")
async def update_album(request: Request, album_id: str, update_data: Dict[str, Any] = Body(...)):
    return await update_album_handler(request, album_id, update_data)

@router.delete("/albums/{album_id}")
async def delete_album(request: Request, album_id: str, token: str = Query(...), user_id: str = Query(...)):
    return await delete_album_handler(request, album_id, token, user_id)

@router.post("/albums/{album_id}/like")
async def toggle_like(request: Request, album_id: str, like_data: Dict[str, Any] = Body(...)):
    """Like or unlike an album"""
    return await toggle_like_handler(request, album_id, like_data)

# Comment endpoints
@router.get("/albums/{album_id}/comments")
async def get_comments(request: Request, album_id: str, token: str = Query(...)):
    return await get_comments_handler(request, album_id, token)

@router.post("/albums/{album_id}/comments", status_code=201)
async def create_comment(request: Request, album_id: str, comment_data: Dict[str, Any] = Body(...)):
    return await create_comment_handler(request, album_id, comment_data)

@router.put("/comments/{comment_id}")
async def update_comment(request: Request, comment_id: str, update_data: Dict[str, Any] = Body(...)):
    return await update_comment_handler(request, comment_id, update_data)

@router.delete("/comments/{comment_id}")
async def delete_comment(request: Request, comment_id: str, token: str = Query(...), user_id: str = Query(...)):
    """Delete a comment and its replies"""
    return await delete_comment_handler(request, comment_id, token, user_id)

# Theme endpoints
@router.get("/themes")
async def get_themes(request: Request, token: str = Query(...), status: Optional[str] = Query(None),
                     page: int = Query(1), limit: int = Query(10)):
    return await get_themes_handler(request, token, status, page, limit)

@router.post("/themes", status_code=201)
async def create_theme(request: Request, theme_data: Dict[str, Any] = Body(...)):
    return await create_theme_handler(request, theme_data)

# Notification endpoints
@router.get("/notifications")
async def get_notifications(request: Request, token: str = Query(...), user_id: str = Query(...),
                            limit: int = Query(50), unread_only: bool = Query(False)):
    return await get_notifications_handler(request, token, user_id, limit, unread_only)

@router.patch("/notifications")
async def update_notifications(request: Request, update_data: Dict[str, Any] = Body(...)):
    """Mark notifications read"""
    return await update_notifications_handler(request, update_data)

# Admin endpoints
@router.get("/admin/users")
async def admin_list_users(request: Request, token: str = Query(...), user_id: str = Query(...)):
    return await admin_list_users_handler(request, token, user_id)

@router.post("/admin/users/toggle-active")
async def admin_toggle_active(request: Request, toggle_data: Dict[str, Any] = Body(...)):
    """Activate or deactivate a member"""
    return await admin_toggle_active_handler(request, toggle_data)

@router.post("/admin/users/reset-password")
async def admin_reset_password(request: Request, reset_data: Dict[str, Any] = Body(...)):
    """Set a new password for a member"""
    return await admin_reset_password_handler(request, reset_data)

@router.get("/admin/groups")
async def admin_list_groups(request: Request, token: str = Query(...), user_id: str = Query(...)):
    return await admin_list_groups_handler(request, token, user_id)

@router.patch("/admin/groups/{group_id}")
async def admin_update_group(request: Request, group_id: str, update_data: Dict[str, Any] = Body(...)):
    """Edit a group, optionally replacing its members and turn order"""
    return await admin_update_group_handler(request, group_id, update_data)

@router.post("/admin/turn/advance")
async def admin_advance_turn(request: Request, turn_data: Dict[str, Any] = Body(...)):
    return await admin_advance_turn_handler(request, turn_data)

@router.post("/admin/turn/set")
async def admin_set_turn(request: Request, turn_data: Dict[str, Any] = Body(...)):
    """Set who posted last"""
    return await admin_set_turn_handler(request, turn_data)

@router.get("/admin/turn/state")
async def admin_turn_state(request: Request, token: str = Query(...), user_id: str = Query(...),
                           group_id: Optional[str] = Query(None)):
    """Raw rotation state"""
    return await admin_turn_state_handler(request, token, user_id, group_id)
