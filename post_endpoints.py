from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Optional
import logging

from auth_dependencies import AuthContext, optional_user, require_admin_or_user, require_admin_token
from image_tracking_service import get_image_tracking_service
from post_models import CreatePostRequest, UpdatePostRequest
from post_service import PostService, get_post_service
from responses import raise_for_result, single_body

logger = logging.getLogger(__name__)
router = APIRouter()


def _schedule_image_sync(background_tasks: BackgroundTasks, result: dict) -> None:
    if result.get("sync"):
        post_id, content_rich, cover_image_url = result["sync"]
        background_tasks.add_task(
            get_image_tracking_service().sync_post_images_safely,
            post_id,
            content_rich,
            cover_image_url,
        )


@router.get("/", tags=["Posts"])
async def list_posts(
    page: int = Query(1),
    limit: int = Query(20),
    label: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    post_service: PostService = Depends(get_post_service),
):
    """
    Published posts, newest first.
    Filter by label slug or search title and text.
    """
    result = await post_service.list_public_posts(page=page, limit=limit, label=label, search=search)
    raise_for_result(result)
    return result["data"]


@router.get("/admin", tags=["Posts"])
async def list_admin_posts(
    page: int = Query(1),
    limit: int = Query(20),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_admin_token),
    post_service: PostService = Depends(get_post_service),
):
    """
    All posts regardless of status.
    """
    result = await post_service.list_admin_posts(page=page, limit=limit, status=status, search=search)
    raise_for_result(result)
    return result["data"]


@router.get("/{id_or_slug}", tags=["Posts"])
async def get_post(
    id_or_slug: str,
    auth: Optional[AuthContext] = Depends(optional_user),
    post_service: PostService = Depends(get_post_service),
):
    result = await post_service.get_post(id_or_slug, auth)
    raise_for_result(result)
    return single_body("post", result["data"])


@router.post("/", status_code=201, tags=["Posts"])
async def create_post(
    payload: CreatePostRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_admin_or_user),
    post_service: PostService = Depends(get_post_service),
):
    result = await post_service.create_post(payload.model_dump(), auth)
    raise_for_result(result)
    _schedule_image_sync(background_tasks, result)
    return single_body("post", result["data"])


@router.put("/{post_id}", tags=["Posts"])
async def update_post(
    post_id: str,
    payload: UpdatePostRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_admin_or_user),
    post_service: PostService = Depends(get_post_service),
):
    result = await post_service.update_post(post_id, payload.model_dump(exclude_unset=True), auth)
    raise_for_result(result)
    _schedule_image_sync(background_tasks, result)
    return single_body("post", result["data"])


@router.delete("/{post_id}", tags=["Posts"])
async def delete_post(
    post_id: str,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_admin_or_user),
    post_service: PostService = Depends(get_post_service),
):
    result = await post_service.delete_post(post_id, auth)
    raise_for_result(result)
    background_tasks.add_task(get_image_tracking_service().remove_post_images_safely, post_id)
    return {"deleted": True}
