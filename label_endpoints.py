from fastapi import APIRouter, Depends
import logging

from auth_dependencies import AuthContext, require_supabase_admin
from label_service import LabelService, get_label_service
from post_models import LabelRequest
from responses import raise_for_result

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", tags=["Labels"])
async def list_labels(label_service: LabelService = Depends(get_label_service)):
    result = await label_service.list_labels()
    raise_for_result(result)
    return {"items": result["data"]}


@router.post("/", status_code=201, tags=["Labels"])
async def create_label(
    payload: LabelRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    label_service: LabelService = Depends(get_label_service),
):
    result = await label_service.create_label(payload.name)
    raise_for_result(result)
    return result["data"]


@router.put("/{label_id}", tags=["Labels"])
async def update_label(
    label_id: str,
    payload: LabelRequest,
    auth: AuthContext = Depends(require_supabase_admin),
    label_service: LabelService = Depends(get_label_service),
):
    result = await label_service.update_label(label_id, payload.name)
    raise_for_result(result)
    return result["data"]


@router.delete("/{label_id}", tags=["Labels"])
async def delete_label(
    label_id: str,
    auth: AuthContext = Depends(require_supabase_admin),
    label_service: LabelService = Depends(get_label_service),
):
    result = await label_service.delete_label(label_id)
    raise_for_result(result)
    return {"deleted": True}
