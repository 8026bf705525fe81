import io
import json
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile as FormFile

from config.database import get_db
from config.settings import get_settings
from core.dependencies import PaginationParams, get_current_user, get_order_mailer, get_realtime_hub
from core.exceptions import BadRequestError
from models.user import User
from services.bulk_service import BulkOrderService
from services.order_rules import parse_products
from services.order_service import OrderService
from services.realtime import RealtimeHub
from utils.email_utils import OrderMailer
from utils.file_utils import FileManager

router = APIRouter()
settings = get_settings()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_order_service(
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub),
    mailer: OrderMailer = Depends(get_order_mailer)
) -> OrderService:
    return OrderService(db, hub, mailer)


def get_bulk_service(
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_realtime_hub)
) -> BulkOrderService:
    return BulkOrderService(db, hub)


async def read_order_payload(request: Request, file_field: str) -> Tuple[Dict[str, Any], Optional[str]]:
    """Accept a JSON body or a multipart form carrying an optional file.

    Returns the payload and the stored path of the uploaded file, if any.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        payload = {key: value for key, value in form.items() if not isinstance(value, FormFile)}
        upload = form.get(file_field)
        stored_path = None
        if isinstance(upload, FormFile) and upload.filename:
            stored = FileManager().save_upload(await upload.read(), upload.filename)
            stored_path = stored.path
        return payload, stored_path

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequestError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object")
    return payload, None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    """
    Create a sales order from JSON or a multipart form with an optional poFile
    """
    payload, po_file_path = await read_order_payload(request, "poFile")
    order = await service.create_order(payload, current_user, po_file_path=po_file_path)
    return {"success": True, "data": order}


@router.get("")
async def list_orders(
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return {"success": True, "data": service.list_orders(current_user)}


@router.get("/paginated")
async def list_orders_paginated(
    pagination: PaginationParams = Depends(),
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    result = service.list_orders_paginated(current_user, pagination.page, pagination.limit, pagination.search)
    return {"success": True, "data": result}


@router.get("/dashboard-counts")
async def dashboard_counts(
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return {"success": True, "data": service.dashboard_counts(current_user)}


@router.get("/export")
async def export_orders(
    current_user: User = Depends(get_current_user),
    service: BulkOrderService = Depends(get_bulk_service)
):
    """
    Download every visible order as an Excel workbook, one row per product
    """
    filename, content = service.export_orders(current_user)
    return StreamingResponse(
        io.BytesIO(content),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.post("/bulk", status_code=status.HTTP_201_CREATED)
async def bulk_upload_orders(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    service: BulkOrderService = Depends(get_bulk_service)
):
    """
    Import orders from an xlsx/xls/csv file; one invalid row rejects the file
    """
    orders = await service.import_orders(await file.read(), file.filename, current_user)
    return {"success": True, "message": "Orders uploaded successfully", "data": orders}


@router.get("/queues/{queue_name}")
async def workflow_queue(
    queue_name: str,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return {"success": True, "data": service.workflow_queue(queue_name, current_user)}


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return {"success": True, "data": service.get_order(order_id, current_user)}


@router.put("/{order_id}")
async def edit_order(
    order_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    """
    Edit an order; an optional installationFile is stored and linked
    """
    payload, installation_file = await read_order_payload(request, "installationFile")
    if isinstance(payload.get("products"), str):
        payload["products"] = parse_products(payload["products"])
    if installation_file:
        payload["installationFile"] = installation_file

    order = await service.edit_order(order_id, payload, current_user)
    return {"success": True, "data": order}


@router.delete("/{order_id}")
async def delete_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    deleted = await service.delete_order(order_id, current_user)
    return {"success": True, "message": "Order deleted successfully", "data": deleted}


@router.post("/{order_id}/installation-mail")
async def send_installation_mail(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    await service.send_installation_mail(order_id, current_user)
    return {"success": True, "message": "Installation email sent successfully"}
