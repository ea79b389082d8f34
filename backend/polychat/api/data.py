"""
Data API endpoints - export, import and reset of all stored chat data.
"""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from polychat.core.database import get_db
from polychat.core.exceptions import DataError
from polychat.core.logging import get_logger
from polychat.services.storage import ConversationStore

logger = get_logger(__name__)
router = APIRouter()


@router.get("/export")
async def export_data(db: AsyncSession = Depends(get_db)):
    """
    Export every conversation, message and saved setting.
    """
    return await ConversationStore(db).export_data()


@router.post("/import")
async def import_data(
    payload: dict[str, Any],
    db: AsyncSession = Depends(get_db),
):
    """
    Import a payload produced by /export. Ids are preserved.
    """
    store = ConversationStore(db)
    try:
        counts = await store.import_data(payload)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DataError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Import completed", "imported": counts}


@router.delete("")
async def clear_all(db: AsyncSession = Depends(get_db)):
    """
    Remove all conversations, messages and settings.
    """
    await ConversationStore(db).clear_all()
    logger.warning("All data cleared via API")
    return {"message": "All data cleared"}
