from fastapi import APIRouter, Depends

from db.database import get_db
from utils.maintenance import reconcile_duplicates

router = APIRouter()


@router.post("/reconcile")
async def reconcile(conn=Depends(get_db)):
    """Merge duplicate coverage records and retire duplicate pending review items."""
    return reconcile_duplicates(conn)
