from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import RequestContext, get_db, require_admin, require_staff
from app.core.exceptions import ResourceNotFoundError
from app.schemas.structure import TimetableStructureOut, TimetableStructureUpsert
from app.services.assignments import upsert_structure
from app.services.weekly_layers import active_structure

router = APIRouter()


@router.get("/timetable-structure", response_model=TimetableStructureOut)
def get_timetable_structure(
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> TimetableStructureOut:
    structure = active_structure(db, context.school_id)
    if structure is None:
        raise ResourceNotFoundError("TimetableStructure", context.school_id)
    return structure


@router.put("/timetable-structure", response_model=TimetableStructureOut)
def put_timetable_structure(
    payload: TimetableStructureUpsert,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TimetableStructureOut:
    return upsert_structure(db, school_id=context.school_id, payload=payload, actor_id=context.user_id)
