from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import RequestContext, get_db, require_admin, require_staff
from app.schemas.assignment import (
    BulkAssignTeacherRequest,
    BulkAssignTeacherResult,
    ClassSubjectAssignmentCreate,
    ClassSubjectAssignmentOut,
    ClassSubjectAssignmentUpdate,
)
from app.services.assignments import (
    bulk_assign_teacher,
    create_assignment,
    delete_assignment,
    list_assignments,
    update_assignment,
)

router = APIRouter()


@router.get("/classes/{class_id}/subject-assignments", response_model=list[ClassSubjectAssignmentOut])
def get_class_assignments(
    class_id: str,
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[ClassSubjectAssignmentOut]:
    return list_assignments(db, class_id=class_id, school_id=context.school_id)


@router.post(
    "/classes/{class_id}/subject-assignments",
    response_model=ClassSubjectAssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
def post_class_assignment(
    class_id: str,
    payload: ClassSubjectAssignmentCreate,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ClassSubjectAssignmentOut:
    return create_assignment(
        db,
        class_id=class_id,
        school_id=context.school_id,
        payload=payload,
        actor_id=context.user_id,
    )


@router.post("/subject-assignments/bulk-assign", response_model=BulkAssignTeacherResult)
def post_bulk_assign(
    payload: BulkAssignTeacherRequest,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BulkAssignTeacherResult:
    return bulk_assign_teacher(
        db,
        teacher_id=payload.teacher_id,
        assignment_ids=payload.assignment_ids,
        school_id=context.school_id,
        actor_id=context.user_id,
    )


@router.patch("/subject-assignments/{assignment_id}", response_model=ClassSubjectAssignmentOut)
def patch_assignment(
    assignment_id: str,
    payload: ClassSubjectAssignmentUpdate,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ClassSubjectAssignmentOut:
    return update_assignment(
        db,
        assignment_id=assignment_id,
        school_id=context.school_id,
        payload=payload,
        actor_id=context.user_id,
    )


@router.delete("/subject-assignments/{assignment_id}")
def remove_assignment(
    assignment_id: str,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    removed = delete_assignment(db, assignment_id=assignment_id, school_id=context.school_id, actor_id=context.user_id)
    return {"success": True, "baseline_entries_removed": removed}
