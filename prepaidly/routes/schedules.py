"""Amortization schedule routes."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List

from prepaidly.database import get_db
from prepaidly.schemas.schedule import ScheduleCreate, ScheduleResponse
from prepaidly.services import schedule_service

router = APIRouter(prefix="/api/schedules", tags=["schedules"])


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(request: ScheduleCreate, db: Session = Depends(get_db)):
    """Create a schedule together with all of its journal entries."""
    schedule = schedule_service.create_schedule(db, request)
    return ScheduleResponse.from_schedule(schedule)


@router.get("", response_model=List[ScheduleResponse])
async def list_schedules(tenant_id: str = Query(..., alias="tenantId"), db: Session = Depends(get_db)):
    schedules = schedule_service.get_schedules_by_tenant(db, tenant_id)
    return [ScheduleResponse.from_schedule(s) for s in schedules]


@router.get("/contacts", response_model=List[str])
async def list_contact_names(tenant_id: str = Query(..., alias="tenantId"), db: Session = Depends(get_db)):
    """Distinct contact names for autocomplete."""
    return schedule_service.get_distinct_contact_names(db, tenant_id)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: int, db: Session = Depends(get_db)):
    return ScheduleResponse.from_schedule(schedule_service.get_schedule(db, schedule_id))
