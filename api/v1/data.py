"""
Energy data summary, gated by ``read:data``.

The figures come from per-equipment baselines; the real readings live in the
analytics service.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query

from api.gate import require_api_key
from errors import ValidationError
from schemas.models.credential import CredentialDoc
from services.tiers import SCOPE_READ_DATA
from shared.datetime_utils import parse_datetime, utcnow

router = APIRouter(prefix="/data", tags=["data"])

FLOORS = 7
SENSORS_PER_FLOOR = 5

# kWh per sensor per hour
BASELINES: dict[str, dict[str, float]] = {
    "HVAC": {"average": 850, "peak": 1200, "efficiency": 0.78},
    "Lighting": {"average": 120, "peak": 180, "efficiency": 0.85},
    "Power": {"average": 2400, "peak": 3200, "efficiency": 0.72},
    "Water": {"average": 45, "peak": 65, "efficiency": 0.82},
    "Security": {"average": 25, "peak": 35, "efficiency": 0.90},
}

EquipmentType = Literal["HVAC", "Lighting", "Power", "Water", "Security"]


def summarize(
    equipment_type: str, floor_number: Optional[int], start: datetime, end: datetime
) -> dict[str, Any]:
    base = BASELINES[equipment_type]
    hours = max(1, int((end - start).total_seconds() // 3600))
    floors = [floor_number] if floor_number else list(range(1, FLOORS + 1))

    breakdown = []
    for floor in floors:
        variation = 1 + (floor - 4) * 0.05
        average = round(base["average"] * variation, 2)
        breakdown.append(
            {
                "floor_number": floor,
                "sensor_count": SENSORS_PER_FLOOR,
                "average_consumption": average,
                "total_consumption": round(average * SENSORS_PER_FLOOR * hours, 2),
            }
        )

    return {
        "equipment_type": equipment_type,
        "total_sensors": SENSORS_PER_FLOOR * len(floors),
        "period": {"start": start.isoformat(), "end": end.isoformat(), "hours": hours},
        "metrics": {
            "total_consumption": round(sum(f["total_consumption"] for f in breakdown), 2),
            "average_consumption": base["average"],
            "peak_consumption": base["peak"],
            "efficiency_score": base["efficiency"],
        },
        "breakdown_by_floor": breakdown,
    }


@router.get("/summary")
async def data_summary(
    equipment_type: EquipmentType = Query(default="HVAC"),
    floor_number: Optional[int] = Query(default=None, ge=1, le=FLOORS),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    credential: CredentialDoc = Depends(require_api_key(SCOPE_READ_DATA)),
) -> dict[str, Any]:
    end = parse_datetime(end_date) if end_date else utcnow()
    start = parse_datetime(start_date) if start_date else None
    if end is not None and start_date is None:
        start = end - timedelta(hours=24)
    if start is None or end is None:
        raise ValidationError("start_date and end_date must be ISO 8601 datetimes")
    if start >= end:
        raise ValidationError("start_date must be before end_date", field="start_date")
    return {
        "success": True,
        "data": summarize(equipment_type, floor_number, start, end),
    }
