"""Location endpoint: browser coordinates to a district."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.services.errors import (
    DistrictNotDetectedError,
    GeocodingError,
    InvalidCoordinatesError,
    OutOfRegionError,
)
from src.services.geocoding import ReverseGeocoder

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["geo"])


class DetectDistrictRequest(BaseModel):
    # Left untyped so malformed values reach the geocoder's validation
    # and come back as 400 rather than a schema error.
    latitude: Any = None
    longitude: Any = None


class DetectDistrictResponse(BaseModel):
    state: str
    district: str


def _get_geocoder(request: Request) -> ReverseGeocoder:
    geocoder = getattr(request.app.state, "geocoder", None)
    if geocoder is None:
        raise HTTPException(status_code=503, detail="Geocoder not initialised.")
    return geocoder


@router.post("/detect-district", response_model=DetectDistrictResponse)
async def detect_district(body: DetectDistrictRequest, request: Request) -> DetectDistrictResponse:
    geocoder = _get_geocoder(request)
    try:
        detection = await geocoder.detect_district(body.latitude, body.longitude)
    except InvalidCoordinatesError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OutOfRegionError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": str(exc), "detected_state": exc.detected_state},
        ) from exc
    except DistrictNotDetectedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except GeocodingError as exc:
        raise HTTPException(status_code=500, detail="Failed to detect location.") from exc

    return DetectDistrictResponse(state=detection.state, district=detection.district)
