# carmarket/routes_geo.py
"""Server-side proxy to Google Maps web services so the API key never reaches the browser."""
import logging

import requests
from fastapi import APIRouter, HTTPException, Query

from .config import config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/geo", tags=["geo"])

MAPS_BASE = "https://maps.googleapis.com/maps/api"
# Pickup/dropoff addresses are local
DEFAULT_COUNTRY = "ma"
MIN_INPUT_CHARS = 3


def _maps_get(path: str, params: dict) -> dict:
    if not config.GOOGLE_MAPS_API_KEY:
        raise HTTPException(status_code=503, detail="Maps service is not configured")
    params = dict(params, key=config.GOOGLE_MAPS_API_KEY)
    try:
        r = requests.get(f"{MAPS_BASE}/{path}/json", params=params, timeout=10)
        r.raise_for_status()
        data = r.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("maps %s request failed: %s", path, e)
        raise HTTPException(status_code=502, detail="Maps service unavailable")

    status = data.get("status")
    if status not in ("OK", "ZERO_RESULTS"):
        logger.error("maps %s returned %s: %s", path, status, data.get("error_message"))
        raise HTTPException(status_code=502, detail="Maps service error")
    return data


@router.get("/autocomplete")
def autocomplete(input: str = Query(""), country: str = Query(DEFAULT_COUNTRY)):
    text = (input or "").strip()
    if len(text) < MIN_INPUT_CHARS:
        return {"predictions": []}

    data = _maps_get("place/autocomplete", {
        "input": text,
        "components": f"country:{country}",
        "language": "fr",
    })
    return {
        "predictions": [
            {
                "placeId": p.get("place_id"),
                "description": p.get("description"),
                "mainText": (p.get("structured_formatting") or {}).get("main_text"),
                "secondaryText": (p.get("structured_formatting") or {}).get("secondary_text"),
            }
            for p in data.get("predictions", [])
        ]
    }


@router.get("/place")
def place_details(placeId: str = Query(...)):
    data = _maps_get("place/details", {
        "place_id": placeId,
        "fields": "formatted_address,geometry,name",
    })
    result = data.get("result") or {}
    location = (result.get("geometry") or {}).get("location") or {}
    return {
        "placeId": placeId,
        "name": result.get("name"),
        "address": result.get("formatted_address"),
        "lat": location.get("lat"),
        "lng": location.get("lng"),
    }


@router.get("/directions")
def directions(origin: str = Query(...), destination: str = Query(...)):
    data = _maps_get("directions", {"origin": origin, "destination": destination, "mode": "driving"})
    routes = data.get("routes") or []
    if not routes:
        return {"found": False}

    leg = (routes[0].get("legs") or [{}])[0]
    return {
        "found": True,
        "distance": (leg.get("distance") or {}).get("text"),
        "distanceMeters": (leg.get("distance") or {}).get("value"),
        "duration": (leg.get("duration") or {}).get("text"),
        "durationSeconds": (leg.get("duration") or {}).get("value"),
        "startAddress": leg.get("start_address"),
        "endAddress": leg.get("end_address"),
        "polyline": (routes[0].get("overview_polyline") or {}).get("points"),
    }
