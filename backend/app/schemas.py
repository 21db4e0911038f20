from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ReportRequestBody(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    type: str = "unknown"
    description: str = ""
    people_affected: int = Field(1, alias="peopleAffected", ge=1)
    injury_level: str = Field("unknown", alias="injuryLevel")
    accessibility: str = "unknown"


class RegisterResponderBody(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    name: str = Field(..., min_length=1)
    max_distance: float = Field(10.0, alias="maxDistance", gt=0)
    device_token: Optional[str] = Field(None, alias="deviceToken")
    expertise: List[str] = Field(default_factory=list)


class LocationUpdateBody(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AvailabilityBody(BaseModel):
    available: bool


class CompleteBody(BaseModel):
    notes: str = ""
    victim_safety_status: str = Field("safe", alias="victimSafetyStatus")


class StrategyBody(BaseModel):
    request_ids: List[str] = Field(..., alias="requestIds", min_length=1)
    available_volunteer_ids: List[str] = Field(default_factory=list, alias="availableVolunteerIds")


class MatchBody(BaseModel):
    request_id: str = Field(..., alias="requestId", min_length=1)
    volunteer_id: str = Field(..., alias="volunteerId", min_length=1)


class RouteBody(BaseModel):
    origin: Location
    destination_ids: List[str] = Field(..., alias="destinationIds", min_length=1)
    round_trip: bool = Field(False, alias="roundTrip")


class EtaBody(BaseModel):
    origin: Location
    destination: Location
