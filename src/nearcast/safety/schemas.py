"""Pydantic schemas for location and safety endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str | None = Field(None, max_length=512)


class SafetyAlertRequest(BaseModel):
    type: Literal["emergency", "warning", "info"] = "warning"
    title: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(None, max_length=2000)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    severity: Literal["low", "medium", "high"] = "medium"
    affected_area: int = Field(1000, ge=100, le=50_000)


class EmergencyRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    message: str | None = Field(None, max_length=500)


class AlertResponseRequest(BaseModel):
    response_type: Literal["confirm", "deny", "help_offered"]
    comment: str | None = Field(None, max_length=500)


class LocationUpdateResponse(BaseModel):
    nearby_users: int


class NearbyUsersResponse(BaseModel):
    users: list[dict[str, Any]]
    count: int
    radius: int


class SafetyAlertResponse(BaseModel):
    alert: dict[str, Any]
    affected_users: int
    summary: dict[str, Any]


class AlertResponseResult(BaseModel):
    response: dict[str, Any]
    summary: dict[str, Any]
