# backend/modules/reservations/schemas/reservation_schemas.py

"""
Pydantic schemas for the reservation lifecycle.
"""

from pydantic import BaseModel, Field, model_validator


class ReservationCreate(BaseModel):
    """Schema for creating a new reservation"""

    event_id: int
    adults: int = Field(1, ge=1, le=50, description="Includes the booking user")
    children: int = Field(0, ge=0, le=50)
    infants: int = Field(0, ge=0, le=50)

    @model_validator(mode="after")
    def validate_headcount(self):
        if self.adults + self.children + self.infants <= 0:
            raise ValueError("A reservation needs at least one person")
        return self


class ReservationRemainingSlots(BaseModel):
    """Open invite seats per category"""

    adults: int
    children: int
    infants: int
