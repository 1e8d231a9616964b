"""
Request models.

Create and update inputs are two separate shapes: create requires every
field, update makes every field optional and only the fields that were
actually sent (``model_dump(exclude_unset=True)``) get applied.
"""

from typing import Optional, Dict, Any

from pydantic import BaseModel, EmailStr, Field, field_validator


def _blank_to_none(value):
    # Multipart forms send "" to clear the class
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class PersonCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    email: EmailStr = Field(..., description="Unique email address")
    class_id: Optional[int] = Field(None, gt=0, description="Class the person belongs to")

    @field_validator("class_id", mode="before")
    @classmethod
    def normalize_class(cls, value):
        return _blank_to_none(value)


class PersonUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    class_id: Optional[int] = Field(None, gt=0)

    @field_validator("class_id", mode="before")
    @classmethod
    def normalize_class(cls, value):
        return _blank_to_none(value)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly present in the request. Only class_id may be cleared."""
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "class_id"
        }


class ClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Class name")


class ClassUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
