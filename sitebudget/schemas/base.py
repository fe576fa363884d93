# sitebudget/schemas/base.py
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from sitebudget.errors import ValidationError

T = TypeVar("T", bound=BaseModel)


class Command(BaseModel):
    """Closed input record: unknown fields are rejected at the boundary."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class BaseDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @classmethod  # every DTO maps its domain object explicitly
    def from_orm_model(cls, orm_obj):
        raise NotImplementedError(
            f"{cls.__name__}.from_orm_model() must be implemented"
        )


def parse_command(model: Type[T], payload: Any) -> T:
    '''
    Validate a raw payload into a command, translating pydantic errors into
    ValidationError naming the first offending field.
    '''
    if payload is None:
        raise ValidationError("Request body is required")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid value for '{field}': {first.get('msg')}" if field else first.get("msg", "Invalid input"),
            field=field,
            errors=[
                {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
                for err in e.errors()
            ],
        )
