"""
Base schemas shared by the payments API.

Response models accept snake_case names internally and emit camelCase aliases.
"""
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic_core import core_schema

from ..core.money import to_decimal


class StandardizedModel(BaseModel):  # type: ignore[misc]
    """Base model; populate by field name, serialize by alias"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class Money(Decimal):
    """Two-place major-unit amount, rendered as a JSON number (110.0, not "110.00")"""

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        def _coerce(value: Any) -> Decimal:
            if isinstance(value, bool):
                raise ValueError("Money cannot be a boolean")
            return to_decimal(value)

        return core_schema.no_info_after_validator_function(
            _coerce,
            core_schema.union_schema(
                [
                    core_schema.is_instance_schema(Decimal),
                    core_schema.int_schema(),
                    core_schema.float_schema(),
                    core_schema.str_schema(),
                ]
            ),
            serialization=core_schema.plain_serializer_function_ser_schema(
                float,
                info_arg=False,
                return_schema=core_schema.float_schema(),
            ),
        )
