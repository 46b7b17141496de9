from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """
    Base class for all booking API payload models.

    Fields are declared in snake_case and read from / written to the API's
    camelCase keys. Unknown keys in server responses are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict:
        """Serialize with API (camelCase) keys, dropping unset optional values."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
