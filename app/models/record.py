from typing import Any, ClassVar, Dict
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    """
    Base for the records kept in the roster store.

    Each record type is tagged with the collection it lives in and is
    validated against its schema whenever it is read back, so a malformed
    document fails loudly instead of being half-loaded.
    Field names are camelCase on disk and snake_case in Python.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    collection: ClassVar[str]

    @classmethod
    def path_for(cls, doc_id: str) -> str:
        return f"{cls.collection}/{doc_id}"

    @property
    def path(self) -> str:
        return self.path_for(self.id)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]):
        return cls.model_validate(data)
