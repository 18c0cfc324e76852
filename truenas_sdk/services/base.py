"""Shared plumbing for resource services."""

from typing import Any, Generic, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.error import NotFound, RemoteError

RecordT = TypeVar("RecordT", bound=BaseModel)


class Caller(Protocol):
    """Anything that can issue a remote call once the session is ready."""

    async def call(self, method: str, params: Optional[List[Any]] = None, timeout: Optional[float] = None) -> Any:
        ...


class ResourceService(Generic[RecordT]):
    """Query helpers for one kind of appliance resource.

    Subclasses set ``namespace`` (the remote method prefix), ``record_type``
    and ``label`` (used in NotFound messages).
    """

    namespace: str = ""
    label: str = ""
    record_type: Type[RecordT]

    def __init__(self, caller: Caller) -> None:
        self._caller = caller

    def method(self, action: str) -> str:
        return f"{self.namespace}.{action}"

    async def query(self, *filters: List[Any]) -> List[RecordT]:
        """Run ``<namespace>.query`` with optional ``[field, op, value]`` filters.

        Raises:
            RemoteError: If the appliance errors or answers with something
                other than a list of records
        """
        method = self.method("query")
        params = [list(filters)] if filters else []
        rows = await self._caller.call(method, params)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise RemoteError(f"unexpected {method} result: expected a list, got {type(rows).__name__}", method=method)

        try:
            return [self.record_type.model_validate(row) for row in rows]
        except ValidationError as e:
            raise RemoteError(f"unexpected {method} row", method=method, cause=e) from e

    async def get_one(self, field: str, value: Any) -> RecordT:
        """Fetch the single record whose ``field`` equals ``value``.

        Raises:
            NotFound: If the filtered query returns no rows
        """
        rows = await self.query([field, "=", value])
        if not rows:
            raise NotFound(self.label, value)
        return rows[0]
