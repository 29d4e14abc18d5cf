"""Request/response body codecs and decode strategies.

The dispatcher only relies on the :class:`BodyCodec` contract: turn a
payload into bytes, and turn a stream of byte chunks into a value of a
declared type. :class:`JsonBodyCodec` implements it with pydantic, so
payloads and response types may be pydantic models, dataclasses,
``TypedDict``s or plain containers.

How a 2xx body is turned into ``ApiResponse.data`` is chosen explicitly
by the caller through a decode strategy:

- :class:`RawText` returns the body decoded as text, unparsed.
- :class:`Decoded` parses JSON into the declared type. ``Decoded(str)``
  expects a JSON string literal, not arbitrary text.
"""

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, AsyncIterator, Generic, Optional, Protocol, TypeVar, Union

import httpx
from pydantic import BaseModel, TypeAdapter

T = TypeVar("T")

JSON_CONTENT_TYPE = "application/json"


class BodyCodec(Protocol):
    """Contract between the dispatcher and a body serializer."""

    content_type: str

    def serialize(self, payload: Any) -> bytes: ...

    async def deserialize(self, stream: AsyncIterator[bytes], response_type: Any) -> Any: ...


@lru_cache(maxsize=256)
def _adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


class JsonBodyCodec:
    """JSON codec backed by pydantic.

    Defaults match a compact web profile: ``None`` fields are omitted when
    writing, aliases are used, and reading is lenient (lax coercion).

    :param exclude_none: Omit ``None`` values when serializing
    :param by_alias: Serialize using field aliases
    :param strict: Use pydantic strict mode when validating responses
    """

    content_type = JSON_CONTENT_TYPE

    def __init__(self, exclude_none: bool = True, by_alias: bool = True, strict: bool = False):
        self.exclude_none = exclude_none
        self.by_alias = by_alias
        self.strict = strict

    def serialize(self, payload: Any) -> bytes:
        if isinstance(payload, BaseModel):
            return payload.model_dump_json(
                exclude_none=self.exclude_none, by_alias=self.by_alias
            ).encode("utf-8")
        return _adapter(type(payload)).dump_json(
            payload, exclude_none=self.exclude_none, by_alias=self.by_alias
        )

    async def deserialize(self, stream: AsyncIterator[bytes], response_type: Any = Any) -> Any:
        """Consume ``stream`` chunk by chunk and validate it as ``response_type``.

        Chunks are appended to a single buffer as they arrive; validation
        needs the complete document and runs once the stream is exhausted.
        An empty body yields ``None``.
        """
        buffer = bytearray()
        async for chunk in stream:
            buffer.extend(chunk)
        if not buffer.strip():
            return None
        return _adapter(response_type).validate_json(buffer, strict=self.strict)


class DecodeStrategy(ABC):
    """How a successful response body becomes envelope data."""

    @abstractmethod
    async def decode(self, response: httpx.Response, codec: BodyCodec) -> Any:
        """Decode the body of a streamed 2xx response."""


class RawText(DecodeStrategy):
    """Return the body as text without parsing it."""

    async def decode(self, response: httpx.Response, codec: BodyCodec) -> str:
        await response.aread()
        return response.text

    def __repr__(self) -> str:
        return "RawText()"


class Decoded(DecodeStrategy, Generic[T]):
    """Parse the body through the codec into ``response_type``."""

    def __init__(self, response_type: Any = Any):
        self.response_type = response_type

    async def decode(self, response: httpx.Response, codec: BodyCodec) -> Optional[T]:
        return await codec.deserialize(response.aiter_bytes(), self.response_type)

    def __repr__(self) -> str:
        return f"Decoded({self.response_type!r})"


def as_strategy(response_type: Union[DecodeStrategy, Any, None]) -> DecodeStrategy:
    """Normalize the ``response_type`` argument of client calls.

    ``None`` means untyped JSON, the :class:`RawText` class or an instance
    of any strategy is used as-is, anything else is a type to decode into.
    """
    if response_type is None:
        return Decoded(Any)
    if isinstance(response_type, DecodeStrategy):
        return response_type
    if isinstance(response_type, type) and issubclass(response_type, DecodeStrategy):
        return response_type()
    return Decoded(response_type)
