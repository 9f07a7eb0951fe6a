"""Tagged value codec.

Every stored value is wrapped in a :class:`TaggedValue` carrying an
explicit schema tag next to the JSON-encoded payload. The on-disk text
form is the URL-safe base64 of the wrapper's JSON, so it always fits on
one line.
"""

from __future__ import annotations

import base64
import binascii
import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from localstate.exceptions import LocalDecodeError, LocalEncodeError


class ValueTag(StrEnum):
    STR = "str"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    BYTES = "bytes"
    LIST = "list"
    DICT = "dict"


class TaggedValue(BaseModel):
    """Schema tag plus JSON payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tag: ValueTag
    data: str


def _tag_for(value: Any) -> ValueTag:
    # bool before int: bool is an int subclass.
    if isinstance(value, bool):
        return ValueTag.BOOL
    if isinstance(value, int):
        return ValueTag.INT
    if isinstance(value, float):
        return ValueTag.FLOAT
    if isinstance(value, str):
        return ValueTag.STR
    if isinstance(value, bytes):
        return ValueTag.BYTES
    if isinstance(value, list):
        return ValueTag.LIST
    if isinstance(value, dict):
        return ValueTag.DICT
    raise LocalEncodeError(f"unsupported value type: {type(value).__name__}")


def _check_nested(value: Any, where: str = "value") -> None:
    """Reject anything JSON would silently change on the way to disk.

    Dict keys must be ``str`` (JSON stringifies other keys) and containers
    must be ``list`` or ``dict`` (tuples come back as lists).
    """
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise LocalEncodeError(f"{where} has a non-str key {key!r}")
            _check_nested(item, f"{where}[{key!r}]")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_nested(item, f"{where}[{index}]")
    elif value is not None and not isinstance(value, (str, int, float)):
        raise LocalEncodeError(f"{where} has unsupported type {type(value).__name__}")


def _matches(tag: ValueTag, payload: Any) -> bool:
    if tag is ValueTag.BOOL:
        return isinstance(payload, bool)
    if tag is ValueTag.INT:
        return isinstance(payload, int) and not isinstance(payload, bool)
    if tag is ValueTag.FLOAT:
        return isinstance(payload, float)
    if tag in (ValueTag.STR, ValueTag.BYTES):
        return isinstance(payload, str)
    if tag is ValueTag.LIST:
        return isinstance(payload, list)
    return isinstance(payload, dict)


class TaggedValueCodec:
    """Default :class:`~localstate._codec.ValueCodec` implementation."""

    def to_tagged(self, value: Any) -> TaggedValue:
        if value is None:
            raise LocalEncodeError("None is the absent value and cannot be encoded")
        tag = _tag_for(value)
        payload: Any = value
        if tag is ValueTag.BYTES:
            payload = base64.b64encode(value).decode("ascii")
        elif tag in (ValueTag.LIST, ValueTag.DICT):
            _check_nested(value)
        try:
            data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise LocalEncodeError(f"value of type {tag} is not serializable: {exc}") from exc
        return TaggedValue(tag=tag, data=data)

    def from_tagged(self, tagged: TaggedValue) -> Any:
        try:
            payload = json.loads(tagged.data)
        except ValueError as exc:
            raise LocalDecodeError(f"invalid {tagged.tag} payload: {exc}") from exc
        if not _matches(tagged.tag, payload):
            raise LocalDecodeError(f"payload does not match tag {tagged.tag}: {type(payload).__name__}")
        if tagged.tag is ValueTag.BYTES:
            try:
                return base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise LocalDecodeError("invalid bytes payload") from exc
        return payload

    def encode(self, value: Any) -> str:
        tagged = self.to_tagged(value)
        return base64.urlsafe_b64encode(tagged.model_dump_json().encode("utf-8")).decode("ascii")

    def decode(self, text: str) -> Any:
        try:
            raw = base64.b64decode(text.strip(), altchars=b"-_", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise LocalDecodeError("value is not valid base64") from exc
        try:
            tagged = TaggedValue.model_validate_json(raw)
        except ValidationError as exc:
            raise LocalDecodeError(f"value is not a tagged payload: {exc.error_count()} error(s)") from exc
        return self.from_tagged(tagged)
