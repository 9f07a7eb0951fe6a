"""Value codecs: conversion between Python values and their on-disk text form."""

from __future__ import annotations

from typing import Any, Protocol

from localstate._codec.tagged import TaggedValue, TaggedValueCodec, ValueTag


class ValueCodec(Protocol):
    """Protocol for value encoding/decoding.

    ``encode`` must return a single line of text (no newline); ``decode``
    receives that text with surrounding whitespace stripped.
    """

    def encode(self, value: Any) -> str: ...

    def decode(self, text: str) -> Any: ...


__all__ = [
    "TaggedValue",
    "TaggedValueCodec",
    "ValueCodec",
    "ValueTag",
]
