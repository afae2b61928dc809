# Copyright (c) 2025 Stephen Clau
#
# This file is part of File Source Agent.
#
# File Source Agent is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Record decoders.

A decoder turns one raw record (delimiter already stripped) into a value
for subscribers. Decoders may fail per record by raising DecodeError.
"""

from __future__ import annotations

import importlib
import json
from typing import Any, Callable, Protocol, Union, runtime_checkable

try:  # pragma: no cover - import wiring
    from .config import ConfigurationError
except ImportError:  # pragma: no cover - import wiring
    from config import ConfigurationError  # type: ignore[no-redef]


class DecodeError(Exception):
    """Raised when a single record cannot be decoded."""
    pass


@runtime_checkable
class Decoder(Protocol):
    """Anything with a ``decode(record) -> value`` method."""

    def decode(self, record: bytes) -> Any:
        ...


DecoderBinding = Union[Decoder, Callable[[bytes], Any], str]


class Utf8Decoder:
    """Decode records as strict UTF-8 text."""

    def __init__(self, strip_cr: bool = True) -> None:
        self.strip_cr = strip_cr

    def decode(self, record: bytes) -> str:
        if self.strip_cr and record.endswith(b"\r"):
            record = record[:-1]
        try:
            return record.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 at byte {e.start}") from e


class JsonDecoder:
    """Decode records as one JSON document per line."""

    def decode(self, record: bytes) -> Any:
        try:
            return json.loads(record)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Invalid JSON record: {e}") from e


class CallableDecoder:
    """Adapt a plain ``callable(record) -> value`` to the Decoder protocol."""

    def __init__(self, func: Callable[[bytes], Any]) -> None:
        self.func = func

    def decode(self, record: bytes) -> Any:
        return self.func(record)


BUILTIN_DECODERS: dict[str, Callable[[], Decoder]] = {
    "utf8": Utf8Decoder,
    "json": JsonDecoder,
}


def _import_binding(binding: str) -> Any:
    module_name, _, attr = binding.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Decoder binding must be 'utf8', 'json' or 'module:Name', got '{binding}'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import decoder module '{module_name}': {e}") from e

    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ConfigurationError(f"Decoder '{binding}' not found") from e

    # A class is instantiated with no arguments.
    if isinstance(target, type):
        try:
            target = target()
        except Exception as e:
            raise ConfigurationError(f"Cannot instantiate decoder '{binding}': {e}") from e
    return target


def resolve_decoder(binding: DecoderBinding | None) -> Decoder:
    """
    Turn a decoder binding into a Decoder instance.

    Args:
        binding: Decoder object, callable, builtin name or "module:Name" path.

    Returns:
        Decoder instance

    Raises:
        ConfigurationError: If the binding cannot be resolved.
    """
    if binding is None:
        raise ConfigurationError("A decoder binding is required")

    if isinstance(binding, str):
        factory = BUILTIN_DECODERS.get(binding.lower())
        resolved: Any = factory() if factory is not None else _import_binding(binding)
    elif isinstance(binding, type):
        resolved = binding()
    else:
        resolved = binding

    if isinstance(resolved, Decoder):
        return resolved
    if callable(resolved):
        return CallableDecoder(resolved)

    raise ConfigurationError(
        f"Decoder binding resolved to {type(resolved).__name__}, "
        f"which has no decode() method and is not callable"
    )
