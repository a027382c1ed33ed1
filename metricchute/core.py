"""Core data model: metrics, containers, handlers and module registries."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Protocol

TRACE = 5
logging.addLevelName(TRACE, "TRACE")


class Sender(Protocol):
    """Anything that accepts a container for delivery."""

    def send(self, container: "Container") -> None: ...


class MissingArgumentError(ValueError):
    """A required configuration option was left unset."""

    def __init__(self, argument: str) -> None:
        super().__init__(f"missing required configuration option: {argument}")
        self.argument = argument


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as err:
        raise ValueError(f"invalid timestamp {value!r}") from err


@dataclass
class Metric:
    """A single measurement: a timestamp, metadata and data fields."""

    time: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.time is not None:
            out["timestamp"] = self.time.isoformat()
        out["metadata"] = dict(self.metadata)
        out["data"] = dict(self.data)
        return out


def _metric_from_dict(raw: Any) -> Metric:
    if not isinstance(raw, Mapping):
        raise ValueError(f"metric must be an object, got {type(raw).__name__}")
    metadata = raw.get("metadata") or {}
    data = raw.get("data") or {}
    if not isinstance(metadata, Mapping):
        raise ValueError("metric metadata must be an object")
    if not isinstance(data, Mapping):
        raise ValueError("metric data must be an object")
    timestamp = raw.get("timestamp")
    return Metric(
        time=None if timestamp is None else _parse_timestamp(timestamp),
        metadata=dict(metadata),
        data=dict(data),
    )


@dataclass
class Container:
    """A batch of metrics travelling through the pipeline together."""

    metrics: list[Metric] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Container":
        if not isinstance(data, Mapping):
            raise ValueError("container must be an object")
        metrics = data.get("metrics")
        if not isinstance(metrics, list):
            raise ValueError("container has no metrics list")
        return cls(metrics=[_metric_from_dict(m) for m in metrics])

    def to_dict(self) -> dict[str, Any]:
        return {"metrics": [m.to_dict() for m in self.metrics]}


def parse_json(data: bytes | str) -> Container:
    """Parse a JSON document into a container."""
    return Container.from_dict(json.loads(data))


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "0.1ms" into seconds."""
    raw = text.strip()
    sign = 1.0
    if raw[:1] in "+-" and raw:
        if raw[0] == "-":
            sign = -1.0
        raw = raw[1:]
    if raw == "0":
        return 0.0
    if not raw:
        raise ValueError(f"invalid duration {text!r}")
    total = 0.0
    pos = 0
    while pos < len(raw):
        match = _DURATION_PART.match(raw, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


_LOG_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


def get_log_level(name: str) -> int:
    """Map a level name (case-insensitive) to a logging level."""
    try:
        return _LOG_LEVELS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level {name!r}") from None


@dataclass(frozen=True)
class Module:
    """Description of a configurable component."""

    name: str
    alloc: Callable[[], Any]
    help: str = ""
    aliases: tuple[str, ...] = ()
    extras: tuple[Any, ...] = ()
    auto_make: bool = False


class ModuleMap:
    """Case-insensitive registry of modules, addressable by name or alias."""

    def __init__(self) -> None:
        self._by_name: dict[str, Module] = {}
        self._modules: list[Module] = []

    def add(self, module: Module) -> None:
        keys = [k.lower() for k in (module.name, *module.aliases)]
        for key in keys:
            if key in self._by_name:
                raise ValueError(f"module name or alias {key!r} already registered")
        if len(set(keys)) != len(keys):
            raise ValueError(f"module {module.name!r} repeats a name or alias")
        for key in keys:
            self._by_name[key] = module
        self._modules.append(module)

    def lookup(self, name: str) -> Module:
        try:
            return self._by_name[name.lower()]
        except KeyError:
            raise KeyError(f"no module named {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._by_name

    def __iter__(self) -> Iterator[Module]:
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)


@dataclass
class Handler:
    """Parses raw bytes, runs transformers and hands the result to a sender."""

    sender: Any = None
    parser: Callable[[bytes], Container] = parse_json
    transformers: list[Callable[[Container], None]] = field(default_factory=list)

    def parse(self, data: bytes) -> Container:
        return self.parser(data)

    def transform_and_send(self, container: Container) -> None:
        if self.sender is None:
            raise MissingArgumentError("sender")
        for transform in self.transformers:
            transform(container)
        self.sender.send(container)

    def handle(self, data: bytes) -> None:
        self.transform_and_send(self.parse(data))