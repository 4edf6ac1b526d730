"""
Conflict resolution for versioned entities.
Last writer wins by version number, never by wall clock: device clocks are not trusted.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class KeepLocal:
    """Local edit supersedes; the remote record is overwritten."""


@dataclass(frozen=True)
class KeepRemote:
    """Remote state wins. ``follow_up`` carries a local edit to re-queue instead of dropping it."""
    follow_up: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Merged:
    payload: Dict[str, Any] = field(default_factory=dict)


Decision = Union[KeepLocal, KeepRemote, Merged]

FieldKey = Tuple[str, ...]


def _flatten(payload: Dict[str, Any]) -> Dict[FieldKey, Any]:
    """One level deep: nested dicts such as form_responses merge per key."""
    flat: Dict[FieldKey, Any] = {}
    for key, value in (payload or {}).items():
        if isinstance(value, dict) and value:
            for sub_key, sub_value in value.items():
                flat[(key, sub_key)] = sub_value
        else:
            flat[(key,)] = value
    return flat


def _unflatten(flat: Dict[FieldKey, Any]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {path[0]: value for path, value in flat.items() if len(path) == 1}
    for path, value in flat.items():
        if len(path) == 2:
            nested = payload.get(path[0])
            if not isinstance(nested, dict):
                nested = payload[path[0]] = {}
            nested[path[1]] = value
    return payload


class ConflictResolver:

    def resolve(
        self,
        local_version: int,
        local_payload: Dict[str, Any],
        remote_version: int,
        remote_payload: Dict[str, Any],
    ) -> Decision:
        if local_version > remote_version:
            return KeepLocal()
        if local_version < remote_version:
            return KeepRemote()

        # Same base on both sides: merge when the edited fields do not collide.
        local_fields = _flatten(local_payload)
        remote_fields = _flatten(remote_payload)
        collisions = [
            key for key in local_fields.keys() & remote_fields.keys()
            if local_fields[key] != remote_fields[key]
        ]
        if collisions:
            return KeepRemote(follow_up=dict(local_payload or {}))
        return Merged(payload=_unflatten({**remote_fields, **local_fields}))
