"""Builders for JobTread Pave query documents.

A Pave document is a nested mapping where every key is either a plain field
selection (rendered as ``{}``) or an operation carrying its arguments under the
reserved ``"$"`` key next to its own nested selections::

    document(
        select(
            "createAccount",
            select("createdAccount", "id", "name"),
            args={"name": "Jane Doe", "type": "customer"},
        )
    )

renders to::

    {"createAccount": {"$": {"name": "Jane Doe", "type": "customer"},
                       "createdAccount": {"id": {}, "name": {}}}}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


ARGS_KEY = "$"


@dataclass(frozen=True)
class Field:
    name: str
    children: tuple[Field, ...] = ()
    args: Mapping[str, Any] | None = None

    def render(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.args is not None:
            body[ARGS_KEY] = dict(self.args)
        for child in self.children:
            body.update(child.render())
        return {self.name: body}


def select(name: str, *children: Field | str, args: Mapping[str, Any] | None = None) -> Field:
    return Field(
        name=name,
        children=tuple(child if isinstance(child, Field) else Field(child) for child in children),
        args=args,
    )


def document(*fields: Field) -> dict[str, Any]:
    rendered: dict[str, Any] = {}
    for item in fields:
        rendered.update(item.render())
    return rendered


def where_in(field_name: str, values: Iterable[Any]) -> dict[str, Any]:
    return {"in": [{"field": field_name}, list(values)]}


def where_eq(field_name: str, value: Any) -> dict[str, Any]:
    return {"=": [{"field": field_name}, value]}


def where_all(*conditions: Mapping[str, Any]) -> dict[str, Any]:
    return {"and": [dict(condition) for condition in conditions]}


def dig(payload: Any, *path: str, default: Any = None) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current
