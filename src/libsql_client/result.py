"""Result sets and dual-addressable rows."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, overload


def column_index(columns: Sequence[str]) -> dict[str, int]:
    """Map each column name to its first position."""
    index: dict[str, int] = {}
    for i, name in enumerate(columns):
        index.setdefault(name, i)
    return index


class Row(Sequence[Any]):
    """A database row supporting positional, named and attribute access.

    ``row[0]``, ``row["one"]`` and ``row.one`` read the same backing tuple.
    Attribute access cannot reach columns named after ``Sequence`` methods:
    ``row.count`` and ``row.index`` are the methods, use ``row["count"]``.
    The name -> position map is built once per result set and shared by
    all of its rows. Rows compare equal to tuples and lists with the same
    values, and to mappings with the same name -> value pairs.
    """

    __slots__ = ("_values", "_columns", "_index")

    def __init__(
        self,
        values: Sequence[Any],
        columns: tuple[str, ...],
        index: Mapping[str, int] | None = None,
    ) -> None:
        """Initialize with values in column order."""
        if len(values) != len(columns):
            raise ValueError(f"Row has {len(values)} values but {len(columns)} columns")
        object.__setattr__(self, "_values", tuple(values))
        object.__setattr__(self, "_columns", columns)
        object.__setattr__(self, "_index", index if index is not None else column_index(columns))

    @overload
    def __getitem__(self, key: int) -> Any: ...

    @overload
    def __getitem__(self, key: slice) -> tuple[Any, ...]: ...

    @overload
    def __getitem__(self, key: str) -> Any: ...

    def __getitem__(self, key: int | slice | str) -> Any:
        """Get a column value by position, slice or name."""
        if isinstance(key, str):
            try:
                return self._values[self._index[key]]
            except KeyError:
                raise KeyError(key) from None
        return self._values[key]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[self._index[name]]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Row is immutable")

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self._values == other._values
        if isinstance(other, tuple | list):
            return self._values == tuple(other)
        if isinstance(other, Mapping):
            return self.asdict() == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={value!r}" for name, value in self.items())
        return f"Row({fields})"

    def keys(self) -> list[str]:
        """Return column names, first occurrence of each."""
        return list(self._index)

    def items(self) -> list[tuple[str, Any]]:
        """Return ``(name, value)`` pairs, first occurrence of each name."""
        return [(name, self._values[i]) for name, i in self._index.items()]

    def asdict(self) -> dict[str, Any]:
        """Return the row as a name -> value dict."""
        return dict(self.items())


@dataclass(frozen=True, slots=True)
class ResultSet:
    """Result of executing one statement."""

    columns: tuple[str, ...]
    rows: list[Row] = field(default_factory=list)
    rows_affected: int = 0
    last_insert_rowid: int | None = None

    @classmethod
    def from_values(
        cls,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        rows_affected: int = 0,
        last_insert_rowid: int | None = None,
    ) -> ResultSet:
        """Build a result set, sharing one column index across all rows."""
        cols = tuple(columns)
        index = column_index(cols)
        return cls(
            columns=cols,
            rows=[Row(values, cols, index) for values in rows],
            rows_affected=rows_affected,
            last_insert_rowid=last_insert_rowid,
        )
