"""Base class for the workboard's port-backed libraries.

:class:`GraphStore`, :class:`Reconciler` and :class:`Workboard` are all
services: they take their ports in ``__init__``, load state in
:meth:`Service.asetup` and release it in :meth:`Service.ateardown`. Methods a
front-end may call are marked with :func:`tool`; the set is collected once
per class into ``tool_names`` and handed out, bound, by :meth:`Service.get_tools`.

.. code-block:: python

    class NodeCounter(Service):
        def __init__(self, store: GraphStore) -> None:
            self._store = store

        @tool
        async def acount(self) -> int:
            return len(await self._store.alist_nodes())

    async with NodeCounter(store) as counter:
        await counter.acount()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Self

if TYPE_CHECKING:
    from collections.abc import Callable

_TOOL_MARK = "__workboard_tool__"


def tool[F: Callable[..., Any]](fn: F) -> F:
    """Expose *fn* as a public operation of its service."""
    setattr(fn, _TOOL_MARK, True)
    return fn


class Service:
    """Lifecycle hooks plus ``@tool`` discovery."""

    tool_names: ClassVar[frozenset[str]] = frozenset()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        found = set()
        for klass in reversed(cls.__mro__):
            for name, member in vars(klass).items():
                if name.startswith("_"):
                    continue
                if getattr(member, _TOOL_MARK, False):
                    found.add(name)
                else:
                    # An override without @tool hides the parent's tool
                    found.discard(name)
        cls.tool_names = frozenset(found)

    async def asetup(self) -> None:
        """Load persisted state; awaited once before first use."""

    async def ateardown(self) -> None:
        """Stop background work; awaited once at shutdown."""

    def get_tools(self) -> dict[str, Callable[..., Any]]:
        """Bound ``@tool`` methods by name."""
        return {name: getattr(self, name) for name in sorted(self.tool_names)}

    async def __aenter__(self) -> Self:
        await self.asetup()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.ateardown()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tools={sorted(self.tool_names)})"
