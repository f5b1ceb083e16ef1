"""DataClient — model-oriented persistence facade with middleware hooks.

Learn: Route handlers never build SQLAlchemy statements themselves. They call
`data.project.create(data={...})`, `data.skill.delete_many(where={...})` and so
on. Every call is described as OperationParams(model, action, args) and run
through a middleware chain before reaching the executor:

    middleware_1(params, next) → middleware_2(params, next) → execute(params)

Middleware registered with use() wraps *every* operation on *every* model,
which is how the realtime interceptor observes mutations without the
routes knowing about it.

`where` filters are plain {column: value} equality maps.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, func, inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from folio.db.models import Base
from folio.events.types import Action

NextFn = Callable[["OperationParams"], Awaitable[Any]]
Middleware = Callable[["OperationParams", NextFn], Awaitable[Any]]


class RecordNotFoundError(LookupError):
    """A single-record update/delete matched nothing."""

    def __init__(self, model: str, where: dict):
        self.model = model
        self.where = where
        super().__init__(f"{model} not found for {where!r}")


@dataclass
class OperationParams:
    model: str
    action: Action
    args: dict[str, Any] = field(default_factory=dict)


def jsonable(value: Any) -> Any:
    """Render operation args/results JSON-safe (ORM rows become column dicts)."""
    if isinstance(value, Base):
        mapper = inspect(value).mapper
        return {
            attr.key: jsonable(getattr(value, attr.key))
            for attr in mapper.column_attrs
        }
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): jsonable(v) for k, v in value.items()}
    return to_jsonable_python(value, fallback=str)


class ModelDelegate:
    """Operations for one model: `data.project`, `data.skill`, ..."""

    def __init__(self, client: "DataClient", model: type[Base]):
        self._client = client
        self.model = model
        self.name = model.__name__

    async def _call(self, action: Action, **args: Any) -> Any:
        return await self._client.dispatch(OperationParams(self.name, action, args))

    # ── Writes ──────────────────────────────────────────────

    async def create(self, data: dict) -> Any:
        return await self._call(Action.CREATE, data=data)

    async def create_many(self, data: list[dict]) -> dict:
        return await self._call(Action.CREATE_MANY, data=data)

    async def update(self, where: dict, data: dict) -> Any:
        return await self._call(Action.UPDATE, where=where, data=data)

    async def update_many(self, where: dict, data: dict) -> dict:
        return await self._call(Action.UPDATE_MANY, where=where, data=data)

    async def upsert(self, where: dict, create: dict, update: dict) -> Any:
        return await self._call(Action.UPSERT, where=where, create=create, update=update)

    async def delete(self, where: dict) -> Any:
        return await self._call(Action.DELETE, where=where)

    async def delete_many(self, where: Optional[dict] = None) -> dict:
        return await self._call(Action.DELETE_MANY, where=where or {})

    # ── Reads ───────────────────────────────────────────────

    async def find_unique(self, where: dict) -> Any:
        return await self._call(Action.FIND_UNIQUE, where=where)

    async def find_many(
        self,
        where: Optional[dict] = None,
        order_by: Optional[str] = None,
        take: Optional[int] = None,
    ) -> list:
        return await self._call(
            Action.FIND_MANY, where=where or {}, order_by=order_by, take=take
        )

    async def count(self, where: Optional[dict] = None) -> int:
        return await self._call(Action.COUNT, where=where or {})


class DataClient:
    """Persistence client: model delegates + middleware chain.

    Usage:
        data = DataClient(session_factory)
        data.use(my_middleware)
        project = await data.project.create(data={"title": "Folio"})
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        models: Optional[list[type[Base]]] = None,
    ):
        self._session_factory = session_factory
        self._middleware: list[Middleware] = []
        self._delegates: dict[str, ModelDelegate] = {}
        self._models: dict[str, type[Base]] = {}
        for model in models or [m.class_ for m in Base.registry.mappers]:
            self._models[model.__name__] = model
            self._delegates[_attr_name(model.__name__)] = ModelDelegate(self, model)

    def __getattr__(self, name: str) -> ModelDelegate:
        delegates = self.__dict__.get("_delegates", {})
        if name in delegates:
            return delegates[name]
        raise AttributeError(f"DataClient has no model {name!r}")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @property
    def model_names(self) -> list[str]:
        return sorted(self._models)

    def use(self, middleware: Middleware) -> None:
        """Register middleware. Earlier registrations wrap later ones."""
        self._middleware.append(middleware)

    async def dispatch(self, params: OperationParams) -> Any:
        chain = list(self._middleware)

        async def call(index: int, p: OperationParams) -> Any:
            if index == len(chain):
                return await self._execute(p)
            return await chain[index](p, lambda nxt: call(index + 1, nxt))

        return await call(0, params)

    # ── Executor ────────────────────────────────────────────

    async def _execute(self, params: OperationParams) -> Any:
        model = self._models[params.model]
        args = params.args
        async with self._session_factory() as session:
            handler = _EXECUTORS[params.action]
            result = await handler(session, model, args)
            if params.action not in _READ_ACTIONS:
                await session.commit()
            return result


def _attr_name(class_name: str) -> str:
    out = []
    for i, ch in enumerate(class_name):
        if ch.isupper() and i:
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def _filters(model: type[Base], where: dict) -> list:
    return [getattr(model, key) == value for key, value in where.items()]


async def _get_one(session: AsyncSession, model: type[Base], where: dict):
    result = await session.execute(select(model).where(*_filters(model, where)).limit(1))
    return result.scalars().first()


async def _create(session, model, args):
    obj = model(**args["data"])
    session.add(obj)
    await session.flush()
    return obj


async def _create_many(session, model, args):
    rows = [model(**row) for row in args["data"]]
    session.add_all(rows)
    await session.flush()
    return {"count": len(rows)}


async def _update(session, model, args):
    obj = await _get_one(session, model, args["where"])
    if obj is None:
        raise RecordNotFoundError(model.__name__, args["where"])
    for key, value in args["data"].items():
        setattr(obj, key, value)
    await session.flush()
    return obj


async def _update_many(session, model, args):
    stmt = update(model).where(*_filters(model, args["where"])).values(**args["data"])
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return {"count": result.rowcount}


async def _upsert(session, model, args):
    obj = await _get_one(session, model, args["where"])
    if obj is None:
        obj = model(**{**args["where"], **args["create"]})
        session.add(obj)
    else:
        for key, value in args["update"].items():
            setattr(obj, key, value)
    await session.flush()
    return obj


async def _delete(session, model, args):
    obj = await _get_one(session, model, args["where"])
    if obj is None:
        raise RecordNotFoundError(model.__name__, args["where"])
    await session.delete(obj)
    await session.flush()
    return obj


async def _delete_many(session, model, args):
    stmt = delete(model).where(*_filters(model, args["where"]))
    result = await session.execute(stmt.execution_options(synchronize_session=False))
    return {"count": result.rowcount}


async def _find_unique(session, model, args):
    return await _get_one(session, model, args["where"])


async def _find_many(session, model, args):
    query = select(model).where(*_filters(model, args["where"]))
    if args.get("order_by"):
        column = args["order_by"].lstrip("-")
        ordering = getattr(model, column)
        query = query.order_by(ordering.desc() if args["order_by"].startswith("-") else ordering)
    if args.get("take"):
        query = query.limit(args["take"])
    result = await session.execute(query)
    return list(result.scalars().all())


async def _count(session, model, args):
    result = await session.execute(
        select(func.count()).select_from(model).where(*_filters(model, args["where"]))
    )
    return result.scalar_one()


_EXECUTORS = {
    Action.CREATE: _create,
    Action.CREATE_MANY: _create_many,
    Action.UPDATE: _update,
    Action.UPDATE_MANY: _update_many,
    Action.UPSERT: _upsert,
    Action.DELETE: _delete,
    Action.DELETE_MANY: _delete_many,
    Action.FIND_UNIQUE: _find_unique,
    Action.FIND_MANY: _find_many,
    Action.COUNT: _count,
}

_READ_ACTIONS = {Action.FIND_UNIQUE, Action.FIND_MANY, Action.COUNT}
