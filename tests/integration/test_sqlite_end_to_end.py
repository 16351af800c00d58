"""
End-to-end tests against an in-memory SQLite database.

These need no external services and always run. They exercise the full path:
model introspection -> schema reconciliation -> query translation -> aiosqlite
-> codec decoding.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Callable, ClassVar, List, Optional

import pytest
from pydantic import BaseModel

from polystore import (
    DbKey,
    DuplicateKeyError,
    Index,
    MisuseError,
    StorageName,
    TranslationUnsupportedError,
    Unique,
    open_database,
)
from polystore.schema.reconciler import StepKind

SQLITE_MEMORY_URL = "sqlite:///:memory:"
INITIAL_AGE = 30
UPDATED_AGE = 31


class User(BaseModel):
    __tablename__: ClassVar[str] = "users"

    id: Optional[DbKey] = None
    email: Annotated[str, Unique()]
    age: int


class Person(BaseModel):
    __tablename__: ClassVar[str] = "people"

    id: Optional[DbKey] = None
    name: str
    age: Annotated[int, Index()] = 0
    nickname: Annotated[Optional[str], StorageName("nick")] = None


class Event(BaseModel):
    __tablename__: ClassVar[str] = "events"

    id: Optional[DbKey] = None
    at: datetime
    day: date
    amount: Decimal
    token: uuid.UUID
    active: bool
    payload: bytes
    note: Optional[str] = None


class NoteV1(BaseModel):
    __tablename__: ClassVar[str] = "notes"

    id: Optional[DbKey] = None
    title: str


class NoteV2(BaseModel):
    __tablename__: ClassVar[str] = "notes"

    id: Optional[DbKey] = None
    title: str
    stars: Annotated[int, Index()] = 0
    tag: Optional[str] = None


PEOPLE = [
    Person(name="ann", age=25, nickname="annie"),
    Person(name="bob", age=35, nickname=None),
    Person(name="cid", age=45, nickname="bob"),
    Person(name="dee", age=55, nickname=None),
    Person(name="Abe", age=65, nickname="abe"),
]


@pytest.mark.asyncio
async def test_scenario_insert_find_duplicate_update_delete() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        users = await db.table(User)

        stored = await users.insert(User(email="a@x.com", age=INITIAL_AGE))
        assert isinstance(stored.id, DbKey)

        found = await users.find(lambda q: q.email == "a@x.com")
        assert found == [stored]

        with pytest.raises(DuplicateKeyError):
            await users.insert(User(email="a@x.com", age=40))

        modified = await users.update(
            lambda q: q.email == "a@x.com", values={"age": UPDATED_AGE}, limit=1
        )
        assert modified == 1
        (after,) = await users.find(lambda q: q.email == "a@x.com")
        assert after.age == UPDATED_AGE

        assert await users.delete(lambda q: q.age > 100) == 0
        assert len(await users.find()) == 1


@pytest.mark.asyncio
async def test_always_matches_everything_and_never_nothing() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        assert len(await people.find(lambda q: q.everything)) == len(PEOPLE)
        assert await people.find(lambda q: q.nothing) == []
        assert await people.delete(lambda q: q.nothing) == 0
        assert await people.update(lambda q: q.nothing, values={"age": 1}) == 0


PREDICATES = [
    (lambda q: q.age > 40, lambda p: p.age > 40),
    (lambda q: (q.age >= 35) & (q.age <= 55), lambda p: 35 <= p.age <= 55),
    (lambda q: (q.name == "ann") | (q.age == 65), lambda p: p.name == "ann" or p.age == 65),
    (lambda q: q.nickname != "bob", lambda p: p.nickname != "bob"),
    (lambda q: ~(q.nickname == "bob"), lambda p: not p.nickname == "bob"),
    (lambda q: q.nickname == None, lambda p: p.nickname is None),  # noqa: E711
    (lambda q: q.nickname.in_(["annie", None]), lambda p: p.nickname in ("annie", None)),
    (lambda q: q.name.in_([]), lambda p: False),
    (lambda q: q.name.like("a%"), lambda p: p.name.startswith("a")),
    (lambda q: q.name.like("_o_"), lambda p: len(p.name) == 3 and p.name[1] == "o"),
    (lambda q: ~((q.age < 30) | (q.nickname == None)), lambda p: not (p.age < 30 or p.nickname is None)),  # noqa: E711
]


@pytest.mark.asyncio
@pytest.mark.parametrize(("query", "expected"), PREDICATES)
async def test_translated_queries_select_what_python_selects(
    query, expected: Callable[[Person], bool]
) -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        found = await people.find(query)

        assert sorted(p.name for p in found) == sorted(p.name for p in PEOPLE if expected(p))


@pytest.mark.asyncio
async def test_skip_and_limit_are_independent() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        names = [p.name for p in await people.find()]
        assert [p.name for p in await people.find(limit=2)] == names[:2]
        assert [p.name for p in await people.find(skip=3)] == names[3:]
        assert [p.name for p in await people.find(skip=1, limit=2)] == names[1:3]
        assert await people.find(limit=0) == []
        assert (await people.find_one()).name == names[0]


@pytest.mark.asyncio
async def test_update_with_limit_one_touches_a_single_record() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        assert await people.update(lambda q: q.age > 30, increment={"age": 1}, limit=1) == 1
        original = [p.age for p in PEOPLE]
        ages = [p.age for p in await people.find()]
        assert sum(ages) == sum(original) + 1
        (bumped,) = [age for age in ages if age not in original]
        assert bumped - 1 in [age for age in original if age > 30]

        assert await people.update(lambda q: q.age > 30, increment={"age": 1}) == 4
        assert await people.delete(lambda q: q.age > 30, limit=1) == 1
        assert len(await people.find()) == len(PEOPLE) - 1


@pytest.mark.asyncio
async def test_raw_sql_fragment() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        found = await people.find(lambda q: q.raw("relational", "length(name) = ? AND age < ?", 3, 30))
        assert [p.name for p in found] == ["ann"]

        with pytest.raises(TranslationUnsupportedError):
            await people.find(lambda q: q.raw("document", {"age": 1}))


@pytest.mark.asyncio
async def test_raw_query_returns_native_rows() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person)
        for person in PEOPLE:
            await people.insert(person)

        rows = await people.raw_query(
            'SELECT "nick", count(*) AS n FROM "people" WHERE age > ? GROUP BY "nick" ORDER BY n DESC', 30
        )
        assert rows[0] == {"nick": None, "n": 2}
        assert len(rows) == 3

        async def inside(tx) -> list:
            await tx.insert(Person(name="eve", age=75))
            return await tx.raw_query('SELECT name FROM "people" WHERE age > ?', 70)

        assert await people.transaction(inside) == [{"name": "eve"}]


@pytest.mark.asyncio
async def test_codec_round_trip_through_sqlite() -> None:
    event = Event(
        at=datetime(2024, 5, 17, 12, 30, 5, 123456, tzinfo=timezone.utc),
        day=date(2024, 5, 17),
        amount=Decimal("1234.5600"),
        token=uuid.UUID("12345678-1234-5678-1234-567812345678"),
        active=True,
        payload=b"\x00\xffbinary",
    )
    async with await open_database(SQLITE_MEMORY_URL) as db:
        events = await db.table(Event)
        stored = await events.insert(event)

        loaded = await events.find_one(lambda q: q.token == event.token)

        assert loaded == stored
        assert await events.find_one(lambda q: q.active == True) == stored  # noqa: E712
        assert await events.find_one(lambda q: q.day == date(2024, 5, 17)) == stored


PLUS_TWO = timezone(timedelta(hours=2))
MINUS_FIVE = timezone(timedelta(hours=-5))


def _event(n: int, at: datetime, day: date, amount: str, token: str) -> Event:
    return Event(
        at=at,
        day=day,
        amount=Decimal(amount),
        token=uuid.UUID(token),
        active=n % 2 == 0,
        payload=bytes([n]),
    )


EVENTS = [
    # 08:00Z
    _event(0, datetime(2024, 1, 1, 10, 0, tzinfo=PLUS_TWO), date(2024, 1, 9), "9", "00000000-0000-0000-0000-00000000000a"),
    # 09:00Z
    _event(1, datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc), date(2024, 1, 10), "10", "00000000-0000-0000-0000-000000000009"),
    # 08:30Z
    _event(2, datetime(2024, 1, 1, 3, 30, tzinfo=MINUS_FIVE), date(2023, 12, 31), "9.75", "f0000000-0000-0000-0000-000000000000"),
    # 08:00:00.5Z
    _event(3, datetime(2024, 1, 1, 8, 0, 0, 500000, tzinfo=timezone.utc), date(2024, 2, 1), "100.5", "10000000-0000-0000-0000-000000000000"),
    # 04:00Z
    _event(4, datetime(2023, 12, 31, 23, 0, tzinfo=MINUS_FIVE), date(2024, 1, 1), "-2.5", "0a000000-0000-0000-0000-000000000000"),
]

EIGHT_Z = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
LOW_TOKEN = uuid.UUID("0b000000-0000-0000-0000-000000000000")

ORDERED_PREDICATES = [
    (lambda q: q.amount > Decimal("9.5"), lambda e: e.amount > Decimal("9.5")),
    (lambda q: q.amount < Decimal("10"), lambda e: e.amount < Decimal("10")),
    (lambda q: q.amount <= Decimal("9"), lambda e: e.amount <= Decimal("9")),
    (lambda q: q.amount == Decimal("10.00"), lambda e: e.amount == Decimal("10.00")),
    (lambda q: q.amount.in_([Decimal("9"), Decimal("100.50")]), lambda e: e.amount in (Decimal("9"), Decimal("100.50"))),
    (lambda q: q.at > EIGHT_Z + timedelta(minutes=15), lambda e: e.at > EIGHT_Z + timedelta(minutes=15)),
    (lambda q: q.at >= EIGHT_Z.astimezone(PLUS_TWO), lambda e: e.at >= EIGHT_Z),
    (lambda q: q.at < EIGHT_Z.astimezone(MINUS_FIVE), lambda e: e.at < EIGHT_Z),
    (lambda q: q.at == EIGHT_Z.astimezone(MINUS_FIVE), lambda e: e.at == EIGHT_Z),
    (lambda q: q.day < date(2024, 1, 10), lambda e: e.day < date(2024, 1, 10)),
    (lambda q: q.day >= date(2024, 1, 1), lambda e: e.day >= date(2024, 1, 1)),
    (lambda q: q.token > LOW_TOKEN, lambda e: e.token > LOW_TOKEN),
    (
        lambda q: (q.amount > Decimal("9")) & (q.at < EIGHT_Z + timedelta(minutes=45)),
        lambda e: e.amount > Decimal("9") and e.at < EIGHT_Z + timedelta(minutes=45),
    ),
]


@pytest.mark.asyncio
@pytest.mark.parametrize(("query", "expected"), ORDERED_PREDICATES)
async def test_ordering_on_encoded_types_matches_python(query, expected: Callable[[Event], bool]) -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        events = await db.table(Event)
        for event in EVENTS:
            await events.insert(event)

        found = await events.find(query)

        assert sorted(e.payload for e in found) == sorted(e.payload for e in EVENTS if expected(e))


class Counter(BaseModel):
    __tablename__: ClassVar[str] = "counters"

    id: Optional[int] = None
    name: str


@pytest.mark.asyncio
async def test_integer_primary_key_is_assigned_by_sqlite() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        counters = await db.table(Counter)

        stored = await counters.insert(Counter(name="a"))
        assert stored.id is None
        await counters.insert(Counter(name="b"))

        assert [(c.id, c.name) for c in await counters.find()] == [(1, "a"), (2, "b")]


@pytest.mark.asyncio
async def test_reconcile_is_idempotent() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        people = await db.table(Person, reconcile=False)

        first = await people.reconcile()
        assert [step.kind for step in first] == [StepKind.CREATE, StepKind.CREATE_INDEX]

        assert await people.reconcile() == []
        assert await people.plan() == []


@pytest.mark.asyncio
async def test_reconcile_is_additive_only() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        v1 = await db.table(NoteV1)
        await v1.insert(NoteV1(title="first"))

        v2 = await db.table(NoteV2, reconcile=False)
        steps = await v2.reconcile()
        assert [(step.kind, step.column) for step in steps] == [
            (StepKind.ADD_COLUMN, "stars"),
            (StepKind.ADD_COLUMN, "tag"),
            (StepKind.CREATE_INDEX, "stars"),
        ]
        (existing,) = await v2.find()
        assert existing.title == "first"
        assert existing.stars == 0
        assert existing.tag is None

        # the narrower model leaves the extra columns alone and still writes
        v1_again = await db.table(NoteV1, reconcile=False)
        assert await v1_again.reconcile() == []
        await v1_again.insert(NoteV1(title="second"))
        assert sorted(note.stars for note in await v2.find()) == [0, 0]

        columns = await v2.show_columns()
        assert set(columns) == {"id", "title", "stars", "tag"}


@pytest.mark.asyncio
async def test_transaction_commits_on_success() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        users = await db.table(User)

        async def work(tx) -> int:
            await tx.insert(User(email="a@x.com", age=1))
            await tx.insert(User(email="b@x.com", age=2))
            return len(await tx.find())

        assert await users.transaction(work) == 2
        assert len(await users.find()) == 2


@pytest.mark.asyncio
async def test_transaction_rolls_back_and_reraises() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        users = await db.table(User)
        await users.insert(User(email="keep@x.com", age=1))

        async def work(tx) -> None:
            await tx.insert(User(email="gone@x.com", age=2))
            await tx.update(None, values={"age": 99})
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError, match="abort"):
            await users.transaction(work)

        remaining: List[User] = await users.find()
        assert [(u.email, u.age) for u in remaining] == [("keep@x.com", 1)]


@pytest.mark.asyncio
async def test_duplicate_inside_transaction_rolls_back() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        users = await db.table(User)

        async def work(tx) -> None:
            await tx.insert(User(email="a@x.com", age=1))
            await tx.insert(User(email="a@x.com", age=2))

        with pytest.raises(DuplicateKeyError):
            await users.transaction(work)
        assert await users.find() == []


@pytest.mark.asyncio
async def test_nested_transaction_is_misuse() -> None:
    async with await open_database(SQLITE_MEMORY_URL) as db:
        users = await db.table(User)

        async def inner(tx) -> None:
            return None

        async def outer(tx) -> None:
            await tx.transaction(inner)

        with pytest.raises(MisuseError):
            await users.transaction(outer)
