import pandas as pd
import pytest

from pg_refcursors import (
    AsyncRefcursors,
    NoRefcursorLeftException,
    RefcursorState,
    RowFormat,
    TransactionNotActive,
    query_refcursors,
    query_refcursors_async,
)


@pytest.mark.asyncio
async def test_get_report_yields_rows_cursor_by_cursor(report_acxn):
    """Testing async iteration over the get_report refcursors."""

    refcursors = await query_refcursors_async(report_acxn, "get_report", row_format=RowFormat.DICT)

    assert [row async for row in refcursors] == [{"id": 1}, {"id": 2}, {"id": 3}]
    assert await refcursors.fetchone() is None
    assert refcursors.state is RefcursorState.EXHAUSTED


@pytest.mark.asyncio
async def test_construction_issues_no_fetch(report_acxn, report_server):
    """Testing that no FETCH is issued until the first row is awaited."""

    refcursors = await query_refcursors_async(report_acxn, "get_report")
    assert report_server.fetches == []

    assert await refcursors.fetchone() == (1,)
    assert report_server.fetches == ['FETCH ALL FROM "c1"']


@pytest.mark.asyncio
async def test_no_refcursors_yields_nothing(make_acxn):
    acxn = make_acxn(names=[], cursors={})
    refcursors = await query_refcursors_async(acxn, "get_nothing")

    assert [row async for row in refcursors] == []
    assert acxn.server.fetches == []


@pytest.mark.asyncio
async def test_read_and_no_refcursor_left(report_acxn):
    """Testing AsyncRefcursors.read(), and NoRefcursorLeftException once every cursor is read."""

    refcursors = await query_refcursors_async(report_acxn, "get_report", row_format=RowFormat.DICT)

    assert await refcursors.read() == [{"id": 1}]
    assert await refcursors.read() == [{"id": 2}, {"id": 3}]
    with pytest.raises(NoRefcursorLeftException):
        await refcursors.read()


@pytest.mark.asyncio
async def test_read_all_and_read_df(make_acxn):
    """Testing AsyncRefcursors.read_df() followed by read_all()."""

    acxn = make_acxn(
        names=["people", "c2", "c3"],
        cursors={"people": [{"id": 1, "name": "Ada"}], "c2": [{"v": 1}], "c3": [{"v": 2}, {"v": 3}]},
    )
    refcursors = await query_refcursors_async(acxn, "get_people")

    df = await refcursors.read_df()
    assert isinstance(df, pd.DataFrame)
    assert list(df.columns) == ["id", "name"]
    assert df.shape == (1, 2)

    assert await refcursors.read_all() == [[(1,)], [(2,), (3,)]]


@pytest.mark.asyncio
async def test_paged_fetch(make_acxn):
    acxn = make_acxn(names=["big"], cursors={"big": [{"id": i} for i in range(3)]})
    refcursors = await query_refcursors_async(acxn, "get_big", fetch_size=2)

    assert [r[0] async for r in refcursors] == [0, 1, 2]
    assert acxn.server.fetches == ['FETCH FORWARD 2 FROM "big"'] * 2


@pytest.mark.asyncio
async def test_fetch_after_commit_raises(report_acxn):
    """Testing that the refcursors cannot be fetched once their transaction has ended."""

    refcursors = await query_refcursors_async(report_acxn, "get_report")
    await report_acxn.commit()

    with pytest.raises(TransactionNotActive):
        await refcursors.fetchone()


@pytest.mark.asyncio
async def test_autocommit_connection_raises(report_acxn):
    report_acxn.autocommit = True
    with pytest.raises(TransactionNotActive):
        await query_refcursors_async(report_acxn, "get_report")


@pytest.mark.asyncio
async def test_blocking_and_async_paths_yield_same_rows(make_cxn, make_acxn):
    """Testing that both construction paths yield identical rows for identical function output."""

    cursors = {"c1": [{"id": 1, "v": "a"}], "c2": [], "c3": [{"id": 2, "v": "b"}, {"id": 3, "v": "c"}]}

    for row_format in RowFormat:
        blocking = list(query_refcursors(make_cxn(names=["c1", "c2", "c3"], cursors=cursors), "f", row_format=row_format))
        refcursors = await query_refcursors_async(make_acxn(names=["c1", "c2", "c3"], cursors=cursors), "f", row_format=row_format)
        awaited = [row async for row in refcursors]

        assert blocking == awaited
        assert len(awaited) == 3


def test_sync_iteration_is_rejected(report_acxn):
    """Testing that AsyncRefcursors points at "async for" when iterated synchronously."""
    with pytest.raises(TypeError):
        iter(AsyncRefcursors(report_acxn, ["c1"]))
