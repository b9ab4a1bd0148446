from __future__ import annotations

import pytest
from sqlalchemy import event, select

from conftest import add_chapter, chapter_numbers, make_book, rows_by_id, stored_toc
from ebookweb.models.chapter import Chapter
from ebookweb.services.errors import BadRequest, BookHasNoChapters, TransactionFailure
from ebookweb.services.reorder import parse_reorder_items, reorder_chapters


def _book_with_three(db):
    book_id = make_book(
        db,
        toc={
            "ebookTitle": "Reorder",
            "totalChapters": 3,
            "phases": [
                {"phaseId": "p1", "phaseTitle": "One", "chapters": [
                    {"chapterNumber": 1, "jsonFile": "a.json"},
                    {"chapterNumber": 2, "jsonFile": "b.json"},
                ]},
                {"phaseId": "p2", "phaseTitle": "Two", "chapters": [
                    {"chapterNumber": 3, "jsonFile": "c.json"},
                ]},
            ],
        },
    )
    add_chapter(db, book_id, 1, id=10, content={"chapterTitle": "Ten", "meta": {"title": "x"}})
    add_chapter(db, book_id, 2, id=20, content={"chapterTitle": "Twenty"})
    add_chapter(db, book_id, 3, id=30, content={"chapterTitle": "Thirty"})
    return book_id


def _as_pairs(items):
    return [(it.id, it.chapter_number) for it in items]


def test_reorder_applies_payload_order(db) -> None:
    book_id = _book_with_three(db)

    items = reorder_chapters(db, book_id, {"items": [{"id": 30}, {"id": 10}, {"id": 20}]})

    assert _as_pairs(items) == [(30, 1), (10, 2), (20, 3)]
    rows = rows_by_id(db, book_id)
    assert {cid: num for cid, (num, _) in rows.items()} == {30: 1, 10: 2, 20: 3}


def test_reorder_bumps_numbers_before_writing(db, engine) -> None:
    book_id = _book_with_three(db)
    seen = []

    def _capture(conn, cursor, statement, parameters, context, executemany):
        if "chapter_number + " in statement or "chapter_number +" in statement:
            seen.append(parameters)

    event.listen(engine, "before_cursor_execute", _capture)
    try:
        reorder_chapters(db, book_id, [30, 10, 20])
    finally:
        event.remove(engine, "before_cursor_execute", _capture)

    assert len(seen) == 1
    assert 10000 in tuple(seen[0])


def test_content_is_synced_with_row(db) -> None:
    book_id = _book_with_three(db)
    reorder_chapters(db, book_id, {"items": [{"id": 20}, {"id": 30}, {"id": 10}]})

    for cid, (number, content) in rows_by_id(db, book_id).items():
        assert content["chapterNumber"] == number
        assert content["chapter_number"] == number
        assert content["meta"]["chapter_number"] == number
        assert content["meta"]["chapterNumber"] == number
        assert content["meta"]["chapter_id"] == cid
    # unrelated content survives
    assert rows_by_id(db, book_id)[10][1]["meta"]["title"] == "x"
    assert rows_by_id(db, book_id)[10][1]["chapterTitle"] == "Ten"


def test_toc_follows_new_numbers(db) -> None:
    book_id = _book_with_three(db)
    reorder_chapters(db, book_id, [30, 10, 20])

    toc = stored_toc(db, book_id)
    assert chapter_numbers(toc) == [[1, 2], [3]]
    titles = [c["chapterTitle"] for phase in toc["phases"] for c in phase["chapters"]]
    assert titles == ["Thirty", "Ten", "Twenty"]
    assert [p["phaseTitle"] for p in toc["phases"]] == ["One", "Two"]
    assert toc["totalChapters"] == 3


def test_missing_ids_are_appended_in_existing_order(db) -> None:
    book_id = _book_with_three(db)
    items = reorder_chapters(db, book_id, {"items": [{"id": 30}]})
    assert _as_pairs(items) == [(30, 1), (10, 2), (20, 3)]


def test_explicit_numbers_are_respected(db) -> None:
    book_id = _book_with_three(db)
    items = reorder_chapters(
        db, book_id, {"items": [{"id": 10, "chapter_number": 5}, {"id": 20, "chapter_number": ""}, {"id": 30, "chapter_number": "7"}]}
    )
    assert _as_pairs(items) == [(10, 5), (20, 2), (30, 7)]
    rows = rows_by_id(db, book_id)
    assert sorted(num for num, _ in rows.values()) == [2, 5, 7]


def test_foreign_ids_are_not_applied(db) -> None:
    book_id = _book_with_three(db)
    other = make_book(db, title="Other")
    add_chapter(db, other, 1, id=99)

    items = reorder_chapters(db, book_id, [99, 10, 20, 30])

    assert [it.id for it in items] == [10, 20, 30]
    assert rows_by_id(db, other) == {99: (1, None)}


def test_full_permutation_yields_one_to_n(db) -> None:
    book_id = make_book(db)
    ids = [add_chapter(db, book_id, n) for n in range(1, 8)]
    permutation = list(reversed(ids))

    reorder_chapters(db, book_id, permutation)

    numbers = sorted(num for num, _ in rows_by_id(db, book_id).values())
    assert numbers == list(range(1, 8))


def test_reorder_is_idempotent(db) -> None:
    book_id = _book_with_three(db)
    payload = {"items": [{"id": 20}, {"id": 10}, {"id": 30}]}
    first = reorder_chapters(db, book_id, payload)
    second = reorder_chapters(db, book_id, payload)
    assert _as_pairs(first) == _as_pairs(second)
    assert stored_toc(db, book_id)["totalChapters"] == 3


def test_small_offset_is_raised_above_current_numbers(db) -> None:
    book_id = make_book(db)
    a = add_chapter(db, book_id, 50)
    b = add_chapter(db, book_id, 51)
    items = reorder_chapters(db, book_id, [b, a], offset=1)
    assert _as_pairs(items) == [(b, 1), (a, 2)]


def test_empty_book_raises_and_changes_nothing(db) -> None:
    book_id = make_book(db)
    with pytest.raises(BookHasNoChapters):
        reorder_chapters(db, book_id, [1, 2])


def test_constraint_violation_rolls_back_everything(db) -> None:
    book_id = _book_with_three(db)
    before = rows_by_id(db, book_id)
    toc_before = stored_toc(db, book_id)

    with pytest.raises(TransactionFailure):
        reorder_chapters(
            db, book_id, {"items": [{"id": 10, "chapter_number": 1}, {"id": 20, "chapter_number": 1}]}
        )

    assert rows_by_id(db, book_id) == before
    assert stored_toc(db, book_id) == toc_before
    # session is usable again
    assert db.execute(select(Chapter.id).where(Chapter.book_id == book_id)).first() is not None


@pytest.mark.parametrize(
    "payload",
    [None, "10,20", {"items": "x"}, {"items": []}, [], {"items": [{"foo": 1}, "abc", None, True]}, {"nope": [1]}],
)
def test_bad_payloads(payload) -> None:
    with pytest.raises(BadRequest):
        parse_reorder_items(payload)


def test_parse_mixed_items() -> None:
    plan = parse_reorder_items({"items": [{"id": "30"}, 10, "20", {"id": 40, "chapter_number": 9}]})
    assert plan.numbers == {30: 1, 10: 2, 20: 3, 40: 9}
    assert plan.next_position == 5


def test_non_positive_explicit_numbers_are_rejected(db) -> None:
    book_id = _book_with_three(db)
    before = rows_by_id(db, book_id)

    with pytest.raises(BadRequest):
        reorder_chapters(db, book_id, [{"id": 10, "chapter_number": 0}, {"id": 20, "chapter_number": -4}])
    with pytest.raises(BadRequest):
        parse_reorder_items({"items": [{"id": 10, "chapter_number": "abc"}]})

    assert rows_by_id(db, book_id) == before


def test_entry_metadata_stays_with_its_number_after_reorder(db) -> None:
    book_id = make_book(
        db,
        toc={
            "ebookTitle": "Weeks",
            "phases": [
                {"phaseId": "p1", "chapters": [
                    {"chapterNumber": 1, "jsonFile": "a.json", "type": "lesson", "week": 1},
                    {"chapterNumber": 2, "jsonFile": "b.json", "type": "quiz", "week": 2},
                ]},
            ],
        },
    )
    add_chapter(db, book_id, 1, id=10, content={"chapterTitle": "Ten"})
    add_chapter(db, book_id, 2, id=20, content={"chapterTitle": "Twenty"})

    reorder_chapters(db, book_id, [20, 10])

    entries = stored_toc(db, book_id)["phases"][0]["chapters"]
    # metadata is keyed by number: chapter 20 now sits at 1 and inherits 1's slot
    assert entries == [
        {"chapterNumber": 1, "chapterTitle": "Twenty", "jsonFile": "a.json", "type": "lesson", "week": 1},
        {"chapterNumber": 2, "chapterTitle": "Ten", "jsonFile": "b.json", "type": "quiz", "week": 2},
    ]
