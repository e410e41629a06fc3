import pytest

from shelf_core import item_from_dict, item_score, new_item


def _add(db, user_id="alice", **values):
    values.setdefault("title", "Inception")
    values.setdefault("format", "Blu-ray")
    return db.insert_item(new_item(user_id, values))


class TestItemFromDict:
    def test_requires_id_title_format(self):
        with pytest.raises(ValueError, match="id"):
            item_from_dict({"title": "Heat", "format": "DVD"})
        with pytest.raises(ValueError, match="title"):
            item_from_dict({"id": "1", "title": "  ", "format": "DVD"})
        with pytest.raises(ValueError, match="format"):
            item_from_dict({"id": "1", "title": "Heat"})

    @pytest.mark.parametrize(
        "field,value",
        [
            ("format", "VHS"),
            ("condition", "Mint"),
            ("collection_type", "borrowed"),
            ("personal_rating", 11),
            ("personal_rating", 0),
            ("year", "nineteen"),
            ("purchase_price", "cheap"),
        ],
    )
    def test_rejects_out_of_range_values(self, field, value):
        data = {"id": "1", "title": "Heat", "format": "DVD", field: value}
        with pytest.raises(ValueError):
            item_from_dict(data)

    def test_defaults_and_blank_normalisation(self):
        it = item_from_dict({"id": "1", "title": "Heat", "format": "DVD", "notes": "  ", "year": "1995", "extra": 1})
        assert it.condition == "Good"
        assert it.collection_type == "owned"
        assert it.notes is None
        assert it.year == 1995

    def test_title_is_kept_verbatim(self):
        assert item_from_dict({"id": "1", "title": "Heat ", "format": "DVD"}).title == "Heat "


def test_insert_and_list_is_scoped_by_user(db):
    mine = _add(db, "alice", title="Heat")
    _add(db, "bob", title="Heat")

    assert [it.id for it in db.list_items("alice")] == [mine.id]
    assert db.get_item("alice", mine.id) == mine
    with pytest.raises(LookupError):
        db.get_item("bob", mine.id)


def test_list_is_newest_first(db):
    first = _add(db, title="Alien")
    second = _add(db, title="Brazil")
    assert [it.id for it in db.list_items("alice")] == [second.id, first.id]


def test_new_item_strips_title_and_assigns_id(db):
    it = _add(db, title="  Heat  ")
    assert it.title == "Heat"
    assert len(it.id) == 32
    assert it.created_at and it.created_at == it.updated_at


def test_update_item(db):
    it = _add(db, notes="old")

    updated = db.update_item("alice", it.id, {"notes": "new", "personal_rating": 7})

    assert updated.notes == "new"
    assert db.get_item("alice", it.id).personal_rating == 7
    with pytest.raises(ValueError):
        db.update_item("alice", it.id, {"id": "other"})
    with pytest.raises(ValueError):
        db.update_item("alice", it.id, {"personal_rating": 12})
    assert db.get_item("alice", it.id).personal_rating == 7
    with pytest.raises(LookupError):
        db.update_item("bob", it.id, {"notes": "x"})


def test_status_move_and_filter(db):
    it = _add(db, title="Heat")
    _add(db, title="Ran")

    db.set_collection_type("alice", it.id, "loaned_out")

    assert [x.id for x in db.list_items("alice", collection_type="loaned_out")] == [it.id]
    assert len(db.list_items("alice", collection_type="owned")) == 1


def test_delete_is_owner_scoped_and_clears_queue(db):
    it = _add(db)
    db.enqueue_scrape("alice", it.id)
    assert db.pending_scrapes("alice") == [it.id]

    with pytest.raises(LookupError, match="permission"):
        db.delete_item("bob", it.id)

    db.delete_item("alice", it.id)

    assert db.list_items("alice") == []
    assert db.pending_scrapes("alice") == []
    with pytest.raises(LookupError):
        db.delete_item("alice", it.id)


def test_technical_specs_link_raises_score_and_closes_queue(db):
    it = _add(db)
    db.enqueue_scrape("alice", it.id)
    specs_id = db.insert_technical_specs({"disc_format": "BD-50", "video_codec": "AVC", "runtime_minutes": "148"})

    linked = db.link_technical_specs("alice", it.id, specs_id)

    assert linked.technical_specs_id == specs_id
    assert item_score(linked) == item_score(it) + 3
    assert db.pending_scrapes("alice") == []
    assert db.get_technical_specs(specs_id)["runtime_minutes"] == 148


def test_find_existing_is_case_insensitive(db):
    _add(db, title="Inception", format="Blu-ray")
    _add(db, "bob", title="Heat", format="DVD")

    assert db.find_existing("alice", ["INCEPTION", "Heat"]) == {("inception", "Blu-ray")}
    assert db.find_existing("alice", []) == set()
