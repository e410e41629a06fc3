import pytest

from shelf_core import MergeError, MergeResolver, find_duplicate_groups


def test_merge_group_removes_all_but_keeper(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(4)]
    store = fake_store(items)
    keeper = items[2]

    removed = MergeResolver(store.remove).merge_group([it.id for it in items], keeper.id)

    assert removed == 3
    assert store.list_items() == [keeper]
    assert store.deleted == [items[0].id, items[1].id, items[3].id]


def test_keeper_outside_group_is_rejected_before_deleting(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(2)]
    store = fake_store(items)

    with pytest.raises(ValueError):
        MergeResolver(store.remove).merge_group([it.id for it in items], "nope")

    assert store.deleted == []


def test_repeated_ids_are_removed_once(make_item, fake_store):
    a, b = make_item("Alien", "DVD"), make_item("Alien", "DVD")
    store = fake_store([a, b])

    assert MergeResolver(store.remove).merge_group([a.id, b.id, b.id], a.id) == 1


def test_storage_failure_reports_partial_count(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(4)]
    store = fake_store(items, fail_on={items[2].id})

    with pytest.raises(MergeError) as exc:
        MergeResolver(store.remove).merge_group([it.id for it in items], items[0].id)

    err = exc.value
    assert err.removed == 1
    assert err.item_id == items[2].id
    assert "storage offline" in err.message
    assert isinstance(err.__cause__, RuntimeError)
    # no rollback
    assert store.deleted == [items[1].id]


def test_merge_decisions_total_is_sum_of_group_sizes_minus_one(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(3)] + [make_item("Heat", "Blu-ray") for _ in range(2)]
    items.append(make_item("Ran", "DVD"))
    store = fake_store(items)
    groups = find_duplicate_groups(store.list_items())

    result = MergeResolver(store.remove).merge_decisions(groups, {0: items[1].id, 1: items[4].id})

    assert result.removed == (3 - 1) + (2 - 1)
    assert result.groups == 2
    assert find_duplicate_groups(store.list_items()) == []
    assert {it.id for it in store.list_items()} == {items[1].id, items[4].id, items[5].id}


def test_no_decisions_is_a_noop(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(2)]
    store = fake_store(items)

    result = MergeResolver(store.remove).merge_decisions(find_duplicate_groups(items), {})

    assert (result.removed, result.groups) == (0, 0)
    assert store.deleted == []


def test_bad_decision_anywhere_blocks_all_deletions(make_item, fake_store):
    items = [make_item("Alien", "DVD") for _ in range(2)] + [make_item("Heat", "DVD") for _ in range(2)]
    store = fake_store(items)
    groups = find_duplicate_groups(items)
    resolver = MergeResolver(store.remove)

    with pytest.raises(ValueError):
        resolver.merge_decisions(groups, {0: items[0].id, 1: items[0].id})
    with pytest.raises(ValueError):
        resolver.merge_decisions(groups, {0: items[0].id, 5: items[2].id})

    assert store.deleted == []


def test_failure_in_later_group_counts_earlier_groups(make_item, fake_store):
    alien = [make_item("Alien", "DVD") for _ in range(3)]
    heat = [make_item("Heat", "DVD") for _ in range(3)]
    store = fake_store(alien + heat, fail_on={heat[2].id})
    groups = find_duplicate_groups(store.list_items())

    with pytest.raises(MergeError) as exc:
        MergeResolver(store.remove).merge_decisions(groups, {0: alien[0].id, 1: heat[0].id})

    assert exc.value.removed == 2 + 1
    # the caller regroups to see what is left
    remaining = find_duplicate_groups(store.list_items())
    assert [g.ids for g in remaining] == [[heat[0].id, heat[2].id]]
