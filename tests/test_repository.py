from __future__ import annotations

import pytest

from tube_service.repository import RepositoryError, SqlTubeRepository
from tube_service.schemas import ChangeEvent


async def test_lists_are_read_in_creation_order(repository: SqlTubeRepository) -> None:
    await repository.create_list("Zèbre")
    await repository.create_list("Atelier")

    lists = await repository.get_lists()

    assert [tube_list.name for tube_list in lists] == ["Zèbre", "Atelier"]


async def test_tubes_are_read_by_name(repository: SqlTubeRepository) -> None:
    tube_list = await repository.create_list("Atelier")
    await repository.add_tube(tube_list.id, "Vis", None, None, "3", "")
    await repository.add_tube(tube_list.id, "Colle", "Cola", "bois", 1, 4)

    tubes = await repository.get_tubes()

    assert [tube.name for tube in tubes] == ["Colle", "Vis"]
    colle, vis = tubes
    assert (colle.esp, colle.usage, colle.quantity, colle.stock_mini) == ("Cola", "bois", 1, 4)
    assert (vis.esp, vis.usage, vis.quantity, vis.stock_mini) == (None, None, 3, None)


async def test_blank_optional_fields_are_stored_as_null(repository: SqlTubeRepository) -> None:
    tube_list = await repository.create_list("Atelier")
    tube = await repository.add_tube(tube_list.id, "Vis", "Tornillo", "fixations", 2, 5)

    updated = await repository.update_tube(tube.id, "Vis", "", "   ", " 4 ", "")

    assert (updated.esp, updated.usage, updated.quantity, updated.stock_mini) == (
        None,
        None,
        4,
        None,
    )
    (stored,) = await repository.get_tubes()
    assert stored.esp is None
    assert stored.stock_mini is None


async def test_update_and_delete_list(repository: SqlTubeRepository) -> None:
    tube_list = await repository.create_list("Atelier")

    renamed = await repository.update_list(tube_list.id, "Garage")
    assert renamed.name == "Garage"

    await repository.delete_list(tube_list.id)
    assert await repository.get_lists() == []


async def test_deleting_list_cascades_to_tubes(repository: SqlTubeRepository) -> None:
    kept = await repository.create_list("Kept")
    doomed = await repository.create_list("Doomed")
    await repository.add_tube(kept.id, "Vis", None, None, 1, None)
    await repository.add_tube(doomed.id, "Colle", None, None, 1, None)
    await repository.add_tube(doomed.id, "Tape", None, None, 1, None)

    await repository.delete_list(doomed.id)

    assert [tube.name for tube in await repository.get_tubes()] == ["Vis"]


async def test_delete_tube(repository: SqlTubeRepository) -> None:
    tube_list = await repository.create_list("Atelier")
    tube = await repository.add_tube(tube_list.id, "Vis", None, None, 1, None)

    await repository.delete_tube(tube.id)

    assert await repository.get_tubes() == []


@pytest.mark.parametrize(
    ("name", "quantity", "stock_mini"),
    [
        ("", 1, None),
        ("Vis", -1, None),
        ("Vis", "abc", None),
        ("Vis", 1, -3),
    ],
)
async def test_invalid_tubes_are_rejected(
    repository: SqlTubeRepository, name, quantity, stock_mini
) -> None:
    tube_list = await repository.create_list("Atelier")

    with pytest.raises(RepositoryError):
        await repository.add_tube(tube_list.id, name, None, None, quantity, stock_mini)

    assert await repository.get_tubes() == []


async def test_missing_rows_raise_repository_error(repository: SqlTubeRepository) -> None:
    with pytest.raises(RepositoryError):
        await repository.update_list(404, "Nope")
    with pytest.raises(RepositoryError):
        await repository.delete_tube(404)
    with pytest.raises(RepositoryError):
        await repository.add_tube(404, "Vis", None, None, 1, None)


async def test_blank_list_name_is_rejected(repository: SqlTubeRepository) -> None:
    with pytest.raises(RepositoryError):
        await repository.create_list("   ")


async def test_mutations_are_published(repository: SqlTubeRepository) -> None:
    received: list[ChangeEvent] = []
    repository.subscribe("*", received.append)
    tube_list = await repository.create_list("Atelier")
    tube = await repository.add_tube(tube_list.id, "Vis", None, None, 1, None)
    await repository.update_tube(tube.id, "Vis", None, None, 2, None)
    await repository.delete_list(tube_list.id)

    assert [(change.table, change.event) for change in received] == [
        ("lists", "INSERT"),
        ("tubes", "INSERT"),
        ("tubes", "UPDATE"),
        ("lists", "DELETE"),
    ]


async def test_failed_mutation_is_not_published(repository: SqlTubeRepository) -> None:
    received: list[ChangeEvent] = []
    repository.subscribe("tubes", received.append)

    with pytest.raises(RepositoryError):
        await repository.delete_tube(1)

    assert received == []
