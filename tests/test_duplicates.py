import threading
from pathlib import Path

from pelico.models import ContentIdentity, FileLocation
from pelico.scanning.duplicates import AlreadyIndexed, DuplicateIndex, KnownDuplicate, NewLocation


def ident(n: int) -> ContentIdentity:
    return ContentIdentity(f"{n:064x}", 100 + n)


def loc(path: str, identity: ContentIdentity, game_id=None, server="local") -> FileLocation:
    return FileLocation(path=Path(path), identity=identity, game_id=game_id, server_location=server)


def test_register_outcomes():
    index = DuplicateIndex()
    i = ident(1)

    first = index.register(i, loc("/lib/a.rom", i))
    assert isinstance(first, NewLocation)

    second = index.register(i, loc("/lib/b.rom", i))
    assert isinstance(second, KnownDuplicate)
    assert [l.path for l in second.existing] == [Path("/lib/a.rom")]

    again = index.register(i, loc("/lib/a.rom", i))
    assert isinstance(again, AlreadyIndexed)
    assert len(index.locations(i)) == 2


def test_same_path_on_other_server_is_a_new_location():
    index = DuplicateIndex()
    i = ident(1)
    index.register(i, loc("/roms/a.rom", i, server="nas"))
    outcome = index.register(i, loc("/roms/a.rom", i, server="local"))
    assert isinstance(outcome, KnownDuplicate)


def test_seeded_location_is_already_indexed():
    index = DuplicateIndex()
    i = ident(1)
    index.seed(i, [loc("/lib/a.rom", i, game_id=7)])
    index.seed(i, [loc("/lib/a.rom", i, game_id=7)])

    outcome = index.register(i, loc("/lib/a.rom", i))
    assert isinstance(outcome, AlreadyIndexed)
    assert outcome.location.game_id == 7
    assert index.duplicate_groups() == []


def test_copies_linked_to_one_game_are_not_duplicates():
    index = DuplicateIndex()
    i = ident(1)
    index.seed(i, [loc("/nas/a.rom", i, game_id=3, server="nas"), loc("/local/a.rom", i, game_id=3)])
    index.register(i, loc("/local/a.rom", i))
    assert index.duplicate_groups() == []


def test_groups_spanning_two_games_are_reported():
    index = DuplicateIndex()
    i = ident(1)
    index.seed(i, [loc("/lib/a.rom", i, game_id=1), loc("/lib/b.rom", i, game_id=2)])
    index.register(i, loc("/lib/a.rom", i))

    [group] = index.duplicate_groups()
    assert group.game_ids == {1, 2}
    assert sorted(group.paths) == [Path("/lib/a.rom"), Path("/lib/b.rom")]


def test_seed_only_identities_are_not_reported():
    index = DuplicateIndex()
    i = ident(1)
    index.seed(i, [loc("/lib/a.rom", i, game_id=1), loc("/lib/b.rom", i, game_id=2)])
    assert index.duplicate_groups() == []


def test_clear_resets_index():
    index = DuplicateIndex()
    i = ident(1)
    index.register(i, loc("/a.rom", i))
    index.clear()
    assert len(index) == 0
    assert isinstance(index.register(i, loc("/a.rom", i)), NewLocation)


def test_concurrent_registration_yields_one_new_location_per_identity():
    index = DuplicateIndex()
    n_threads, n_identities = 8, 25
    outcomes = []
    outcomes_lock = threading.Lock()
    barrier = threading.Barrier(n_threads)

    def worker(t: int):
        barrier.wait()
        local = []
        for k in range(n_identities):
            i = ident(k)
            local.append(index.register(i, loc(f"/t{t}/f{k}.rom", i)))
        with outcomes_lock:
            outcomes.extend(local)

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(n_threads)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    new = [o for o in outcomes if isinstance(o, NewLocation)]
    dup = [o for o in outcomes if isinstance(o, KnownDuplicate)]
    assert len(new) == n_identities
    assert len(dup) == n_identities * (n_threads - 1)
    assert len({o.location.identity for o in new}) == n_identities
    for k in range(n_identities):
        assert len(index.locations(ident(k))) == n_threads
    assert len(index.duplicate_groups()) == n_identities
