from quarry.core import IntegerField, Model, StringField
from quarry.persistence.unit_of_work import UnitOfWork


class Ticket(Model):
    title = StringField()
    priority = IntegerField(default=0)


def test_register_new_and_deleted_cancel_out():
    uow = UnitOfWork()
    ticket = Ticket(title="draft")
    uow.register_new(ticket)
    assert uow.has_pending()

    uow.register_deleted(ticket)
    assert ticket not in uow.new
    assert ticket not in uow.deleted
    assert not uow.has_pending()


def test_dirty_registration_ignores_new_and_deleted():
    uow = UnitOfWork()
    fresh = Ticket(title="fresh")
    gone = Ticket(id=2, title="gone")
    uow.register_new(fresh)
    uow.register_deleted(gone)

    uow.register_dirty(fresh)
    uow.register_dirty(gone)
    assert not uow.dirty


def test_register_deleted_drops_dirty_and_forced_marks():
    uow = UnitOfWork()
    ticket = Ticket(id=1, title="t")
    uow.register_dirty(ticket, force=True)
    assert ticket in uow.forced

    uow.register_deleted(ticket)
    assert ticket not in uow.dirty
    assert ticket not in uow.forced
    assert list(uow.deleted) == [ticket]


def test_collect_dirty_uses_snapshots_and_candidate_order():
    uow = UnitOfWork()
    first = Ticket(id=1, title="one")
    second = Ticket(id=2, title="two")
    untouched = Ticket(id=3, title="three")
    marked = Ticket(id=4, title="four")
    uow.register_dirty(marked)

    second.priority = 5
    first.title = "uno"

    collected = uow.collect_dirty([first, second, untouched, marked])
    assert collected == [first, second, marked]
    assert list(uow.dirty) == collected


def test_collect_dirty_skips_read_only_unless_marked():
    uow = UnitOfWork()
    ticket = Ticket(id=1, title="one")
    ticket._read_only = True
    ticket.title = "changed"
    assert uow.collect_dirty([ticket]) == []

    uow.register_dirty(ticket)
    assert uow.collect_dirty([ticket]) == [ticket]


def test_snapshot_and_restore():
    uow = UnitOfWork()
    kept = Ticket(title="kept")
    uow.register_new(kept)
    snapshot = uow.snapshot()

    later = Ticket(title="later")
    uow.register_new(later)
    uow.register_deleted(Ticket(id=9, title="old"))

    uow.restore(snapshot)
    assert list(uow.new) == [kept]
    assert not uow.deleted


def test_forget_and_clear():
    uow = UnitOfWork()
    ticket = Ticket(id=1, title="t")
    uow.register_dirty(ticket, force=True)
    uow.forget(ticket)
    assert not uow.dirty and not uow.forced

    uow.register_new(Ticket(title="n"))
    uow.clear()
    assert not uow.has_pending()
