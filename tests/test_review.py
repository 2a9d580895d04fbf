"""Tests for the denylist self-review pass."""

from bouncer.engine.deadline import Deadline
from bouncer.engine.review import review_denylist
from bouncer.schemas.mail import ThreadMessage
from fakes import FakeMailbox, FakeMonotonic


def _thread(*senders: str) -> list[ThreadMessage]:
    return [ThreadMessage(message_id=f"<{i}>", sender=s) for i, s in enumerate(senders)]


class FailingMailbox(FakeMailbox):
    async def threads_from(self, address, *, since):
        if address == "boom@x.example":
            raise ConnectionError("imap dropped")
        return await super().threads_from(address, since=since)


class TestReviewDenylist:
    async def test_removes_sender_with_trusted_reply(self, store):
        store.add("vendor@x.example")
        store.add("spammer@y.example")
        mailbox = FakeMailbox()
        mailbox.sender_threads["vendor@x.example"] = [
            _thread("vendor@x.example", "Ann <ann@ourco.example>")
        ]
        mailbox.sender_threads["spammer@y.example"] = [_thread("spammer@y.example")]

        removed = await review_denylist(
            store=store, mailbox=mailbox, trusted_domains=["ourco.example"], window_days=7
        )

        assert removed == 1
        assert store.lookup("vendor@x.example").found is False
        assert store.lookup("spammer@y.example").found is True

    async def test_old_entries_are_not_reviewed(self, store, clock):
        store.add("vendor@x.example")
        clock.advance(days=10)
        mailbox = FakeMailbox()
        mailbox.sender_threads["vendor@x.example"] = [_thread("ann@ourco.example")]

        removed = await review_denylist(
            store=store, mailbox=mailbox, trusted_domains=["ourco.example"], window_days=7
        )

        assert removed == 0
        assert store.lookup("vendor@x.example").found is True

    async def test_no_trusted_domains_is_noop(self, store):
        store.add("vendor@x.example")
        mailbox = FakeMailbox()
        mailbox.sender_threads["vendor@x.example"] = [_thread("ann@ourco.example")]

        assert await review_denylist(store=store, mailbox=mailbox, trusted_domains=[], window_days=7) == 0
        assert store.lookup("vendor@x.example").found is True

    async def test_search_failure_skips_entry(self, store):
        store.add("boom@x.example")
        store.add("vendor@x.example")
        mailbox = FailingMailbox()
        mailbox.sender_threads["vendor@x.example"] = [_thread("ann@ourco.example")]

        removed = await review_denylist(
            store=store, mailbox=mailbox, trusted_domains=["ourco.example"], window_days=7
        )

        assert removed == 1
        assert store.lookup("boom@x.example").found is True

    async def test_stops_when_budget_spent(self, store, clock):
        store.add("a@x.example")
        clock.advance(minutes=1)
        store.add("b@x.example")
        clock.advance(minutes=1)
        mailbox = FakeMailbox()
        for address in ("a@x.example", "b@x.example"):
            mailbox.sender_threads[address] = [_thread("ann@ourco.example")]

        # 1s per read: construction at 0, first poll at 1 (< 1.5), second at 2.
        deadline = Deadline(1.5, clock=FakeMonotonic(step=1.0))
        removed = await review_denylist(
            store=store,
            mailbox=mailbox,
            trusted_domains=["ourco.example"],
            window_days=7,
            deadline=deadline,
        )

        assert removed == 1
        assert store.lookup("a@x.example").found is False
        assert store.lookup("b@x.example").found is True

    async def test_trusted_subdomain_counts(self, store, clock):
        store.add("vendor@x.example")
        clock.advance(hours=2)
        mailbox = FakeMailbox()
        mailbox.sender_threads["vendor@x.example"] = [
            _thread("vendor@x.example"),
            _thread("bob@mail.ourco.example"),
        ]

        removed = await review_denylist(
            store=store, mailbox=mailbox, trusted_domains=["ourco.example"], window_days=1
        )

        assert removed == 1
