"""Repository contract tests, run against the in-memory and SQLite stores."""

import threading
from datetime import date, datetime, time
from decimal import Decimal

import pytest

from parcelflow.core.exceptions import StorageUnavailableError
from parcelflow.models.enums import (
    ACTIVE_STATUSES,
    CodStatus,
    OrderStatus,
    SettlementStatus,
)
from parcelflow.schemas.order import OrderFilters
from parcelflow.schemas.settlement import SettlementFilters
from parcelflow.services.orders.memory_repository import InMemoryOrderRepository

from conftest import build_order

SUBMITTED_AT = datetime(2026, 2, 5, 19, 0)


# ==================================================================
# Orders
# ==================================================================


class TestCreate:
    def test_create_and_get(self, repository):
        order = build_order(cod_amount="42.50")
        stored = repository.create(order)

        assert stored.internal_order_id == order.internal_order_id
        fetched = repository.get(order.internal_order_id)
        assert fetched.external_order_id == order.external_order_id
        assert fetched.cod_amount == Decimal("42.50")
        assert fetched.cod_status == CodStatus.PENDING

    def test_duplicate_natural_key_returns_existing(self, repository):
        first = repository.create(build_order(external_order_id="EXT-DUP"))
        second = repository.create(
            build_order(external_order_id="EXT-DUP", recipient_name="Someone Else")
        )

        assert second.internal_order_id == first.internal_order_id
        assert second.recipient_name == first.recipient_name
        assert len(repository.find_all(limit=None)) == 1

    def test_find_by_external_id(self, repository):
        order = repository.create(build_order(external_order_id="EXT-77"))
        found = repository.find_by_external_id("EXT-77", "gomag")
        assert found.internal_order_id == order.internal_order_id
        assert repository.find_by_external_id("EXT-77", "shopify") is None

    def test_get_missing(self, repository):
        assert repository.get("PF-missing") is None

    def test_creation_is_recorded_in_history(self, repository):
        order = repository.create(build_order())
        history = repository.list_history(order.internal_order_id)
        assert [h.status for h in history] == [OrderStatus.PENDING]

    def test_raw_payload_roundtrip(self, repository):
        payload = {"order_id": 1, "customer": {"name": "Ion"}, "items": [1, 2]}
        order = repository.create(build_order(raw_payload=payload))
        assert repository.get(order.internal_order_id).raw_payload == payload


class TestFindAll:
    def test_newest_first_with_paging(self, repository):
        for hour in (8, 10, 9):
            repository.create(build_order(created_at=datetime(2026, 2, 5, hour)))

        orders = repository.find_all(limit=2)
        assert [o.created_at.hour for o in orders] == [10, 9]
        assert [o.created_at.hour for o in repository.find_all(limit=2, offset=2)] == [8]

    def test_filters(self, repository):
        a = repository.create(build_order(aggregator_source="shopify"))
        repository.create(build_order(aggregator_source="gomag", merchant_id=5))
        c = repository.create(
            build_order(aggregator_source="overflow_in", is_overflow=True)
        )

        assert [o.internal_order_id for o in repository.find_all(
            OrderFilters(source="SHOPIFY")
        )] == [a.internal_order_id]
        assert [o.internal_order_id for o in repository.find_all(
            OrderFilters(is_overflow=True)
        )] == [c.internal_order_id]
        assert len(repository.find_all(OrderFilters(merchant_id=5))) == 1
        assert len(repository.find_all(OrderFilters(status=OrderStatus.PENDING))) == 3
        assert repository.find_all(OrderFilters(status=OrderStatus.DELIVERED)) == []

    def test_date_range(self, repository):
        repository.create(build_order(created_at=datetime(2026, 2, 1, 12)))
        repository.create(build_order(created_at=datetime(2026, 2, 5, 12)))

        found = repository.find_all(
            OrderFilters(
                date_from=datetime(2026, 2, 4),
                date_to=datetime(2026, 2, 6),
            )
        )
        assert [o.created_at.day for o in found] == [5]


class TestTransition:
    def test_conditional_update_applies(self, repository):
        order = repository.create(build_order())
        updated = repository.transition(
            order.internal_order_id,
            {OrderStatus.PENDING},
            {"status": OrderStatus.ASSIGNED, "driver_id": 4, "otp_code": "A2B3C4"},
            note="Driver 4 assigned",
        )

        assert updated.status == OrderStatus.ASSIGNED
        assert updated.driver_id == 4
        assert updated.otp_code == "A2B3C4"
        history = repository.list_history(order.internal_order_id)
        assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.ASSIGNED]
        assert history[-1].notes == "Driver 4 assigned"

    def test_stale_expected_status_is_rejected(self, repository):
        order = repository.create(build_order())
        result = repository.transition(
            order.internal_order_id,
            {OrderStatus.IN_TRANSIT},
            {"status": OrderStatus.DELIVERED},
        )

        assert result is None
        assert repository.get(order.internal_order_id).status == OrderStatus.PENDING
        assert len(repository.list_history(order.internal_order_id)) == 1

    def test_missing_order(self, repository):
        assert (
            repository.transition("PF-missing", ACTIVE_STATUSES, {"notes": "x"}) is None
        )

    def test_non_status_change_writes_no_history(self, repository):
        order = repository.create(build_order())
        repository.transition(order.internal_order_id, ACTIVE_STATUSES, {"notes": "hi"})
        assert repository.get(order.internal_order_id).notes == "hi"
        assert len(repository.list_history(order.internal_order_id)) == 1

    def test_helpers(self, repository):
        order = repository.create(build_order())
        oid = order.internal_order_id

        assert repository.assign_driver(oid, 9, "K7M3P9").status == OrderStatus.ASSIGNED
        assert repository.update_status(oid, OrderStatus.IN_TRANSIT).status == (
            OrderStatus.IN_TRANSIT
        )
        cancelled = repository.cancel(oid, "Client refused")
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.notes == "Client refused"
        # cancelled is not an active status
        assert repository.assign_driver(oid, 9, "K7M3P9") is None


class TestUpdateCodAmount:
    def test_correction_keeps_cod_status_consistent(self, repository):
        order = repository.create(build_order(cod_amount="0"))
        oid = order.internal_order_id

        raised = repository.update_cod_amount(oid, Decimal("30"))
        assert raised.cod_amount == Decimal("30")
        assert raised.cod_status == CodStatus.PENDING

        cleared = repository.update_cod_amount(oid, Decimal("0"))
        assert cleared.cod_status == CodStatus.NONE

    def test_missing_order(self, repository):
        assert repository.update_cod_amount("PF-missing", Decimal("1")) is None


class TestOrderStats:
    def test_counts(self, repository, make_delivered_order):
        repository.create(build_order(aggregator_source="shopify"))
        repository.create(build_order(aggregator_source="overflow_in", is_overflow=True))
        make_delivered_order(driver_id=1, cod_amount="10")

        stats = repository.order_stats()
        assert stats.total == 3
        assert stats.by_status["pending"] == 2
        assert stats.by_status["delivered"] == 1
        assert stats.by_status["cancelled"] == 0
        assert stats.by_source["shopify"] == 1
        assert stats.by_source["gomag"] == 1
        assert stats.overflow_orders == 1


# ==================================================================
# COD and settlements
# ==================================================================


class TestMarkCollected:
    def test_only_delivered_cod_pending_orders(self, repository, make_delivered_order):
        cod = make_delivered_order(driver_id=3, cod_amount="50")
        prepaid = make_delivered_order(driver_id=3, cod_amount="0")
        undelivered = repository.create(build_order(cod_amount="20"))

        affected = repository.mark_orders_collected(
            [cod.internal_order_id, prepaid.internal_order_id,
             undelivered.internal_order_id, "PF-missing"]
        )

        assert affected == 1
        assert repository.get(cod.internal_order_id).cod_status == CodStatus.COLLECTED
        assert repository.get(undelivered.internal_order_id).cod_status == CodStatus.PENDING

    def test_repeat_is_noop(self, repository, make_delivered_order):
        cod = make_delivered_order(driver_id=3, cod_amount="50")
        assert repository.mark_orders_collected([cod.internal_order_id]) == 1
        assert repository.mark_orders_collected([cod.internal_order_id]) == 0

    def test_scoped_to_driver(self, repository, make_delivered_order):
        mine = make_delivered_order(driver_id=3, cod_amount="50")
        theirs = make_delivered_order(driver_id=5, cod_amount="30")

        affected = repository.mark_orders_collected(
            [mine.internal_order_id, theirs.internal_order_id], driver_id=3
        )

        assert affected == 1
        assert repository.get(mine.internal_order_id).cod_status == CodStatus.COLLECTED
        assert repository.get(theirs.internal_order_id).cod_status == CodStatus.PENDING


class TestCreateSettlement:
    def test_claims_and_snapshots(self, repository, make_delivered_order):
        a = make_delivered_order(driver_id=3, cod_amount="50.00")
        b = make_delivered_order(driver_id=3, cod_amount="75.00")
        repository.mark_orders_collected([b.internal_order_id])

        settlement, claimed = repository.create_settlement(
            "SET-20260205-D3-AAAA",
            3,
            date(2026, 2, 5),
            [a.internal_order_id, b.internal_order_id],
            SUBMITTED_AT,
        )

        assert claimed == [a.internal_order_id, b.internal_order_id]
        assert settlement.total_orders == 2
        assert settlement.total_cod_amount == Decimal("125.00")
        assert settlement.status == SettlementStatus.SUBMITTED
        assert settlement.submitted_at == SUBMITTED_AT
        for oid in claimed:
            order = repository.get(oid)
            assert order.cod_status == CodStatus.SUBMITTED
            assert order.settlement_id == "SET-20260205-D3-AAAA"

    def test_ineligible_orders_are_skipped(self, repository, make_delivered_order):
        mine = make_delivered_order(driver_id=3, cod_amount="50")
        other_driver = make_delivered_order(driver_id=8, cod_amount="20")
        prepaid = make_delivered_order(driver_id=3, cod_amount="0")
        undelivered = repository.create(build_order(cod_amount="10"))

        _, claimed = repository.create_settlement(
            "SET-20260205-D3-BBBB",
            3,
            date(2026, 2, 5),
            [mine.internal_order_id, other_driver.internal_order_id,
             prepaid.internal_order_id, undelivered.internal_order_id],
            SUBMITTED_AT,
        )

        assert claimed == [mine.internal_order_id]
        assert repository.get(other_driver.internal_order_id).settlement_id is None

    def test_nothing_claimable(self, repository, make_delivered_order):
        prepaid = make_delivered_order(driver_id=3, cod_amount="0")
        result = repository.create_settlement(
            "SET-20260205-D3-CCCC", 3, date(2026, 2, 5),
            [prepaid.internal_order_id], SUBMITTED_AT,
        )
        assert result is None
        assert repository.get_settlement("SET-20260205-D3-CCCC") is None

    def test_order_cannot_be_settled_twice(self, repository, make_delivered_order):
        order = make_delivered_order(driver_id=3, cod_amount="50")
        first = repository.create_settlement(
            "SET-20260205-D3-D001", 3, date(2026, 2, 5),
            [order.internal_order_id], SUBMITTED_AT,
        )
        second = repository.create_settlement(
            "SET-20260205-D3-D002", 3, date(2026, 2, 5),
            [order.internal_order_id], SUBMITTED_AT,
        )

        assert first is not None
        assert second is None
        assert repository.get(order.internal_order_id).settlement_id == (
            "SET-20260205-D3-D001"
        )

    def test_snapshot_survives_cod_correction(self, repository, make_delivered_order):
        order = make_delivered_order(driver_id=3, cod_amount="50")
        repository.create_settlement(
            "SET-20260205-D3-EEEE", 3, date(2026, 2, 5),
            [order.internal_order_id], SUBMITTED_AT,
        )

        repository.update_cod_amount(order.internal_order_id, Decimal("999"))

        settlement = repository.get_settlement("SET-20260205-D3-EEEE")
        assert settlement.total_cod_amount == Decimal("50")
        assert repository.get(order.internal_order_id).cod_status == CodStatus.SUBMITTED


class TestConcurrentSettlements:
    """Overlapping hand-overs racing for the same orders."""

    WORKERS = 8

    def _race(self, repository, requests):
        barrier = threading.Barrier(len(requests))
        outcomes = {}
        errors = []

        def worker(index, order_ids):
            barrier.wait()
            try:
                outcomes[index] = repository.create_settlement(
                    f"SET-20260205-D3-{index:04X}",
                    3,
                    date(2026, 2, 5),
                    order_ids,
                    SUBMITTED_AT,
                )
            except Exception as exc:  # pragma: no cover - surfaced by the assert
                errors.append(exc)

        threads = [
            threading.Thread(target=worker, args=(i, ids))
            for i, ids in enumerate(requests)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        return [outcome for outcome in outcomes.values() if outcome is not None]

    def _assert_consistent(self, repository, orders, winners):
        amounts = {o.internal_order_id: o.cod_amount for o in orders}
        claimed_by = {}
        for settlement, claimed in winners:
            for order_id in claimed:
                assert order_id not in claimed_by, f"{order_id} settled twice"
                claimed_by[order_id] = settlement.settlement_id
            assert settlement.total_orders == len(claimed)
            assert settlement.total_cod_amount == sum(
                (amounts[i] for i in claimed), Decimal("0")
            )

        for order in orders:
            stored = repository.get(order.internal_order_id)
            assert stored.settlement_id == claimed_by.get(order.internal_order_id)
            expected = (
                CodStatus.SUBMITTED
                if order.internal_order_id in claimed_by
                else CodStatus.PENDING
            )
            assert stored.cod_status == expected

        stored_settlements = repository.find_settlements(limit=None)
        assert {s.settlement_id for s in stored_settlements} == {
            s.settlement_id for s, _ in winners
        }
        return claimed_by

    def test_same_orders_settled_once(self, repository, make_delivered_order):
        orders = [
            make_delivered_order(driver_id=3, cod_amount=f"{10 + n}.50")
            for n in range(6)
        ]
        ids = [o.internal_order_id for o in orders]

        winners = self._race(repository, [list(ids) for _ in range(self.WORKERS)])

        assert len(winners) == 1
        claimed_by = self._assert_consistent(repository, orders, winners)
        assert set(claimed_by) == set(ids)

    def test_overlapping_orders_never_double_claimed(
        self, repository, make_delivered_order
    ):
        orders = [
            make_delivered_order(driver_id=3, cod_amount=f"{5 * (n + 1)}")
            for n in range(self.WORKERS)
        ]
        ids = [o.internal_order_id for o in orders]
        # each request shares half of its orders with the next one
        requests = [
            [ids[i], ids[(i + 1) % len(ids)]] for i in range(self.WORKERS)
        ]

        winners = self._race(repository, requests)

        assert winners
        claimed_by = self._assert_consistent(repository, orders, winners)
        total_settled = sum((s.total_cod_amount for s, _ in winners), Decimal("0"))
        assert total_settled == sum(
            (o.cod_amount for o in orders if o.internal_order_id in claimed_by),
            Decimal("0"),
        )


class TestSettlementWorkflow:
    def _submit(self, repository, make_delivered_order, settlement_id="SET-20260205-D3-F001"):
        a = make_delivered_order(driver_id=3, cod_amount="50")
        b = make_delivered_order(driver_id=3, cod_amount="75")
        repository.create_settlement(
            settlement_id, 3, date(2026, 2, 5),
            [a.internal_order_id, b.internal_order_id], SUBMITTED_AT,
        )
        return settlement_id, [a.internal_order_id, b.internal_order_id]

    def test_verify_cascades_to_orders(self, repository, make_delivered_order):
        sid, order_ids = self._submit(repository, make_delivered_order)
        verified_at = datetime(2026, 2, 6, 9, 0)

        verified = repository.verify_settlement(sid, "ana.finance", "counted", verified_at)

        assert verified.status == SettlementStatus.VERIFIED
        assert verified.verified_by == "ana.finance"
        assert verified.verified_at == verified_at
        assert verified.notes == "counted"
        assert {repository.get(o).cod_status for o in order_ids} == {CodStatus.SETTLED}

    def test_verify_requires_submitted(self, repository, make_delivered_order):
        sid, _ = self._submit(repository, make_delivered_order)
        repository.verify_settlement(sid, "ana", None, SUBMITTED_AT)
        assert repository.verify_settlement(sid, "ana", None, SUBMITTED_AT) is None
        assert repository.verify_settlement("SET-missing", "ana", None, SUBMITTED_AT) is None

    def test_transfer_requires_verified(self, repository, make_delivered_order):
        sid, _ = self._submit(repository, make_delivered_order)

        assert repository.mark_settlement_transferred(sid, "OP-1", SUBMITTED_AT) is None
        assert repository.get_settlement(sid).status == SettlementStatus.SUBMITTED

        repository.verify_settlement(sid, "ana", None, SUBMITTED_AT)
        transferred = repository.mark_settlement_transferred(
            sid, "OP-1", datetime(2026, 2, 7, 10, 0)
        )
        assert transferred.status == SettlementStatus.TRANSFERRED
        assert transferred.transfer_reference == "OP-1"
        assert repository.mark_settlement_transferred(sid, "OP-2", SUBMITTED_AT) is None

    def test_find_settlements_filters(self, repository, make_delivered_order):
        sid, _ = self._submit(repository, make_delivered_order)
        other = make_delivered_order(driver_id=8, cod_amount="20")
        repository.create_settlement(
            "SET-20260205-D8-G001", 8, date(2026, 2, 5),
            [other.internal_order_id], SUBMITTED_AT,
        )

        assert [s.settlement_id for s in repository.find_settlements(
            SettlementFilters(driver_id=3)
        )] == [sid]
        assert len(repository.find_settlements()) == 2
        assert repository.find_settlements(
            SettlementFilters(status=SettlementStatus.VERIFIED)
        ) == []
        assert len(repository.find_settlements(
            SettlementFilters(date_from=date(2026, 2, 5), date_to=date(2026, 2, 5))
        )) == 2


class TestDeliveredQueries:
    def test_by_delivery_date_and_driver(self, repository, make_delivered_order):
        feb5 = make_delivered_order(driver_id=3, cod_amount="50", on=date(2026, 2, 5))
        make_delivered_order(driver_id=3, cod_amount="50", on=date(2026, 2, 6))
        make_delivered_order(driver_id=4, cod_amount="50", on=date(2026, 2, 5))
        repository.create(build_order(cod_amount="10"))

        on_feb5 = repository.find_delivered_orders(on=date(2026, 2, 5))
        assert len(on_feb5) == 2
        mine = repository.find_delivered_orders(on=date(2026, 2, 5), driver_id=3)
        assert [o.internal_order_id for o in mine] == [feb5.internal_order_id]
        assert len(repository.find_delivered_orders()) == 3

    def test_day_boundaries(self, repository, make_delivered_order):
        make_delivered_order(driver_id=3, on=date(2026, 2, 5), at=time(0, 0))
        make_delivered_order(driver_id=3, on=date(2026, 2, 5), at=time(23, 59, 59))
        make_delivered_order(driver_id=3, on=date(2026, 2, 6), at=time(0, 0))
        assert len(repository.find_delivered_orders(on=date(2026, 2, 5))) == 2

    def test_unsettled(self, repository, make_delivered_order):
        pending = make_delivered_order(driver_id=3, cod_amount="50")
        collected = make_delivered_order(driver_id=3, cod_amount="25")
        submitted = make_delivered_order(driver_id=3, cod_amount="75")
        make_delivered_order(driver_id=3, cod_amount="0")
        repository.mark_orders_collected([collected.internal_order_id])
        repository.create_settlement(
            "SET-20260205-D3-H001", 3, date(2026, 2, 5),
            [submitted.internal_order_id], SUBMITTED_AT,
        )

        unsettled = repository.find_unsettled_orders(3)
        assert {o.internal_order_id for o in unsettled} == {
            pending.internal_order_id,
            collected.internal_order_id,
        }


# ==================================================================
# In-memory specifics
# ==================================================================


class TestInMemoryRepository:
    def test_capacity_is_enforced(self):
        repository = InMemoryOrderRepository(capacity=2)
        repository.create(build_order())
        repository.create(build_order())
        with pytest.raises(StorageUnavailableError):
            repository.create(build_order())

    def test_duplicate_allowed_at_capacity(self):
        repository = InMemoryOrderRepository(capacity=1)
        first = repository.create(build_order(external_order_id="EXT-FULL"))
        again = repository.create(build_order(external_order_id="EXT-FULL"))
        assert again.internal_order_id == first.internal_order_id

    def test_returned_records_are_copies(self):
        repository = InMemoryOrderRepository()
        order = repository.create(build_order(raw_payload={"a": {"b": 1}}))

        order.raw_payload["a"]["b"] = 2
        fetched = repository.get(order.internal_order_id)
        fetched.notes = "mutated"

        again = repository.get(order.internal_order_id)
        assert again.raw_payload == {"a": {"b": 1}}
        assert again.notes is None
