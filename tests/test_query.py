"""Tests for agreement filtering, counts and the live list view."""

from datetime import timedelta

import pytest

from lighthouse_sign.models import EffectiveStatus
from lighthouse_sign.models_template import SignerRole
from lighthouse_sign.query import ALL, AgreementListView, filter_agreements, status_counts

from conftest import NOW, TENANT, FixedClock, make_forms, make_three_party_template


@pytest.fixture
def mixed(builder, workflow):
    """One agreement per stored status, plus one that is past its deadline."""
    def build(title, days_ago=0):
        return builder.build_agreement(
            make_three_party_template(),
            make_forms(),
            sender="Jordan",
            document_title=title,
            now=NOW - timedelta(days=days_ago),
        )

    sent = build("Fresh intake")
    partial = workflow.sign(build("Half done"), SignerRole.PIR, values={"pir_sig": "A"}, now=NOW)
    voided = workflow.void(build("Cancelled"), actor="Jordan", now=NOW)
    stale = build("Old intake", days_ago=20)
    return [sent, partial, voided, stale]


class TestFilter:
    def test_all(self, mixed):
        assert len(filter_agreements(mixed, ALL, now=NOW)) == 4

    def test_expired_overlay(self, mixed):
        expired = filter_agreements(mixed, EffectiveStatus.EXPIRED, now=NOW)
        assert [a.document_title for a in expired] == ["Old intake"]
        sent = filter_agreements(mixed, "sent", now=NOW)
        assert [a.document_title for a in sent] == ["Fresh intake"]

    def test_unknown_status(self, mixed):
        with pytest.raises(ValueError):
            filter_agreements(mixed, "archived", now=NOW)

    def test_search_title_and_names(self, mixed):
        assert len(filter_agreements(mixed, search="intake", now=NOW)) == 2
        assert len(filter_agreements(mixed, search="SAM RIV", now=NOW)) == 4
        assert filter_agreements(mixed, search="nobody", now=NOW) == []


class TestCounts:
    def test_counts(self, mixed):
        counts = status_counts(mixed, now=NOW)
        assert counts == {
            "all": 4,
            "sent": 1,
            "partially_signed": 1,
            "completed": 0,
            "voided": 1,
            "expired": 1,
        }

    def test_empty(self):
        counts = status_counts([], now=NOW)
        assert counts["all"] == 0
        assert set(counts) == {ALL} | {s.value for s in EffectiveStatus}

    def test_counts_move_with_the_clock(self, mixed):
        later = NOW + timedelta(days=15)
        counts = status_counts(mixed, now=later)
        assert counts["expired"] == 3
        assert counts["voided"] == 1


class TestListView:
    def test_view_follows_store(self, tmp_store, builder, workflow):
        clock = FixedClock()
        changes = []
        with AgreementListView(tmp_store, TENANT, clock=clock) as view:
            view.on_change(lambda v: changes.append(v.counts()["all"]))
            assert view.agreements == []

            a = builder.build_agreement(
                make_three_party_template(), make_forms(), sender="J", now=NOW
            )
            tmp_store.create_agreement(a)
            assert [x.id for x in view.agreements] == [a.id]
            assert view.counts()["sent"] == 1

            tmp_store.update(a.id, lambda cur: workflow.void(cur, actor="J", now=NOW))
            assert view.filtered(EffectiveStatus.VOIDED)[0].id == a.id
            assert changes == [1, 1]

        tmp_store.create_agreement(
            builder.build_agreement(make_three_party_template(), make_forms(), sender="J", now=NOW)
        )
        assert len(view.agreements) == 1

    def test_expiry_without_writes(self, tmp_store, builder):
        clock = FixedClock()
        tmp_store.create_agreement(
            builder.build_agreement(make_three_party_template(), make_forms(), sender="J", now=NOW)
        )
        view = AgreementListView(tmp_store, TENANT, clock=clock).start()
        assert view.counts()["expired"] == 0
        updates = view.updates
        clock.advance(days=15)
        assert view.counts()["expired"] == 1
        assert view.effective_status(view.agreements[0]) == EffectiveStatus.EXPIRED
        assert view.updates == updates
        view.stop()

    def test_page_size(self, tmp_store, builder):
        for i in range(3):
            tmp_store.create_agreement(
                builder.build_agreement(
                    make_three_party_template(),
                    make_forms(),
                    sender="J",
                    now=NOW + timedelta(minutes=i),
                )
            )
        view = AgreementListView(tmp_store, TENANT, page_size=2).start()
        assert len(view.agreements) == 2
        view.stop()
