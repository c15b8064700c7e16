"""
Contract Tests
==============

Immutability, ordering and equality of the core value types.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from mdibverify.contracts.base import Error, ErrorCode, Result, TimeRange, Timestamp
from mdibverify.contracts.mdib import MDS, Descriptor, MdibVersion
from mdibverify.contracts.messages import (
    ManipulationRecord, ManipulationResponse, ManipulationResult,
)
from mdibverify.contracts.reports import (
    ModificationKind, Report, ReportKind, any_report, of_kind, state_reports,
)

from tests.fixtures import BASE_TIME, context_state, single_state


class TestMdibVersion:

    def test_ordering_within_sequence(self):
        older = MdibVersion("urn:uuid:a", instance_id=0, version=9)
        newer = MdibVersion("urn:uuid:a", instance_id=1, version=0)

        assert older < newer
        assert newer >= older
        assert MdibVersion("urn:uuid:a", version=3) <= MdibVersion("urn:uuid:a", version=3)

    def test_different_sequences_are_not_comparable(self):
        a = MdibVersion("urn:uuid:a", version=1)
        b = MdibVersion("urn:uuid:b", version=2)

        assert not a.comparable_with(b)
        with pytest.raises(ValueError):
            _ = a < b

    def test_equality_is_structural(self):
        assert MdibVersion("urn:uuid:a", 0, 1) == MdibVersion(sequence_id="urn:uuid:a", version=1)
        assert MdibVersion("urn:uuid:a", 0, 1) != MdibVersion("urn:uuid:b", 0, 1)


class TestDescriptorsAndStates:

    def test_attributes_are_sorted_so_order_does_not_matter(self):
        first = Descriptor.create("mds0", MDS, Zeta="1", Alpha="2")
        second = Descriptor.create("mds0", MDS, Alpha="2", Zeta="1")

        assert first == second
        assert first.attributes == (("Alpha", "2"), ("Zeta", "1"))
        assert first.attribute("Zeta") == "1"
        assert first.attribute("Missing") is None

    def test_descriptor_content_ignores_version_and_parent(self):
        original = Descriptor.create("vmd1", "VmdDescriptor", parent_handle="mds0", Label="x")
        bumped = Descriptor.create("vmd1", "VmdDescriptor", descriptor_version=3, Label="x")

        assert original.content_equals(bumped)
        assert not original.content_equals(Descriptor.create("vmd1", "VmdDescriptor", Label="y"))

    def test_empty_handle_rejected(self):
        with pytest.raises(ValueError):
            Descriptor.create("", MDS)

    def test_descriptors_are_frozen(self):
        descriptor = Descriptor.create("mds0", MDS)

        with pytest.raises(FrozenInstanceError):
            descriptor.handle = "other"

    def test_single_state_keyed_by_descriptor(self):
        state = single_state("m1")

        assert not state.is_multi_state
        assert state.key == "m1"

    def test_multi_state_keyed_by_own_handle(self):
        state = context_state("ctx1", "pat0")

        assert state.is_multi_state
        assert state.key == "ctx1"

    def test_state_content_ignores_version(self):
        assert single_state("m1", version=1, Value="3").content_equals(single_state("m1", version=8, Value="3"))
        assert not single_state("m1", Value="3").content_equals(single_state("m1", Value="4"))


class TestReports:

    def test_state_report_rejects_description_kind(self):
        with pytest.raises(ValueError):
            Report.state_report(ReportKind.DESCRIPTION_MODIFICATION, MdibVersion("s"), ())

    def test_body_type_round_trip(self):
        for kind in ReportKind:
            assert ReportKind.from_body_type(kind.body_type) is kind
        with pytest.raises(ValueError):
            ReportKind.from_body_type("msg:GetMdibResponse")

    def test_state_lookup(self):
        report = Report.state_report(
            ReportKind.EPISODIC_CONTEXT, MdibVersion("s", version=1),
            (context_state("ctx1"), context_state("ctx2")),
        )

        assert report.state_for("ctx2").handle == "ctx2"
        assert report.state_for("ctx3") is None
        assert report.descriptor_handles() == ()
        assert report.sequence_id == "s"

    def test_filters(self):
        metric = Report.state_report(ReportKind.EPISODIC_METRIC, MdibVersion("s"), ())
        description = Report.description_modification(MdibVersion("s"))

        assert any_report(metric) and any_report(description)
        assert state_reports(metric) and not state_reports(description)
        only_metric = of_kind(ReportKind.EPISODIC_METRIC)
        assert only_metric(metric) and not only_metric(description)

    def test_modification_kind_wire_values(self):
        assert [k.value for k in ModificationKind] == ["Crt", "Upt", "Del"]


class TestBaseTypes:

    def test_result_carries_either_value_or_error(self):
        ok = Result.success(3)
        failed = Result.failure(Error.create(ErrorCode.UNKNOWN_HANDLE, "gone", handle="h"))

        assert ok.is_success and not ok.is_failure
        assert failed.is_failure
        assert failed.error.context_value("handle") == "h"

    def test_error_context_is_additive(self):
        error = Error.create(ErrorCode.MALFORMED_REPORT, "bad").with_context("report", "r1")

        assert error.context_value("report") == "r1"
        assert error.context_value("missing") is None

    def test_naive_timestamps_become_utc(self):
        stamp = Timestamp(datetime(2024, 1, 1, 10, 0))

        assert stamp.value.tzinfo is timezone.utc
        assert Timestamp.from_iso("2024-01-01T10:00:00Z") == stamp

    def test_time_range_is_inclusive(self):
        start = Timestamp(BASE_TIME)
        window = TimeRange(start, start.plus(5))

        assert window.contains(start)
        assert window.contains(start.plus(5))
        assert not window.contains(start.plus(5.001))
        assert start.seconds_until(start.plus(5)) == 5.0

    def test_time_range_rejects_reversed_bounds(self):
        start = Timestamp(BASE_TIME)

        with pytest.raises(ValueError):
            TimeRange(start.plus(1), start)


class TestManipulationRecords:

    def test_record_captures_response_and_window(self):
        start = Timestamp(BASE_TIME)
        record = ManipulationRecord.create(
            "r1", "SetComponentActivation", {"handle": "vmd1", "activation": "On"},
            ManipulationResponse(ManipulationResult.SUCCESS, value="ok"),
            start, start.plus(2),
        )

        assert record.parameter("handle") == "vmd1"
        assert record.parameters == (("activation", "On"), ("handle", "vmd1"))
        assert record.result is ManipulationResult.SUCCESS
        assert record.value == "ok"
        assert record.window.contains(start.plus(1))

    def test_only_success_counts_as_succeeded(self):
        assert ManipulationResponse(ManipulationResult.SUCCESS).succeeded
        for result in (ManipulationResult.FAIL, ManipulationResult.NOT_SUPPORTED,
                       ManipulationResult.NOT_IMPLEMENTED):
            assert not ManipulationResponse(result).succeeded
