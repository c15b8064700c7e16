"""
Snapshot Model Tests
====================

Queries, derived indices and structural verification of snapshots.
"""

import pytest
from hypothesis import given, settings, strategies as st

from mdibverify.contracts.base import ErrorCode
from mdibverify.contracts.mdib import (
    CHANNEL, PATIENT_CONTEXT, SYSTEM_CONTEXT, VMD, Descriptor, MdibVersion,
)
from mdibverify.contracts.reports import MdibDocument
from mdibverify.temporal.snapshot import Snapshot, SnapshotBuilder, document_errors

from tests.fixtures import basic_mdib, channel, context_state, metric, single_state, vmd

SEQ = "urn:uuid:snapshot"


def snapshot_of(descriptors, states=()) -> Snapshot:
    return Snapshot(
        mdib_version=MdibVersion(sequence_id=SEQ),
        descriptors={d.handle: d for d in descriptors},
        states={s.key: s for s in states},
    )


def tree() -> Snapshot:
    descriptors, states = basic_mdib()
    return snapshot_of(
        descriptors + (
            vmd("vmd1"), channel("ch1", "vmd1"), metric("m1", "ch1"), metric("m2", "ch1"),
            vmd("vmd2"),
        ),
        states + (single_state("m1", Value="1"), context_state("ctx1"), context_state("ctx2")),
    )


class TestQueries:

    def test_children_keep_insertion_order(self):
        snapshot = tree()

        assert snapshot.root_handles() == ("mds0",)
        assert snapshot.children_of("mds0") == ("sc0", "vmd1", "vmd2")
        assert snapshot.children_of("m2") == ()

    def test_descendants_are_pre_order(self):
        assert tree().descendants_of("mds0") == ("sc0", "pat0", "vmd1", "ch1", "m1", "m2", "vmd2")

    def test_entity_joins_descriptor_states_and_children(self):
        entity = tree().entity("ch1")

        assert entity.handle == "ch1"
        assert entity.descriptor.descriptor_type == CHANNEL
        assert entity.children == ("m1", "m2")
        assert entity.state is None

    def test_multi_state_entity_exposes_all_states(self):
        snapshot = tree()
        entity = snapshot.entity("pat0")

        assert entity.is_multi_state
        assert entity.state is None
        assert [s.handle for s in entity.states] == ["ctx1", "ctx2"]
        assert snapshot.multi_state_handles() == ("ctx1", "ctx2")

    def test_entities_by_type(self):
        handles = [e.handle for e in tree().entities_by_type(VMD)]

        assert handles == ["vmd1", "vmd2"]
        assert tree().entities_by_type("AlertSystemDescriptor") == ()

    def test_contains_covers_descriptors_and_multi_states(self):
        snapshot = tree()

        assert "vmd1" in snapshot
        assert "ctx1" in snapshot
        assert "nope" not in snapshot
        assert len(snapshot) == 8

    def test_unknown_lookups_return_none(self):
        snapshot = tree()

        assert snapshot.descriptor("nope") is None
        assert snapshot.state("nope") is None
        assert snapshot.entity("nope") is None


class TestImmutability:

    def test_mappings_are_read_only(self):
        snapshot = tree()

        with pytest.raises(TypeError):
            snapshot.descriptors["x"] = vmd("x")
        assert "x" not in snapshot

    def test_source_dict_changes_do_not_leak_in(self):
        descriptors = {"mds0": basic_mdib()[0][0]}
        snapshot = Snapshot(MdibVersion(SEQ), descriptors, {})

        descriptors["vmd1"] = vmd("vmd1")

        assert "vmd1" not in snapshot

    def test_builder_leaves_base_untouched(self):
        base = tree()
        builder = SnapshotBuilder(base)

        removed = builder.remove_subtree("vmd1")
        built = builder.build()

        assert removed == ("vmd1", "ch1", "m1", "m2")
        assert "vmd1" in base and "m1" in base
        assert "vmd1" not in built and built.state("m1") is None

    def test_equality_ignores_derived_indices(self):
        assert tree() == tree()
        assert tree() != Snapshot.empty(SEQ)


class TestConstruction:

    def test_from_document(self):
        descriptors, states = basic_mdib()
        document = MdibDocument(
            mdib_version=MdibVersion(SEQ, version=5),
            descriptors=descriptors,
            states=states,
            description_version=2,
        )

        snapshot = Snapshot.from_document(document)

        assert snapshot.mdib_version.version == 5
        assert snapshot.description_version == 2
        assert snapshot.descriptor_handles() == ("mds0", "sc0", "pat0")

    def test_empty(self):
        snapshot = Snapshot.empty(SEQ, instance_id=3)

        assert len(snapshot) == 0
        assert snapshot.mdib_version == MdibVersion(SEQ, 3, 0)


class TestStructureVerification:

    def test_well_formed_tree_has_no_errors(self):
        assert tree().verify_structure() == ()

    def test_unknown_parent_reported(self):
        errors = snapshot_of((vmd("vmd1", parent="ghost"),)).verify_structure()

        assert [e.code for e in errors] == [ErrorCode.UNKNOWN_PARENT]
        assert errors[0].context_value("handle") == "vmd1"

    def test_cycle_reported(self):
        errors = snapshot_of((
            Descriptor.create("a", VMD, parent_handle="b"),
            Descriptor.create("b", VMD, parent_handle="a"),
        )).verify_structure()

        assert ErrorCode.STRUCTURAL_INCONSISTENCY in [e.code for e in errors]

    def test_multi_state_handle_collision_reported(self):
        descriptors, _ = basic_mdib()
        errors = snapshot_of(descriptors, (context_state("sc0"),)).verify_structure()

        assert [e.code for e in errors] == [ErrorCode.HANDLE_COLLISION]

    def test_dangling_state_reported(self):
        errors = snapshot_of((), (single_state("m9"),)).verify_structure()

        assert [e.code for e in errors] == [ErrorCode.UNKNOWN_HANDLE]


class TestDocumentErrors:

    def test_clean_document(self):
        descriptors, states = basic_mdib()
        document = MdibDocument(MdibVersion(sequence_id=SEQ), descriptors, states)

        assert document_errors(document) == ()

    def test_descriptor_listed_twice(self):
        descriptors, states = basic_mdib()
        document = MdibDocument(
            MdibVersion(sequence_id=SEQ), descriptors + (vmd("sc0"),), states
        )

        errors = document_errors(document)

        assert [e.code for e in errors] == [ErrorCode.DUPLICATE_HANDLE]
        assert errors[0].message == "Descriptor handle sc0 is listed 2 times"
        assert len(Snapshot.from_document(document)) == len(descriptors)

    def test_state_listed_twice(self):
        descriptors, states = basic_mdib()
        document = MdibDocument(
            MdibVersion(sequence_id=SEQ), descriptors,
            states + (context_state("ctx1"), context_state("ctx1", version=1)),
        )

        assert [e.message for e in document_errors(document)] == ["State ctx1 is listed 2 times"]


class TestSnapshotProperties:

    @given(st.lists(st.sampled_from(("a", "b", "c", "d")), unique=True))
    @settings(max_examples=50)
    def test_descendants_of_root_cover_every_chain_member(self, handles):
        descriptors = [Descriptor.create("root", SYSTEM_CONTEXT)]
        parent = "root"
        for handle in handles:
            descriptors.append(Descriptor.create(handle, PATIENT_CONTEXT, parent_handle=parent))
            parent = handle

        snapshot = snapshot_of(descriptors)

        assert snapshot.descendants_of("root") == tuple(handles)
        assert snapshot.verify_structure() == ()
