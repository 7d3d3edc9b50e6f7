"""Tests for the dispatch engine."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from update_dispatch.dispatch import PROPERTY_DISPATCH, ChangedEntity, ChangeKind, DispatchEngine, HookRegistry
from update_dispatch.errors import GatewayUnavailable, SinkRejected, SnapshotError
from update_dispatch.knowledge_graph.models import NS_PROPERTY, NS_PROPERTY_TALK, NS_TALK, EntityReference, Property

S = EntityReference("Berlin")
A = EntityReference("Hamburg")
B = EntityReference("Munich")
X = EntityReference("Cologne")
AREA = Property("Has_area")
MDAT = Property("_MDAT")
AREA_PAGE = EntityReference("Has_area", namespace=NS_PROPERTY)


def subject_change(snapshot=None) -> ChangedEntity:
    return ChangedEntity.from_title(S, snapshot)


def property_change() -> ChangedEntity:
    return ChangedEntity.from_title(AREA_PAGE)


class TestChangedEntity:
    def test_property_namespace_selects_property_kind(self) -> None:
        change = ChangedEntity.from_title(AREA_PAGE, {"subject": "x#0##"})
        assert change.kind is ChangeKind.PROPERTY
        assert change.snapshot is None
        assert change.as_property == AREA

    def test_other_namespace_selects_subject_kind(self) -> None:
        assert ChangedEntity.from_title(S).kind is ChangeKind.SUBJECT

    def test_for_property(self) -> None:
        change = ChangedEntity.for_property(AREA)
        assert change.subject == AREA_PAGE
        assert change.as_property == AREA


class TestSubjectFanout:
    def test_user_defined_property_fans_out(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA, MDAT]
        store.subjects["Has_area"] = [A, B]
        store.subjects["_MDAT"] = [X]

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert result.tasks_emitted == 2
        assert result.keys == ("Hamburg", "Munich")
        assert ("get_all_property_subjects", "_MDAT") not in store.calls

    def test_subject_itself_appears_once(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.in_properties["Berlin"] = [Property("Capital_of")]
        store.subjects["Has_area"] = [S, A]
        store.subjects["Capital_of"] = [EntityReference("Berlin", subobject="_c1"), B]

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert result.keys == ("Berlin", "Hamburg", "Munich")

    def test_in_properties_fan_out(self, store, sink) -> None:
        store.in_properties["Berlin"] = [Property("Located_in")]
        store.subjects["Located_in"] = [X]

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert result.keys == ("Cologne",)

    def test_snapshot_properties_are_unioned(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A]
        store.subjects["Has_mayor"] = [B]
        snapshot = {
            "subject": "Berlin#0##",
            "data": [
                {"property": "Has_area", "dataitem": []},
                {"property": "Has_mayor", "dataitem": [{"type": 9, "item": "Kai_Wegner#0##"}]},
            ],
        }

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change(snapshot))

        assert result.keys == ("Hamburg", "Munich")

    def test_invalid_snapshot_fails_run(self, store, sink) -> None:
        with pytest.raises(SnapshotError):
            DispatchEngine(store, sink, enabled=True).dispatch(subject_change("{broken"))
        assert sink.batches == []

    def test_empty_plan_does_not_call_sink(self, store, sink) -> None:
        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())
        assert result.tasks_emitted == 0
        assert sink.batches == []

    def test_unresolvable_subjects_are_skipped(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [EntityReference(""), A]

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert result.keys == ("Hamburg",)


class TestPropertyFanout:
    def test_property_subjects_and_type_errors(self, store, sink) -> None:
        store.subjects["Has_area"] = [A, B]
        store.flagged[("_ERRP", "Property:Has_area")] = [X, A]

        result = DispatchEngine(store, sink, enabled=True).dispatch(property_change())

        assert result.keys == ("Hamburg", "Munich", "Cologne")

    def test_type_error_rescan_without_direct_subjects(self, store, sink) -> None:
        store.flagged[("_ERRP", "Property:Has_area")] = [X]

        result = DispatchEngine(store, sink, enabled=True).dispatch(property_change())

        assert result.keys == ("Cologne",)

    def test_builtin_property_only_rescans_type_errors(self, store, sink) -> None:
        store.subjects["_MDAT"] = [A]
        change = ChangedEntity.from_title(EntityReference("Modification date", namespace=NS_PROPERTY))

        result = DispatchEngine(store, sink, enabled=True).dispatch(change)

        assert result.tasks_emitted == 0
        assert ("get_all_property_subjects", "_MDAT") not in store.calls
        assert ("get_property_subjects", "_ERRP=Property:Modification_date") in store.calls

    def test_listener_can_extend_plan(self, store, sink) -> None:
        store.subjects["Has_area"] = [A]
        seen: list[Property] = []

        def listener(plan, prop):
            seen.append(prop)
            plan.fold([B, A, EntityReference("Munich", subobject="_x")])

        hooks = HookRegistry()
        hooks.register(PROPERTY_DISPATCH, listener)
        result = DispatchEngine(store, sink, hooks=hooks, enabled=True).dispatch(property_change())

        assert seen == [AREA]
        assert result.keys == ("Hamburg", "Munich")

    def test_listener_runs_before_type_error_rescan(self, store, sink) -> None:
        store.flagged[("_ERRP", "Property:Has_area")] = [A]
        hooks = HookRegistry()
        hooks.register(PROPERTY_DISPATCH, lambda plan, prop: plan.fold([X]))

        result = DispatchEngine(store, sink, hooks=hooks, enabled=True).dispatch(property_change())

        assert result.keys == ("Cologne", "Hamburg")

    def test_listener_error_aborts_run(self, store, sink) -> None:
        store.subjects["Has_area"] = [A]

        def broken(plan, prop):
            raise RuntimeError("listener failed")

        hooks = HookRegistry()
        hooks.register(PROPERTY_DISPATCH, broken)
        with pytest.raises(RuntimeError):
            DispatchEngine(store, sink, hooks=hooks, enabled=True).dispatch(property_change())
        assert sink.batches == []

    def test_unregistered_listener_is_not_called(self, store, sink) -> None:
        calls = []

        def listener(plan, prop):
            calls.append(prop)

        hooks = HookRegistry()
        hooks.register(PROPERTY_DISPATCH, listener)
        hooks.unregister(PROPERTY_DISPATCH, listener)
        hooks.unregister(PROPERTY_DISPATCH, listener)
        DispatchEngine(store, sink, hooks=hooks, enabled=True).dispatch(property_change())

        assert calls == []


class TestDisabled:
    @pytest.mark.parametrize("change", [subject_change(), property_change()])
    def test_disabled_argument_is_a_no_op(self, store, sink, change) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A, B]

        result = DispatchEngine(store, sink, enabled=True).dispatch(change, enabled=False)

        assert result.tasks_emitted == 0
        assert sink.batches == []

    def test_disable_returns_engine(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A]
        engine = DispatchEngine(store, sink, enabled=True)

        assert engine.disable() is engine
        assert engine.dispatch(subject_change()).tasks_emitted == 0
        assert sink.batches == []

    def test_disable_from_listener_aborts_before_flush(self, store, sink) -> None:
        store.subjects["Has_area"] = [A]
        hooks = HookRegistry()
        engine = DispatchEngine(store, sink, hooks=hooks, enabled=True)
        hooks.register(PROPERTY_DISPATCH, lambda plan, prop: engine.disable())

        assert engine.dispatch(property_change()).tasks_emitted == 0
        assert sink.batches == []

    def test_enabled_argument_overrides_engine_flag(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A]

        result = DispatchEngine(store, sink, enabled=False).dispatch(subject_change(), enabled=True)

        assert result.tasks_emitted == 1


class TestFailures:
    def test_gateway_failure_propagates_without_flush(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A]
        store.fail_on = "get_in_properties"

        with pytest.raises(GatewayUnavailable):
            DispatchEngine(store, sink, enabled=True).dispatch(subject_change())
        assert sink.batches == []

    def test_retry_after_sink_rejection_is_identical(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.in_properties["Berlin"] = [Property("Capital_of")]
        store.subjects["Has_area"] = [A, B, S]
        store.subjects["Capital_of"] = [X, A]
        engine = DispatchEngine(store, sink, enabled=True)

        sink.fail = True
        with pytest.raises(SinkRejected):
            engine.dispatch(subject_change())
        first = [t.to_json() for t in engine.resolve(subject_change()).flush()]

        sink.fail = False
        engine.dispatch(subject_change())

        assert [t.to_json() for t in sink.batches[0]] == first


class TestDedupInvariant:
    def test_no_duplicate_keys_across_all_paths(self, store, sink) -> None:
        refs = [EntityReference(name, subobject=sub) for name in ("a", "B", "c") for sub in ("", "_1")]
        store.properties["Berlin"] = [AREA, Property("P2")]
        store.in_properties["Berlin"] = [AREA, Property("P3")]
        store.subjects["Has_area"] = refs
        store.subjects["P2"] = list(reversed(refs))
        store.subjects["P3"] = refs + [X]

        engine = DispatchEngine(store, sink, enabled=True)
        engine.dispatch(subject_change())

        keys = [t.key for t in sink.batches[0]]
        assert keys == ["A", "B", "C", "Cologne"]
        assert len(keys) == len(set(keys))


class TestLogging:
    def test_logs_run_summary(self, store, sink, caplog) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [A]

        with caplog.at_level(logging.INFO, logger="update_dispatch.dispatch.engine"):
            DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert "Dispatched 1 update task(s) for subject change of Berlin" in caplog.text


class TestNamespaces:
    def test_talk_and_custom_namespace_subjects_are_queued(self, store, sink) -> None:
        store.properties["Berlin"] = [AREA]
        store.subjects["Has_area"] = [
            EntityReference("Berlin", namespace=NS_TALK),
            EntityReference("Has_area", namespace=NS_PROPERTY_TALK),
            EntityReference("Dataset_1", namespace=3000),
            A,
        ]

        result = DispatchEngine(store, sink, enabled=True).dispatch(subject_change())

        assert result.keys == ("Talk:Berlin", "Property_talk:Has_area", "NS3000:Dataset_1", "Hamburg")


class TestChangedPageNormalization:
    def make_store(self) -> MagicMock:
        store = MagicMock()
        store.get_properties.return_value = []
        store.get_in_properties.return_value = []
        store.get_all_property_subjects.return_value = []
        store.get_property_subjects.return_value = []
        return store

    def test_subject_lookups_use_the_page_not_the_subobject(self, sink) -> None:
        store = self.make_store()
        change = ChangedEntity.from_title(EntityReference("berlin", subobject="_c1"))

        DispatchEngine(store, sink, enabled=True).dispatch(change)

        assert store.get_properties.call_args.args[0] == EntityReference("Berlin")
        assert store.get_in_properties.call_args.args[0] == EntityReference("Berlin")

    def test_type_error_rescan_uses_normalized_property_page(self, sink) -> None:
        store = self.make_store()
        change = ChangedEntity.from_title(EntityReference.deserialize("has_area#102##"))

        DispatchEngine(store, sink, enabled=True).dispatch(change)

        _prop, value = store.get_property_subjects.call_args.args
        assert value == AREA_PAGE
        assert value.serialize() == "Has_area#102##"
        store.get_all_property_subjects.assert_called_once_with(AREA)

    def test_unresolvable_change_yields_empty_plan(self, sink) -> None:
        store = self.make_store()
        change = ChangedEntity.from_title(EntityReference("bad|title"))

        result = DispatchEngine(store, sink, enabled=True).dispatch(change)

        assert result.tasks_emitted == 0
        store.get_properties.assert_not_called()
        assert sink.batches == []
