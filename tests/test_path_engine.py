"""
Test Path Traversal Engine - evaluate/advance, escalation payloads,
actions, progress and voice context

Run with: pytest tests/test_path_engine.py -v
"""

from dataclasses import replace

import pytest

from conftest import FIXED_NOW, walk
from pathrag.commands import EscalationTrigger, Outcome, SessionStatus
from pathrag.contracts import DiagnosticPhase
from pathrag.core.path_engine import (
    UNDETERMINED_FAULT_DOMAIN,
    PathTraversalEngine,
    SessionClosedError,
    suspected_fault_domain,
)


class TestCreateSession:

    def test_starts_at_entry(self, engine):
        session = engine.create_session()
        assert session.current_node_id == 'entry_start'
        assert session.current_phase == DiagnosticPhase.ENTRY
        assert session.status == SessionStatus.ACTIVE
        assert session.history == ()
        assert session.observations == ()
        assert session.escalation_payload is None
        assert session.started_at == FIXED_NOW
        assert session.session_id.startswith(f"session_{int(FIXED_NOW * 1000)}_")

    def test_vendor_hint(self, engine):
        session = engine.create_session(vendor_hint='Archer C6')
        assert session.vendor_profile.vendor_id == 'tplink_4g'

    def test_unknown_vendor_hint_is_generic(self, engine):
        session = engine.create_session(vendor_hint='Linksys')
        assert session.vendor_profile.vendor_id == 'generic'

    def test_ids_are_unique(self, engine):
        ids = {engine.create_session().session_id for _ in range(50)}
        assert len(ids) == 50


class TestEvaluate:

    def test_match_moves_forward(self, engine):
        session = engine.create_session()
        result = engine.evaluate(session, 'yes')
        assert result.next_node.node_id == 'entry_router_identify'
        assert result.matched_answer == 'yes'
        assert not result.should_escalate
        assert not result.is_retry

    def test_evaluate_does_not_modify_session(self, engine):
        session = engine.create_session()
        before = session.to_json()
        engine.evaluate(session, 'yes')
        assert session.to_json() == before

    def test_unmatched_is_retry_on_same_node(self, engine):
        session = engine.create_session()
        result = engine.evaluate(session, 'purple')
        assert result.is_retry
        assert result.next_node.node_id == 'entry_start'
        assert not result.should_escalate

    def test_uncertainty_escalates(self, engine):
        session = engine.create_session()
        result = engine.evaluate(session, "I don't know")
        assert result.should_escalate
        assert result.escalation_trigger == EscalationTrigger.USER_UNCERTAIN
        assert result.next_node is None

    def test_assets_follow_next_node_and_vendor(self, engine):
        session = walk(engine, engine.create_session(), 'yes')
        result = engine.evaluate(session, 'tp-link')
        # vendor not set yet on this session: all assets for the node
        asset_ids = [asset.asset_id for asset in result.assets_to_show]
        assert 'led_power_guide' in asset_ids

    def test_missing_current_node_is_integrity_failure(self, engine):
        session = engine.create_session().evolve(current_node_id='ghost')
        result = engine.evaluate(session, 'yes')
        assert result.should_escalate
        assert result.integrity_failure
        assert result.escalation_trigger == EscalationTrigger.MISSING_NODE

    def test_dangling_destination_escalates(self, engine):
        """A destination removed after validation must escalate, never crash"""
        graph = engine.graph
        broken = PathTraversalEngine(graph)
        node = graph.get_node('entry_start')
        broken_node = replace(node, expected_answers=(("yes", "vanished"), ("no", "entry_postpone")))
        broken.graph = _GraphWithOverride(graph, broken_node)

        result = broken.evaluate(broken.create_session(), 'yes')
        assert result.should_escalate
        assert result.integrity_failure
        assert result.escalation_reason == "Next node 'vanished' not found in path"


class _GraphWithOverride:
    """Graph stand-in with one node replaced"""

    def __init__(self, graph, node):
        self._graph = graph
        self._node = node
        self.entry_node = node if node.node_id == graph.entry_node_id else graph.entry_node
        self.completion_node_id = graph.completion_node_id

    def get_node(self, node_id):
        if node_id == self._node.node_id:
            return self._node
        return self._graph.get_node(node_id)


class TestAdvance:

    def test_history_and_observations(self, engine, clock):
        session = engine.create_session()
        clock.advance(5)
        session = walk(engine, session, 'Yes please')

        assert len(session.history) == 1
        entry = session.history[0]
        assert entry.node_id == 'entry_start'
        assert entry.user_response == 'Yes please'
        assert entry.outcome == Outcome.SUCCESS
        assert entry.timestamp == FIXED_NOW + 5
        assert session.observation_map == {'entry_start': 'Yes please'}
        assert session.current_node_id == 'entry_router_identify'
        assert session.revision == 1

    def test_input_session_untouched(self, engine):
        session = engine.create_session()
        advanced = walk(engine, session, 'yes')
        assert session.history == ()
        assert session.current_node_id == 'entry_start'
        assert advanced is not session

    def test_retry_records_failure_and_stays(self, engine):
        session = walk(engine, engine.create_session(), 'purple')
        assert session.current_node_id == 'entry_start'
        assert session.history[-1].outcome == Outcome.FAILURE
        assert session.status == SessionStatus.ACTIVE

    def test_latest_observation_wins(self, engine):
        session = walk(engine, engine.create_session(), 'purple', 'yes')
        assert session.observation_map['entry_start'] == 'yes'
        assert len(session.history) == 2

    def test_uncertain_escalation_payload(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'netgear', "I'm not sure")
        assert session.status == SessionStatus.ESCALATED
        assert session.current_node_id == 'physical_power_led'
        assert session.history[-1].outcome == Outcome.UNCERTAIN

        payload = session.escalation_payload
        assert payload.trigger == EscalationTrigger.USER_UNCERTAIN
        assert payload.suspected_fault_domain == 'Physical/Hardware'
        assert payload.steps_completed == ('entry_start', 'entry_router_identify', 'physical_power_led')
        assert dict(payload.observations)['physical_power_led'] == "I'm not sure"

    def test_scripted_escalation_node(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'asus', 'off', 'no', 'no')
        assert session.current_node_id == 'escalation_hardware'
        assert session.current_phase == DiagnosticPhase.ESCALATION
        assert session.status == SessionStatus.ESCALATED
        assert session.escalation_payload.trigger == EscalationTrigger.SCRIPTED
        assert session.escalation_payload.suspected_fault_domain == 'Physical/Hardware'

    def test_post_session_node_abandons(self, engine):
        session = walk(engine, engine.create_session(), 'no', 'no')
        assert session.current_node_id == 'session_end'
        assert session.status == SessionStatus.ABANDONED
        assert session.escalation_payload is None

    def test_completion_resolves(self, engine):
        session = walk(
            engine, engine.create_session(),
            'yes', 'netgear', 'on', 'on', 'wifi', 'yes', 'yes', 'yes', 'yes', 'yes',
            'connected', '192.168.1.20', 'yes',
        )
        assert session.current_node_id == 'verification_complete'
        assert session.status == SessionStatus.RESOLVED
        assert engine.progress_percentage(session) == 100

    def test_closed_session_rejects_transitions(self, engine):
        session = walk(engine, engine.create_session(), "no idea")
        assert session.status == SessionStatus.ESCALATED
        result = engine.evaluate(session, 'yes')
        with pytest.raises(SessionClosedError):
            engine.advance(session, 'yes', result)
        with pytest.raises(SessionClosedError):
            engine.abandon(session)
        with pytest.raises(SessionClosedError):
            engine.escalate(session, 'again')

    def test_vendor_detected_at_identify_node(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'TP-Link')
        assert session.vendor_profile.vendor_id == 'tplink_4g'

    def test_unknown_brand_defaults_to_generic(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'linksys')
        assert session.current_node_id == 'entry_router_identify'
        assert session.vendor_profile.vendor_id == 'generic'


class TestEscalateAndAbandon:

    def test_external_escalation(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'netgear', 'on')
        escalated = engine.escalate(session, 'Maximum voice retries reached')
        assert escalated.status == SessionStatus.ESCALATED
        assert escalated.escalation_payload.trigger == EscalationTrigger.VOICE_LOOP
        assert escalated.escalation_payload.reason == 'Maximum voice retries reached'
        assert escalated.current_node_id == session.current_node_id
        assert escalated.history == session.history

    def test_abandon(self, engine):
        session = engine.abandon(engine.create_session())
        assert session.status == SessionStatus.ABANDONED


class TestRecordAction:

    def test_allowed_action_appended(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'asus', 'off')
        assert session.current_node_id == 'physical_power_off'
        updated = engine.record_action(session, 'POWER_CYCLE', 'success', notes='unplugged 30s')
        assert len(updated.actions_attempted) == 1
        attempt = updated.actions_attempted[0]
        assert attempt.action == 'POWER_CYCLE'
        assert attempt.result == 'success'
        assert attempt.notes == 'unplugged 30s'
        assert session.actions_attempted == ()

    def test_action_not_allowed_at_node(self, engine):
        session = engine.create_session()
        with pytest.raises(ValueError, match="not allowed"):
            engine.record_action(session, 'POWER_CYCLE', 'success')

    def test_unknown_action(self, engine):
        with pytest.raises(ValueError):
            engine.record_action(engine.create_session(), 'KICK_ROUTER', 'success')

    def test_invalid_result(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'asus', 'off')
        with pytest.raises(ValueError, match="Invalid action result"):
            engine.record_action(session, 'POWER_CYCLE', 'maybe')

    def test_actions_carried_into_payload(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'asus', 'off')
        session = engine.record_action(session, 'POWER_CYCLE', 'failure')
        session = walk(engine, session, 'no', 'no')
        actions = session.escalation_payload.actions_attempted
        assert [a.action for a in actions] == ['POWER_CYCLE']


class TestProgressAndContext:

    def test_progress_by_phase(self, engine):
        session = engine.create_session()
        assert engine.progress_percentage(session) == 0
        assert engine.progress_percentage(session.evolve(current_phase=DiagnosticPhase.ROUTER_LOGIN)) == 50
        assert engine.progress_percentage(session.evolve(current_phase=DiagnosticPhase.VERIFICATION)) == 100
        assert engine.progress_percentage(session.evolve(current_phase=DiagnosticPhase.ESCALATION)) == 100

    def test_fault_domains(self):
        assert suspected_fault_domain(DiagnosticPhase.WAN_INSPECTION) == 'WAN/ISP Connection'
        assert suspected_fault_domain(DiagnosticPhase.ENTRY) == UNDETERMINED_FAULT_DOMAIN

    def test_voice_context_sections(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'tp-link')
        context = engine.generate_voice_context(session)
        assert context.startswith('NODE_ID: physical_power_led\nPHASE: Physical Check')
        assert 'YOUR TASK:' in context
        assert '"blinking" or similar' in context
        assert 'ROUTER: TP-Link' in context
        assert 'PREVIOUS OBSERVATIONS:' in context
        assert '- entry_router_identify: "tp-link"' in context
        assert 'IF USER IS CONFUSED' in context

    def test_voice_context_missing_node(self, engine):
        session = engine.create_session().evolve(current_node_id='ghost')
        assert engine.generate_voice_context(session) == ''

    def test_session_assets_filtered_by_vendor(self, engine):
        session = walk(engine, engine.create_session(), 'yes', 'tp-link')
        asset_ids = [a.asset_id for a in engine.assets_for_session(session)]
        assert asset_ids == ['led_power_guide', 'tplink_led_diagram']

        session = walk(engine, engine.create_session(), 'yes', 'netgear')
        asset_ids = [a.asset_id for a in engine.assets_for_session(session)]
        assert asset_ids == ['led_power_guide']

    def test_session_assets_always_a_list(self, engine, graph):
        session = walk(engine, engine.create_session(), 'yes', 'tp-link')
        assert isinstance(engine.assets_for_session(session), list)

        missing = session.evolve(current_node_id='ghost')
        assert engine.assets_for_session(missing) == []

        bare = PathTraversalEngine(graph)
        assert bare.assets_for_session(session) == []


def test_engine_without_collaborators(graph):
    """Catalog and detector are optional"""
    engine = PathTraversalEngine(graph)
    session = engine.create_session(vendor_hint='netgear')
    assert session.vendor_profile is None
    _, session = engine.process(session, 'yes')
    _, session = engine.process(session, 'netgear')
    assert session.vendor_profile is None
    assert engine.assets_for_session(session) == []
