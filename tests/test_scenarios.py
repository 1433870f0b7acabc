"""
End-to-end conversation scenarios through the engine

Run with: pytest tests/test_scenarios.py -v
"""

import pytest

from conftest import walk
from pathrag.commands import EscalationTrigger, SessionStatus
from pathrag.core.path_engine import UNDETERMINED_FAULT_DOMAIN


def test_tplink_happy_path_start(engine):
    """Greeting -> brand -> power light -> internet light"""
    session = engine.create_session()

    result, session = engine.process(session, 'yes')
    assert result.next_node.node_id == 'entry_router_identify'
    assert session.status == SessionStatus.ACTIVE

    result, session = engine.process(session, 'tp-link')
    assert session.vendor_profile.vendor_id == 'tplink_4g'
    assert session.current_node_id == 'physical_power_led'
    assert session.status == SessionStatus.ACTIVE

    result, session = engine.process(session, 'on')
    assert session.current_node_id == 'physical_internet_led'
    assert session.status == SessionStatus.ACTIVE
    assert [entry.node_id for entry in session.history] == [
        'entry_start', 'entry_router_identify', 'physical_power_led',
    ]


def test_uncertain_at_start_escalates(engine):
    session = engine.create_session()
    result, session = engine.process(session, "I don't know")

    assert result.should_escalate
    assert session.status == SessionStatus.ESCALATED
    payload = session.escalation_payload
    assert payload is not None
    assert payload.suspected_fault_domain
    assert payload.suspected_fault_domain == UNDETERMINED_FAULT_DOMAIN
    assert payload.steps_completed == ('entry_start',)


def test_retry_budget(engine):
    """Three unmatched answers keep the session open; the fourth escalates"""
    session = engine.create_session()

    for attempt in range(3):
        result, session = engine.process(session, 'purple')
        assert result.is_retry, f"attempt {attempt + 1}"
        assert session.status == SessionStatus.ACTIVE
        assert session.current_node_id == 'entry_start'

    result, session = engine.process(session, 'purple')
    assert result.should_escalate
    assert result.escalation_trigger == EscalationTrigger.RETRY_EXCEEDED
    assert session.status == SessionStatus.ESCALATED


def test_retry_then_recover(engine):
    session = walk(engine, engine.create_session(), 'purple', 'purple', 'yes')
    assert session.current_node_id == 'entry_router_identify'
    assert session.status == SessionStatus.ACTIVE


def test_retry_exceeded_flag_checked_before_matching(engine):
    """router_login_failed allows two misses, then escalates even on a valid answer"""
    session = walk(
        engine, engine.create_session(),
        'yes', 'netgear', 'on', 'on', 'cable', 'yes', 'yes', 'no',
    )
    assert session.current_node_id == 'router_login_failed'

    session = walk(engine, session, 'purple', 'purple')
    assert session.status == SessionStatus.ACTIVE

    result, session = engine.process(session, 'yes')
    assert result.should_escalate
    assert result.escalation_trigger == EscalationTrigger.RETRY_EXCEEDED
    assert session.escalation_payload.suspected_fault_domain == 'Router Access/Authentication'


@pytest.mark.parametrize('utterance', ['YES', '  yes  ', 'yes!', 'Yes.', 'yeah'])
def test_case_and_whitespace_insensitive(engine, utterance):
    _, session = engine.process(engine.create_session(), utterance)
    assert session.current_node_id == 'entry_router_identify'


def test_curly_apostrophe_uncertainty(engine):
    """Speech-to-text output with typographic apostrophes"""
    _, session = engine.process(engine.create_session(), "I don’t know")
    assert session.status == SessionStatus.ESCALATED


@pytest.mark.parametrize('utterance', ['no idea', 'not sure, no', "I don't know, yes"])
def test_uncertainty_beats_answer_match(engine, utterance):
    """Escalation runs before resolution even when a yes/no token is present"""
    result, session = engine.process(engine.create_session(), utterance)
    assert result.should_escalate
    assert result.escalation_trigger == EscalationTrigger.USER_UNCERTAIN
    assert session.current_node_id == 'entry_start'


def test_screen_mismatch_at_wan_status(engine):
    session = walk(
        engine, engine.create_session(),
        'yes', 'tp-link', 'on', 'on', 'wifi', 'yes', 'yes', 'yes', 'yes', 'yes',
    )
    assert session.current_node_id == 'wan_status_check'

    result, session = engine.process(session, 'my screen is different')
    assert result.escalation_trigger == EscalationTrigger.SCREEN_MISMATCH
    assert session.escalation_payload.suspected_fault_domain == 'WAN/ISP Connection'


def test_wan_reconnect_fails_then_reboot_fixes(engine):
    session = walk(
        engine, engine.create_session(),
        'yes', 'tp-link', 'on', 'on', 'wifi', 'yes', 'yes', 'yes', 'yes', 'yes',
        'it says disconnected',
    )
    assert session.current_node_id == 'action_reconnect_wan'

    session = engine.record_action(session, 'RECONNECT_SESSION', 'failure')
    session = walk(engine, session, 'still not connected')
    assert session.current_node_id == 'action_reboot_router'

    session = engine.record_action(session, 'SOFT_REBOOT', 'success')
    session = walk(engine, session, 'it worked', 'yes')
    assert session.status == SessionStatus.RESOLVED
    assert [a.action for a in session.actions_attempted] == ['RECONNECT_SESSION', 'SOFT_REBOOT']


def test_ethernet_fallback_to_wifi_loop(engine):
    """Graph cycles are allowed: ethernet 'no' routes back to the wifi check"""
    session = walk(
        engine, engine.create_session(),
        'yes', 'dlink', 'on', 'on', 'cable', 'no',
    )
    assert session.current_node_id == 'local_wifi_connected'
    assert session.status == SessionStatus.ACTIVE
