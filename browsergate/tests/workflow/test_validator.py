# browsergate/tests/workflow/test_validator.py
"""
Tests for the workflow validator: guard evaluation, state effects, summaries
and reset.
"""
import pytest

from browsergate.schemas.session import SessionState, WorkflowPhase
from browsergate.schemas.settings import WorkflowSettings
from browsergate.workflow.guards import DEFAULT_GUARDS, Requirement, ToolGuard
from browsergate.workflow.validator import WorkflowValidator


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validator(clock):
    return WorkflowValidator(clock=clock)


def _bring_to_content_analyzed(v: WorkflowValidator) -> None:
    v.record("browser_init", {}, True)
    v.record("navigate", {"url": "https://example.com"}, True)
    v.record("get_content", {"type": "text"}, True)


def test_end_to_end_workflow_gating(validator):
    """Walk a fresh session from initial to selector-ready, checking each gate."""
    result = validator.validate("navigate", {"url": "https://example.com"})
    assert not result.is_valid
    assert "browser_init" in result.suggested_action

    validator.record("browser_init", {}, True)
    assert validator.validate("navigate", {"url": "https://example.com"}).is_valid

    validator.record("navigate", {"url": "https://example.com"}, True)
    blocked = validator.validate("find_selector", {"text": "More information"})
    assert not blocked.is_valid
    assert "get_content" in blocked.suggested_action

    validator.record("get_content", {"type": "text"}, True)
    assert validator.validate("find_selector", {"text": "More information"}).is_valid


@pytest.mark.parametrize("tool_name", sorted(DEFAULT_GUARDS))
def test_every_guarded_tool_is_invalid_on_fresh_state(validator, tool_name):
    assert not validator.validate(tool_name, {}).is_valid


@pytest.mark.parametrize("tool_name", sorted(DEFAULT_GUARDS))
def test_every_guarded_tool_becomes_valid_after_prerequisites(validator, tool_name):
    _bring_to_content_analyzed(validator)
    assert validator.validate(tool_name, {}).is_valid


def test_message_names_the_missing_prerequisite(validator):
    validator.record("browser_init", {}, True)
    result = validator.validate("click", {"selector": "#go"})
    assert result.error_message == (
        "Tool 'click' requires page navigation (navigate) to have completed first."
    )
    assert "navigate" in result.suggested_action


def test_find_selector_remedy_mentions_blind_guessing(validator):
    validator.record("browser_init", {}, True)
    validator.record("navigate", {"url": "https://example.com"}, True)
    result = validator.validate("find_selector", {"text": "Sign in"})
    assert "blind selector guessing" in result.suggested_action


def test_unguarded_tool_is_always_valid(validator):
    assert validator.validate("browser_init", {}).is_valid
    assert validator.validate("some_custom_tool", {"x": 1}).is_valid


def test_validate_does_not_mutate_state_or_history(validator):
    before = validator.state.model_dump()
    validator.validate("click", {"selector": "#go"})
    validator.validate("navigate", {"url": "https://example.com"})
    assert validator.state.model_dump() == before
    assert len(validator.history) == 0


def test_validate_never_raises_when_a_guard_does(validator):
    def boom(_state, _env):
        raise RuntimeError("bad guard")

    validator.add_guard(
        ToolGuard(
            "flaky",
            (Requirement("x", "x", "x", "do x", check=boom),),
        )
    )
    result = validator.validate("flaky", {})
    assert not result.is_valid
    assert "bad guard" in result.error_message


def test_record_is_idempotent(validator):
    validator.record("browser_init", {}, True)
    validator.record("browser_init", {}, True)
    assert validator.state.browser_initialized is True
    validator.record("navigate", {"url": "https://example.com"}, True)
    validator.record("navigate", {"url": "https://example.com"}, True)
    assert validator.state.page_navigated is True
    assert validator.state.last_url == "https://example.com"


def test_failures_never_change_state(validator):
    validator.record("browser_init", {}, False, "launch failed")
    assert validator.state == SessionState()
    assert len(validator.history) == 1
    assert validator.history.last().success is False


def test_navigate_clears_page_discovery(validator):
    _bring_to_content_analyzed(validator)
    validator.record("find_selector", {"text": "More information"}, True)
    assert validator.state.phase is WorkflowPhase.SELECTOR_AVAILABLE

    validator.record("navigate", {"url": "https://example.org"}, True)
    assert validator.state.content_analyzed is False
    assert validator.state.selector_found is False
    assert validator.state.phase is WorkflowPhase.PAGE_LOADED
    assert not validator.validate("click", {"selector": "a"}).is_valid


def test_selector_found_alone_allows_interaction(validator):
    validator.record("browser_init", {}, True)
    validator.record("navigate", {"url": "https://example.com"}, True)
    validator.state.selector_found = True
    assert validator.validate("type", {"selector": "#q", "text": "hi"}).is_valid


def test_stale_content_blocks_find_selector_only(clock):
    validator = WorkflowValidator(content_stale_after_s=300, clock=clock)
    _bring_to_content_analyzed(validator)
    clock.now += 301
    stale = validator.validate("find_selector", {"text": "Sign in"})
    assert not stale.is_valid
    assert "fresh content analysis" in stale.error_message
    assert "get_content" in stale.suggested_action
    # Interaction tools only need the flag, not a fresh analysis.
    assert validator.validate("click", {"selector": "a"}).is_valid

    validator.record("get_content", {}, True)
    assert validator.validate("find_selector", {"text": "Sign in"}).is_valid


def test_default_validator_ignores_elapsed_time(validator, clock):
    _bring_to_content_analyzed(validator)
    clock.now += 10_000
    assert validator.state.content_analyzed
    assert validator.validate("find_selector", {"text": "Sign in"}).is_valid


def test_reset_restores_initial_state(validator):
    _bring_to_content_analyzed(validator)
    validator.reset()
    assert validator.state == SessionState()
    assert len(validator.history) == 0
    assert not validator.validate("navigate", {"url": "https://example.com"}).is_valid


def test_history_args_are_redacted(validator):
    validator.record("type", {"selector": "#password", "text": "hunter2", "password": "x"}, True)
    stored = validator.history.last().args
    assert stored["password"] == "********"
    assert stored["selector"] == "#password"


def test_summary_lists_flags_and_recent_calls(validator):
    validator.record("browser_init", {}, True)
    validator.record("navigate", {"url": "https://example.com"}, False, "net::ERR_NAME_NOT_RESOLVED")
    summary = validator.get_validation_summary()
    assert "Workflow state: browser_ready" in summary
    assert "browser initialized: yes" in summary
    assert "page navigated: no" in summary
    assert "navigate [FAILED]: net::ERR_NAME_NOT_RESOLVED" in summary


def test_summary_flags_repeated_failures(validator):
    for _ in range(3):
        validator.record("click", {"selector": "#nope"}, False, "Element not found")
    assert "failed repeatedly" in validator.get_validation_summary()


def test_from_settings_applies_limits():
    v = WorkflowValidator.from_settings(
        WorkflowSettings(history_limit=2, content_stale_after_s=60, summary_records=1)
    )
    for _ in range(3):
        v.record("browser_init", {}, True)
    assert len(v.history) == 2
    assert v.content_stale_after_s == 60
    assert v.diagnostics()["history"]["dropped"] == 1


def test_summary_shows_found_selector_not_search_text(validator):
    _bring_to_content_analyzed(validator)
    validator.record("find_selector", {"text": "More information"}, True, output="#more")
    summary = validator.get_validation_summary()
    assert "selector found: yes (#more)" in summary
    assert "(More information)" not in summary
