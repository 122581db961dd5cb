import pytest

from app.services.context_builder import ContextBuilder, PromptKind, parse_options
from app.services.errors import GenerationFailure
from app.services.game_session import ContextEntry, Persona, Session


def _session() -> Session:
    session = Session.open("ABCDE", "L", "You are the narrator.")
    session.members.append("P2")
    return session


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1. Alpha\n2. Beta\n3. Gamma", ["Alpha", "Beta", "Gamma"]),
        ("- Alpha\n\n- **Beta**\n- Gamma\n", ["Alpha", "Beta", "Gamma"]),
        ("Here are three ideas:\n1) Alpha\n2) Beta\n3) Gamma", ["Alpha", "Beta", "Gamma"]),
        ("**1. Alpha**\n**2. Beta**\n**3. Gamma**\n4. Delta", ["Alpha", "Beta", "Gamma"]),
        ("Alpha\nBeta\nGamma", ["Alpha", "Beta", "Gamma"]),
    ],
)
def test_parse_options(text, expected):
    assert parse_options(text, 3) == expected


def test_parse_options_rejects_short_answers():
    with pytest.raises(GenerationFailure):
        parse_options("1. Only one idea", 3)


def test_scenario_prompt_does_not_leak_log(builder):
    session = _session()
    session.conversation_log.append(ContextEntry("user", "secret history"))

    request = builder.build_request(session, PromptKind.SCENARIO_OPTIONS)

    assert request.system_prompt == "Give options."
    assert request.messages == [{"role": "user", "content": "Generate 3 exciting adventure starting points."}]
    assert request.temperature == 1.2
    assert request.max_tokens == 300


def test_persona_prompt_is_scoped_to_scenario(builder):
    session = _session()
    session.scenario = "The clockwork city"

    entries = builder.build_prompt(session, PromptKind.PERSONA_OPTIONS)

    assert entries[0] == ContextEntry("system", "Give options.")
    assert '"The clockwork city"' in entries[1].content


def test_action_prompt_carries_full_log_then_action(builder):
    session = _session()
    builder.append_scenario(session, "The clockwork city")
    persona = Persona.from_description("**Mira**: a cartographer")
    session.personas["L"] = persona
    builder.append_persona_note(session, "L", persona)

    entries = builder.build_action_prompt(session, "L", "I open the gate")
    request = builder.to_request(PromptKind.ACTION_RESOLUTION, entries)

    assert request.system_prompt == "You are the narrator."
    assert [m["role"] for m in request.messages] == ["user", "assistant", "assistant", "user"]
    assert "(Mira)" in request.messages[2]["content"]
    assert request.messages[-1] == {"role": "user", "content": "I open the gate"}
    assert request.temperature is None


def test_context_window_keeps_preamble_and_never_truncates_log():
    builder = ContextBuilder(model="m", max_entries=2)
    session = _session()
    for i in range(5):
        session.conversation_log.append(ContextEntry("user", f"entry {i}"))

    entries = builder.build_prompt(session, PromptKind.ACTION_RESOLUTION, "act")

    assert [e.content for e in entries] == ["You are the narrator.", "entry 3", "entry 4", "act"]
    assert len(session.conversation_log) == 6


def test_append_action_exchange_appends_action_then_outcome(builder):
    session = _session()
    before = list(session.conversation_log)

    builder.append_action_exchange(session, "L", "I jump", "You land softly.")

    assert session.conversation_log[: len(before)] == before
    assert session.conversation_log[-2].role == "user"
    assert session.conversation_log[-2].content.endswith("I jump")
    assert session.conversation_log[-1] == ContextEntry("assistant", "You land softly.")


def test_persona_name_from_description():
    assert Persona.from_description("**Brann**: a retired smuggler").name == "Brann"
    assert Persona.from_description("A quiet lamplighter").name == "A quiet lamplighter"
