from consult_agent.agent.tools import (
    DOMAIN_PROMPTS,
    IMPROVE_COPY_PROMPT,
    THINK_ABOUT_PLAN_PROMPT,
    ConsultInput,
    build_consult_prompt,
)


def test_every_domain_has_a_persona() -> None:
    domains = ConsultInput.model_fields["domain"].annotation.__args__
    assert set(domains) == set(DOMAIN_PROMPTS)


def test_consult_prompt_falls_back_to_general_persona() -> None:
    assert build_consult_prompt("unknown").startswith(DOMAIN_PROMPTS["general"])
    assert "Next Steps" in build_consult_prompt("security")


def test_tool_prompts_define_response_structure() -> None:
    assert "Assessment, Strengths, Concerns, Suggestions, Questions" in THINK_ABOUT_PLAN_PROMPT
    assert "Improved Version, Key Changes, Rationale" in IMPROVE_COPY_PROMPT
