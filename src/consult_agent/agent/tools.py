"""Built-in consultation tools."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from consult_agent.agent.orchestrator import ConsultationOptions, ConsultationOrchestrator
from consult_agent.agent.registry import ToolName, ToolRegistry, ToolSpec
from consult_agent.types import ConsultationResult

PreferredModel = Literal["gpt-5", "gpt-5-mini", "gpt-5-nano", "gpt-5-pro", "gpt-5-codex"]

Domain = Literal[
    "software-architecture",
    "security",
    "performance",
    "database",
    "devops",
    "frontend",
    "backend",
    "ai-ml",
    "general",
]


class ConsultInput(BaseModel):
    question: str = Field(min_length=10)
    domain: Domain = "general"
    context: str | None = None
    constraints: list[str] = Field(default_factory=list)
    preferred_model: PreferredModel | None = Field(default=None, alias="preferredModel")

    model_config = ConfigDict(populate_by_name=True)


class ThinkAboutPlanInput(BaseModel):
    plan: str = Field(min_length=10)
    context: str | None = None
    preferred_model: PreferredModel | None = Field(default=None, alias="preferredModel")

    model_config = ConfigDict(populate_by_name=True)


class SuggestAlternativeInput(BaseModel):
    current_approach: str = Field(min_length=10, alias="currentApproach")
    constraints: list[str] = Field(default_factory=list)
    goals: list[str] = Field(default_factory=list)
    preferred_model: PreferredModel | None = Field(default=None, alias="preferredModel")

    model_config = ConfigDict(populate_by_name=True)


class ImproveCopyInput(BaseModel):
    original_text: str = Field(min_length=1, alias="originalText")
    purpose: str = Field(min_length=1)
    target_audience: str | None = Field(default=None, alias="targetAudience")
    preferred_model: PreferredModel | None = Field(default=None, alias="preferredModel")

    model_config = ConfigDict(populate_by_name=True)


class SolveProblemInput(BaseModel):
    problem: str = Field(min_length=10)
    attempted_solutions: list[str] = Field(default_factory=list, alias="attemptedSolutions")
    error_messages: list[str] = Field(default_factory=list, alias="errorMessages")
    relevant_code: str | None = Field(default=None, alias="relevantCode")
    preferred_model: PreferredModel | None = Field(default=None, alias="preferredModel")

    model_config = ConfigDict(populate_by_name=True)


_RESPONSE_GUIDANCE = """
Be direct, honest, and constructive. Prefer concrete, actionable advice over
generic guidance, and say so when a question falls outside your expertise.
""".strip()

DOMAIN_PROMPTS: dict[str, str] = {
    "software-architecture": "You are a senior software architect experienced in distributed systems, service boundaries and domain-driven design.",
    "security": "You are an application security specialist covering OWASP risks, authentication, authorization, encryption and threat modeling.",
    "performance": "You are a performance engineer focused on profiling, caching, query tuning and load testing.",
    "database": "You are a database expert in schema design, indexing, query optimization and replication.",
    "devops": "You are a DevOps engineer experienced with CI/CD, containers, Kubernetes, cloud platforms and observability.",
    "frontend": "You are a frontend architect experienced with component design, state management, accessibility and rendering performance.",
    "backend": "You are a backend engineer experienced with API design, messaging, data processing and integration patterns.",
    "ai-ml": "You are an AI/ML engineer experienced with model serving, MLOps, vector search and LLM integration.",
    "general": "You are a senior software engineering consultant with broad, practical experience.",
}

THINK_ABOUT_PLAN_PROMPT = f"""
You are a strategic planning consultant for software projects.

Review the plan for clarity, feasibility, risks, dependencies, simpler
alternatives and success criteria. Structure the reply as:
Assessment, Strengths, Concerns, Suggestions, Questions.

{_RESPONSE_GUIDANCE}
""".strip()

SUGGEST_ALTERNATIVE_PROMPT = f"""
You are a pragmatic software engineer who evaluates alternative approaches.

Given the current approach, propose two to four alternatives. For each give a
short description, pros, cons, and when it is the better fit. Finish with a
recommendation that respects the stated constraints and goals.

{_RESPONSE_GUIDANCE}
""".strip()

IMPROVE_COPY_PROMPT = f"""
You are a technical writer who improves text while keeping its meaning and
technical accuracy. Consider clarity, concision, tone, structure and
accessibility for the target audience. Structure the reply as:
Improved Version, Key Changes, Rationale.

{_RESPONSE_GUIDANCE}
""".strip()

SOLVE_PROBLEM_PROMPT = f"""
You are an expert debugger. Work from symptoms to root cause: restate the
problem, list likely causes ranked by probability, propose a fix for the most
likely one with code where useful, and describe how to verify it.

{_RESPONSE_GUIDANCE}
""".strip()


def build_consult_prompt(domain: str) -> str:
    expertise = DOMAIN_PROMPTS.get(domain, DOMAIN_PROMPTS["general"])
    return (
        f"{expertise}\n\n"
        "Structure your response as Answer, Reasoning, Considerations and Next Steps.\n\n"
        f"{_RESPONSE_GUIDANCE}"
    )


def format_tool_response(
    result: ConsultationResult, extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Tool output: response text plus model, usage and context metadata."""

    return {
        "text": result.response,
        "model": result.model,
        "tokensUsed": result.tokens_used.to_dict(),
        "cost": round(result.cost, 6),
        "contextSources": list(result.context_sources),
        **({"info": extra} if extra else {}),
    }


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def register_consultation_tools(
    registry: ToolRegistry, orchestrator: ConsultationOrchestrator
) -> None:
    """Register the default consultation tool set.

    Tools:
    - `consult`: domain-persona expert consultation.
    - `think-about-plan`: strategic feedback on a plan.
    - `suggest-alternative`: alternative approaches with trade-offs.
    - `improve-copy`: rewrite text for clarity and audience.
    - `solve-problem`: root-cause debugging help.
    """

    async def _consult(data: ConsultInput, client_id: str | None) -> dict[str, Any]:
        parts = [f"Question: {data.question}"]
        if data.context:
            parts.append(f"\nContext: {data.context}")
        if data.constraints:
            parts.append(f"\nConstraints:\n{_bullets(data.constraints)}")
        result = await orchestrator.run(
            "\n".join(parts),
            build_consult_prompt(data.domain),
            ConsultationOptions(
                tool_name=ToolName.CONSULT.value,
                client_id=client_id,
                preferred_model=data.preferred_model,
                additional_context=data.context,
            ),
        )
        return format_tool_response(
            result, {"domain": data.domain, "constraintsCount": len(data.constraints)}
        )

    async def _think_about_plan(data: ThinkAboutPlanInput, client_id: str | None) -> dict[str, Any]:
        query = f"Plan: {data.plan}"
        if data.context:
            query += f"\nContext: {data.context}"
        result = await orchestrator.run(
            query,
            THINK_ABOUT_PLAN_PROMPT,
            ConsultationOptions(
                tool_name=ToolName.THINK_ABOUT_PLAN.value,
                client_id=client_id,
                preferred_model=data.preferred_model,
                additional_context=data.context,
            ),
        )
        return format_tool_response(result, {"planLength": len(data.plan)})

    async def _suggest_alternative(
        data: SuggestAlternativeInput, client_id: str | None
    ) -> dict[str, Any]:
        parts = [f"Current Approach: {data.current_approach}"]
        if data.constraints:
            parts.append(f"\nConstraints:\n{_bullets(data.constraints)}")
        if data.goals:
            parts.append(f"\nGoals:\n{_bullets(data.goals)}")
        result = await orchestrator.run(
            "\n".join(parts),
            SUGGEST_ALTERNATIVE_PROMPT,
            ConsultationOptions(
                tool_name=ToolName.SUGGEST_ALTERNATIVE.value,
                client_id=client_id,
                preferred_model=data.preferred_model,
            ),
        )
        return format_tool_response(result)

    async def _improve_copy(data: ImproveCopyInput, client_id: str | None) -> dict[str, Any]:
        parts = [f"Original Text:\n{data.original_text}", f"\nPurpose: {data.purpose}"]
        if data.target_audience:
            parts.append(f"Target Audience: {data.target_audience}")
        result = await orchestrator.run(
            "\n".join(parts),
            IMPROVE_COPY_PROMPT,
            ConsultationOptions(
                tool_name=ToolName.IMPROVE_COPY.value,
                client_id=client_id,
                preferred_model=data.preferred_model,
                gather_context=False,
            ),
        )
        return format_tool_response(result, {"originalLength": len(data.original_text)})

    async def _solve_problem(data: SolveProblemInput, client_id: str | None) -> dict[str, Any]:
        parts = [f"Problem: {data.problem}"]
        if data.attempted_solutions:
            parts.append(f"\nAttempted Solutions:\n{_bullets(data.attempted_solutions)}")
        if data.error_messages:
            parts.append(f"\nError Messages:\n{_bullets(data.error_messages)}")
        result = await orchestrator.run(
            "\n".join(parts),
            SOLVE_PROBLEM_PROMPT,
            ConsultationOptions(
                tool_name=ToolName.SOLVE_PROBLEM.value,
                client_id=client_id,
                preferred_model=data.preferred_model,
                additional_context=(
                    f"```\n{data.relevant_code}\n```" if data.relevant_code else None
                ),
            ),
        )
        return format_tool_response(result)

    registry.register(
        ToolSpec(
            name=ToolName.CONSULT,
            description="Expert consultation with a domain-specific persona.",
            args_schema=ConsultInput,
            handler=_consult,
            tags=["consultation"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.THINK_ABOUT_PLAN,
            description="Strategic feedback on a plan or approach.",
            args_schema=ThinkAboutPlanInput,
            handler=_think_about_plan,
            tags=["planning"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SUGGEST_ALTERNATIVE,
            description="Alternative approaches with trade-offs.",
            args_schema=SuggestAlternativeInput,
            handler=_suggest_alternative,
            tags=["design"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.IMPROVE_COPY,
            description="Improve text, documentation or messaging.",
            args_schema=ImproveCopyInput,
            handler=_improve_copy,
            tags=["writing"],
        )
    )
    registry.register(
        ToolSpec(
            name=ToolName.SOLVE_PROBLEM,
            description="Root-cause analysis and fixes for a technical problem.",
            args_schema=SolveProblemInput,
            handler=_solve_problem,
            tags=["debugging"],
        )
    )
