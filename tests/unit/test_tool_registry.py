import pytest
from pydantic import BaseModel, Field, ValidationError

from consult_agent.agent.registry import ToolName, ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    value: int = Field(ge=1)


async def _echo(data: EchoInput, client_id: str | None) -> dict:
    return {"text": str(data.value), "client": client_id}


def _spec(name: ToolName = ToolName.CONSULT) -> ToolSpec:
    return ToolSpec(
        name=name,
        description="echo positive int",
        args_schema=EchoInput,
        handler=_echo,
    )


@pytest.mark.asyncio
async def test_tool_registry_validation() -> None:
    registry = ToolRegistry()
    registry.register(_spec())

    assert await registry.execute("consult", {"value": 3}, client_id="c1") == {
        "text": "3",
        "client": "c1",
    }

    with pytest.raises(ValidationError):
        await registry.execute(ToolName.CONSULT, {"value": 0})


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    spec = _spec()

    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


def test_tool_name_set_is_closed() -> None:
    with pytest.raises(ValueError):
        ToolName("search-content")
    assert {name.value for name in ToolName} == {
        "consult",
        "think-about-plan",
        "suggest-alternative",
        "improve-copy",
        "solve-problem",
    }


@pytest.mark.asyncio
async def test_unknown_and_unregistered_names_raise_key_error() -> None:
    registry = ToolRegistry()
    registry.register(_spec())

    with pytest.raises(KeyError, match="Unknown tool: nope"):
        await registry.execute("nope", {"value": 1})
    with pytest.raises(KeyError):
        registry.get(ToolName.SOLVE_PROBLEM)

    assert "consult" in registry
    assert "solve-problem" not in registry
    assert "nope" not in registry
    assert registry.names() == [ToolName.CONSULT]
