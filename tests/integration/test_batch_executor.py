import asyncio

import pytest

from consult_agent.agent.batch import BatchExecutor
from consult_agent.agent.orchestrator import ConsultationOrchestrator
from consult_agent.agent.registry import ToolName, ToolRegistry
from consult_agent.agent.tools import register_consultation_tools
from consult_agent.errors import BatchValidationError
from consult_agent.llm.client import ModelRequest, ModelResponse
from consult_agent.types import TokenUsage


class EchoModelClient:
    """Echoes the query; fails for any prompt mentioning `explode`."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def default_model(self) -> str:
        return "gpt-5-mini"

    async def invoke(self, request: ModelRequest) -> ModelResponse:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            prompt = request.messages[-1].content
            if "explode" in prompt:
                raise RuntimeError("upstream exploded")
            return ModelResponse(
                content=f"answer for: {prompt.splitlines()[-1]}",
                model=self.default_model,
                tokens_used=TokenUsage(prompt=10, completion=5, total=15),
            )
        finally:
            self.in_flight -= 1

    async def stream(self, request: ModelRequest):
        raise NotImplementedError
        yield


def _executor() -> tuple[BatchExecutor, EchoModelClient]:
    client = EchoModelClient()
    registry = ToolRegistry()
    register_consultation_tools(registry, ConsultationOrchestrator(model_client=client))
    return BatchExecutor(registry), client


def _consult(question: str, request_id: str | None = None) -> dict:
    item = {"toolName": "consult", "input": {"question": question}}
    if request_id is not None:
        item["requestId"] = request_id
    return item


@pytest.mark.asyncio
async def test_one_failing_item_does_not_affect_siblings() -> None:
    executor, client = _executor()
    requests = [_consult(f"question number {index} please") for index in range(1, 6)]
    requests[2] = _consult("please explode on this one")

    response = await executor.run_batch({"requests": requests})

    assert (response.summary.total, response.summary.success, response.summary.failure) == (5, 4, 1)
    statuses = [item.status for item in response.batch_results]
    assert statuses == ["fulfilled", "fulfilled", "rejected", "fulfilled", "fulfilled"]
    assert response.batch_results[2].error == "Model invocation failed"
    assert response.batch_results[0].result["text"] == "answer for: Question: question number 1 please"
    assert client.max_in_flight > 1


@pytest.mark.asyncio
async def test_request_id_is_echoed() -> None:
    executor, _ = _executor()

    response = await executor.run_batch({"requests": [_consult("what about retries?", "r-7")]})

    item = response.batch_results[0]
    assert item.request_id == "r-7"
    assert item.tool_name is ToolName.CONSULT
    assert item.status == "fulfilled"


@pytest.mark.asyncio
async def test_invalid_item_input_is_reported_per_item() -> None:
    executor, _ = _executor()

    response = await executor.run_batch(
        {
            "requests": [
                _consult("too short"),
                {"toolName": "think-about-plan", "input": {"plan": "ship the batching feature"}},
            ]
        }
    )

    first, second = response.batch_results
    assert first.status == "rejected"
    assert first.error.startswith("question:")
    assert second.status == "fulfilled"
    assert response.summary.failure == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"requests": []},
        {"requests": [_consult("a valid question here")] * 11},
        {"requests": [{"toolName": "search-content", "input": {}}]},
        {},
    ],
)
async def test_malformed_batches_are_rejected_before_running(payload: dict) -> None:
    executor, client = _executor()

    with pytest.raises(BatchValidationError) as excinfo:
        await executor.run_batch(payload)

    assert excinfo.value.code == "VALIDATION_ERROR"
    assert client.max_in_flight == 0


@pytest.mark.asyncio
async def test_unregistered_tool_rejects_whole_batch() -> None:
    executor = BatchExecutor(ToolRegistry())

    with pytest.raises(BatchValidationError, match="Unknown tool"):
        await executor.run_batch({"requests": [_consult("is anything registered?")]})
