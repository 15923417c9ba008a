import asyncio
import json

import pytest
from fakes import FakeGateway, local_indices

from visual_planner.errors import PromptGenerationAborted
from visual_planner.models import GeneratedImage, MediaKind, Segment
from visual_planner.nodes import prompt_generator
from visual_planner.pipeline import run_visual_plan

CONTEXT = {
    "primaryLocations": ["harbour"],
    "eraTimeline": [{"startSegment": 0, "era": "Medieval"}],
    "moodBeats": [{"startSegment": 0, "mood": "calm"}],
}


def script(n=4):
    return [Segment(f"00:0{i}", f"narration line {i}") for i in range(n)]


def scripted_model(context=CONTEXT, fail_prompts=False):
    """Answers each phase according to its system prompt."""

    def respond(system_prompt, user_prompt):
        if system_prompt.startswith("You are a visual content classifier"):
            return json.dumps([
                {"index": i, "mediaType": "IMAGE_GEN" if i % 2 == 0 else "BROLL"}
                for i in local_indices(user_prompt)
            ])
        if system_prompt.startswith("You are a visual narrative analyzer"):
            return json.dumps(context) if context is not None else "not json"
        if fail_prompts:
            return ""
        if "STOCK FOOTAGE" in system_prompt:
            return "harbour timelapse"
        return "Medieval era, torchlit stone halls, a harbour"

    return respond


def test_plan_with_context():
    gateway = FakeGateway(scripted_model())

    result = asyncio.run(run_visual_plan(script(), "Harbours", gateway=gateway))

    assert result.topic == "Harbours"
    assert [it.index for it in result.items] == [0, 1, 2, 3]
    assert [it.kind for it in result.items] == [
        MediaKind.GENERATED_IMAGE, MediaKind.STOCK_VIDEO, MediaKind.GENERATED_IMAGE, MediaKind.STOCK_VIDEO,
    ]
    assert result.items[0].prompt == "Medieval era, torchlit stone halls, a harbour"
    assert result.items[0].media == GeneratedImage(era="Medieval")
    assert result.items[1].prompt == "harbour timelapse"
    assert result.context.locations == ["harbour"]

    names = [node["name"] for node in result.report["nodes"]]
    assert names == [
        "classify_only",
        "extract_global_context",
        "generate_prompts_with_context",
        "generate_prompts_with_context",
    ]
    assert result.report["items"] == {"total": 4, "image": 2, "stock": 2}
    assert all(c.user_prompt.startswith("Generate prompt for segment") for c in gateway.calls[2:])


def test_plan_without_usable_context_uses_plain_prompts():
    gateway = FakeGateway(scripted_model(context=None))

    result = asyncio.run(run_visual_plan(script(), "Harbours", gateway=gateway))

    assert result.context is None
    names = [node["name"] for node in result.report["nodes"]]
    assert names[-2:] == ["generate_prompts", "generate_prompts"]
    assert all(it.prompt for it in result.items)


def test_plan_context_disabled():
    gateway = FakeGateway(scripted_model())

    result = asyncio.run(run_visual_plan(script(2), "Harbours", gateway=gateway, use_context=False))

    assert "extract_global_context" not in [node["name"] for node in result.report["nodes"]]
    assert not any(c.system_prompt.startswith("You are a visual narrative analyzer") for c in gateway.calls)


def test_plan_aborts_when_prompts_fail(monkeypatch):
    original = prompt_generator.sleep_cancellable

    async def no_delay(seconds, *signals):
        await original(0, *signals)

    monkeypatch.setattr(prompt_generator, "sleep_cancellable", no_delay)
    gateway = FakeGateway(scripted_model(fail_prompts=True))

    with pytest.raises(PromptGenerationAborted) as exc_info:
        asyncio.run(run_visual_plan(script(), "Harbours", gateway=gateway))

    assert exc_info.value.completed == 0
    assert exc_info.value.total == 2
