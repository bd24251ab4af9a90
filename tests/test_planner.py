import json

import pytest

from director.errors import PlanningError, ProviderError, ProviderErrorKind, RetryExhausted
from director.services.planner import ScriptPlanner, inject_style, scene_count_for, scene_durations


def words(count):
    return " ".join(f"word{i}" for i in range(count))


class FakeLLM:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def complete_json(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def script_json(count, title="Launch"):
    return json.dumps(
        {
            "title": title,
            "scenes": [
                {"index": 7, "narration": f"line {i}", "visual": f"shot {i}", "duration": 99}
                for i in range(count)
            ],
        }
    )


def test_scene_count_policy():
    assert scene_count_for(words(40)) == 3
    assert scene_count_for(words(150)) == 3
    assert scene_count_for(words(151)) == 4
    assert scene_count_for(words(220)) == 4
    assert scene_count_for("") == 3


def test_durations_sum_to_target():
    assert scene_durations(45, 3) == [15, 15, 15]
    assert scene_durations(30, 4) == [7, 7, 7, 9]
    assert sum(scene_durations(61, 4)) == 61


async def test_plan_builds_three_equal_scenes(fast_policy, style):
    llm = FakeLLM([script_json(3)])
    planner = ScriptPlanner(llm, fast_policy)

    script = await planner.plan(words(40), 45, style)

    assert [scene.index for scene in script.scenes] == [0, 1, 2]
    assert [scene.duration_seconds for scene in script.scenes] == [15, 15, 15]
    assert script.total_duration_seconds == 45
    assert script.title == "Launch"
    assert script.scenes[0].visual_prompt == "shot 0. Cinematic lighting. AVOID: cartoon. MOTION: 2/4"


async def test_plan_caps_long_prompts_at_four_scenes(fast_policy, style):
    llm = FakeLLM([script_json(6)])
    planner = ScriptPlanner(llm, fast_policy)

    script = await planner.plan(words(220), 60, style)

    assert len(script.scenes) == 4
    assert sum(scene.duration_seconds for scene in script.scenes) == 60
    assert "exactly 4 cinematic scenes" in llm.calls[0][0]


async def test_plan_strips_code_fences(fast_policy, style):
    llm = FakeLLM(["```json\n" + script_json(3) + "\n```"])
    script = await ScriptPlanner(llm, fast_policy).plan(words(10), 30, style)
    assert len(script.scenes) == 3


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps({"title": "x"}),
        json.dumps({"scenes": [{"narration": "a", "visual": "b"}]}),
        json.dumps({"scenes": [{"narration": "", "visual": "b"}] * 3}),
    ],
)
async def test_plan_rejects_unusable_payloads(fast_policy, style, payload):
    planner = ScriptPlanner(FakeLLM([payload]), fast_policy)
    with pytest.raises(PlanningError):
        await planner.plan(words(10), 30, style)


async def test_plan_retries_transient_llm_errors(fast_policy, style):
    transient = ProviderError("OpenAI", ProviderErrorKind.TRANSIENT, "HTTP 503")
    llm = FakeLLM([transient, script_json(3)])

    script = await ScriptPlanner(llm, fast_policy).plan(words(10), 30, style)

    assert len(script.scenes) == 3
    assert len(llm.calls) == 2


async def test_plan_gives_up_after_max_attempts(fast_policy, style):
    transient = ProviderError("OpenAI", ProviderErrorKind.RATE_LIMIT, "HTTP 429")
    llm = FakeLLM([transient, transient, transient])

    with pytest.raises(RetryExhausted) as excinfo:
        await ScriptPlanner(llm, fast_policy).plan(words(10), 30, style)

    assert excinfo.value.attempts == 3


async def test_plan_does_not_retry_auth_errors(fast_policy, style):
    llm = FakeLLM([ProviderError("OpenAI", ProviderErrorKind.AUTH, "HTTP 401"), script_json(3)])

    with pytest.raises(ProviderError):
        await ScriptPlanner(llm, fast_policy).plan(words(10), 30, style)
    assert len(llm.calls) == 1


def test_inject_style_format(style):
    assert inject_style("A city at dusk.", style) == "A city at dusk. Cinematic lighting. AVOID: cartoon. MOTION: 2/4"
