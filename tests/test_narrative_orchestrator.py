import asyncio

import httpx
import pytest
import structlog

from core.errors import (
    BodyIterationLimitReached,
    ConfigurationError,
    PersistenceError,
    RetriesExhausted,
)
from core.llm_interface import LLMService
from core.retry import ResilientCaller
from orchestration.models import PipelineState
from orchestration.narrative_orchestrator import NarrativeOrchestrator
from orchestration.output_service import OutputService


def gemini(text):
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {
            "promptTokenCount": 10,
            "candidatesTokenCount": 5,
            "totalTokenCount": 15,
        },
    }


def http_error(status):
    request = httpx.Request("POST", "https://example.invalid")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(str(status), request=request, response=response)


def rate_limited():
    return http_error(429)


def prompt_kind(prompt):
    if prompt.startswith("Based on the keywords"):
        return "world"
    if "create locations" in prompt:
        return "locations"
    if "create characters" in prompt:
        return "characters"
    if "chapter-by-chapter outline" in prompt:
        return "outline"
    if prompt.startswith("You are an author"):
        return "paragraph"
    if "write a summary of the book so far" in prompt:
        return "summary"
    raise AssertionError(f"unexpected prompt: {prompt[:60]}")


class FakeClient:
    """Answers setup and summary prompts; paragraphs come from a script."""

    def __init__(self, paragraphs=(), fail_kinds=()):
        self.paragraphs = list(paragraphs)
        self.fail_kinds = set(fail_kinds)
        self.calls = []
        self.contexts = []
        self.closed = False

    async def generate(self, prompt, model_name, temperature=None, max_tokens=None):
        kind = prompt_kind(prompt)
        self.calls.append((kind, prompt))
        self.contexts.append((kind, structlog.contextvars.get_contextvars()))
        if kind in self.fail_kinds:
            raise rate_limited()
        if kind == "paragraph":
            outcome = self.paragraphs.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return gemini(outcome)
        if kind == "summary":
            return gemini(f"Summary after {len(self.kinds('summary'))} updates.")
        return gemini(f"Generated {kind}.")

    async def aclose(self):
        self.closed = True

    def kinds(self, kind=None):
        found = [k for k, _ in self.calls]
        return [k for k in found if k == kind] if kind else found


class MemoryStore:
    def __init__(self, fail=False):
        self.saved = []
        self.fail = fail

    async def save(self, key, content):
        if self.fail:
            raise PersistenceError("disk full")
        self.saved.append((key, content))
        return f"memory://{key}"

    def keys(self):
        return [k for k, _ in self.saved]


async def _no_sleep(_delay):
    return None


def build(
    make_settings,
    client,
    store=None,
    stop_event=None,
    sleep=_no_sleep,
    fatal_status_codes=(),
    **overrides,
):
    settings = make_settings(**overrides)
    llm = LLMService(
        client,
        "test-model",
        caller=ResilientCaller(
            max_attempts=3,
            initial_delay=1.0,
            fatal_status_codes=fatal_status_codes,
            sleep=_no_sleep,
        ),
    )
    return NarrativeOrchestrator(
        settings,
        llm,
        output_service=OutputService(store),
        stop_event=stop_event,
        sleep=sleep,
    )


@pytest.mark.asyncio
async def test_setup_stages_complete_before_first_paragraph(make_settings):
    client = FakeClient(paragraphs=["The end. END OF THE BOOK"])
    orch = build(make_settings, client)

    state = await orch.run()

    kinds = client.kinds()
    assert kinds[:4] == ["world", "locations", "characters", "outline"]
    assert kinds[4] == "paragraph"
    assert state.world == "Generated world."
    assert state.locations and state.characters and state.chapter_outline
    assert state.setup_complete


@pytest.mark.asyncio
async def test_each_stage_embeds_all_previous_outputs(make_settings):
    client = FakeClient(paragraphs=["Done. END OF THE BOOK"])
    orch = build(make_settings, client)

    await orch.run()

    prompts = dict((kind, prompt) for kind, prompt in client.calls)
    assert "desert, exile, prophecy" in prompts["world"]
    assert "3 chapters" in prompts["world"]
    assert "Generated world." in prompts["locations"]
    assert "Generated world." in prompts["characters"]
    assert "Generated locations." in prompts["characters"]
    for earlier in ("Generated world.", "Generated locations.", "Generated characters."):
        assert earlier in prompts["outline"]
    assert "3 chapters" in prompts["outline"]
    assert "Generated outline." in prompts["paragraph"]


@pytest.mark.asyncio
async def test_book_marker_stops_all_further_calls(make_settings):
    client = FakeClient(
        paragraphs=[
            "The exiles crossed the dunes.",
            "They found the oracle. END OF THE CHAPTER",
            "...onward. END OF THE BOOK",
            "never requested",
        ]
    )
    orch = build(make_settings, client)

    state = await orch.run()

    assert state.book_complete
    assert client.kinds("paragraph") == ["paragraph"] * 3
    # No summary after the final paragraph.
    assert client.kinds("summary") == ["summary"] * 2
    assert client.kinds()[-1] == "paragraph"
    assert state.book_content == [
        "The exiles crossed the dunes.",
        "They found the oracle.",
        "...onward.",
    ]
    assert state.current_chapter == 2
    assert client.paragraphs == ["never requested"]


@pytest.mark.asyncio
async def test_summary_mode_prompts_carry_summary_and_previous_paragraph(make_settings):
    client = FakeClient(
        paragraphs=["Sand everywhere.", "Chapter break. END OF THE CHAPTER", "Fin. END OF THE BOOK"]
    )
    orch = build(make_settings, client)

    await orch.run()

    paragraph_prompts = [p for k, p in client.calls if k == "paragraph"]
    assert "Empty page, begin writing your book!" in paragraph_prompts[0]
    assert "No previous paragraphs." in paragraph_prompts[0]
    assert "chapter 1/3" in paragraph_prompts[0]
    assert "Summary after 1 updates." in paragraph_prompts[1]
    assert '"Sand everywhere."' in paragraph_prompts[1]
    assert "chapter 2/3" in paragraph_prompts[2]
    assert "No previous paragraphs." in paragraph_prompts[2]
    assert "END OF THE CHAPTER" in paragraph_prompts[0]
    assert "END OF THE BOOK" in paragraph_prompts[0]


@pytest.mark.asyncio
async def test_full_context_mode_embeds_book_text(make_settings):
    client = FakeClient(paragraphs=["Alpha paragraph.", "Beta paragraph. END OF THE BOOK"])
    orch = build(make_settings, client, BODY_CONTEXT_MODE="full")

    await orch.run()

    paragraph_prompts = [p for k, p in client.calls if k == "paragraph"]
    assert "Nothing has been written yet." in paragraph_prompts[0]
    assert "Alpha paragraph." in paragraph_prompts[1]
    assert "summary of the book so far" not in paragraph_prompts[1]


@pytest.mark.asyncio
async def test_summary_prompt_covers_whole_book(make_settings):
    client = FakeClient(paragraphs=["One.", "Two.", "Three. END OF THE BOOK"])
    orch = build(make_settings, client)

    await orch.run()

    summary_prompts = [p for k, p in client.calls if k == "summary"]
    assert "One.\n\nTwo." in summary_prompts[-1]


@pytest.mark.asyncio
async def test_exhaustion_in_setup_aborts_run(make_settings):
    client = FakeClient(fail_kinds={"world"})
    orch = build(make_settings, client)

    with pytest.raises(RetriesExhausted) as excinfo:
        await orch.run()

    assert excinfo.value.attempts == 3
    assert client.kinds() == ["world"] * 3
    assert orch.state.world == ""


@pytest.mark.asyncio
async def test_exhaustion_in_loop_aborts_and_saves_partial_book(make_settings):
    store = MemoryStore()
    client = FakeClient(
        paragraphs=["Kept paragraph.", rate_limited(), rate_limited(), rate_limited()]
    )
    orch = build(make_settings, client, store=store)

    with pytest.raises(RetriesExhausted):
        await orch.run()

    assert not orch.state.book_complete
    assert client.kinds("paragraph") == ["paragraph"] * 4
    assert ("book_partial", "Kept paragraph.") in store.saved


@pytest.mark.asyncio
async def test_persistence_failures_do_not_abort(make_settings):
    store = MemoryStore(fail=True)
    client = FakeClient(paragraphs=["Only. END OF THE BOOK"])
    orch = build(make_settings, client, store=store)

    state = await orch.run()

    assert state.book_complete
    assert orch.output_service.failures == 5


@pytest.mark.asyncio
async def test_persists_setup_artifacts_and_book_once_per_iteration(make_settings):
    store = MemoryStore()
    client = FakeClient(paragraphs=["One.", "Two. END OF THE BOOK"])
    orch = build(make_settings, client, store=store)

    await orch.run()

    assert store.keys() == [
        "world",
        "locations",
        "characters",
        "chapter_outline",
        "book",
        "book",
    ]
    assert store.saved[-1] == ("book", "One.\n\nTwo.")


@pytest.mark.asyncio
async def test_iteration_ceiling_raises(make_settings):
    store = MemoryStore()
    client = FakeClient(paragraphs=["p1", "p2", "p3", "p4"])
    orch = build(make_settings, client, store=store, MAX_BODY_ITERATIONS=2)

    with pytest.raises(BodyIterationLimitReached) as excinfo:
        await orch.run()

    assert excinfo.value.iterations == 2
    assert client.kinds("paragraph") == ["paragraph"] * 2
    assert ("book_partial", "p1\n\np2") in store.saved


@pytest.mark.asyncio
async def test_stop_event_ends_loop_between_iterations(make_settings):
    stop = asyncio.Event()
    stop.set()
    client = FakeClient(paragraphs=["never"])
    orch = build(make_settings, client, stop_event=stop)

    state = await orch.run()

    assert not state.book_complete
    assert client.kinds("paragraph") == []
    assert state.setup_complete


@pytest.mark.asyncio
async def test_missing_configuration_fails_before_remote_calls(make_settings):
    client = FakeClient()
    orch = build(make_settings, client, KEYWORDS="  ", CHAPTER_COUNT=0)

    with pytest.raises(ConfigurationError) as excinfo:
        await orch.run()

    assert "KEYWORDS" in str(excinfo.value)
    assert "CHAPTER_COUNT" in str(excinfo.value)
    assert client.calls == []


@pytest.mark.asyncio
async def test_pause_between_paragraphs(make_settings):
    pauses = []

    async def fake_sleep(delay):
        pauses.append(delay)

    client = FakeClient(paragraphs=["One.", "Two.", "Three. END OF THE BOOK"])
    orch = build(make_settings, client, sleep=fake_sleep, PARAGRAPH_PAUSE_SECONDS=20)

    await orch.run()

    assert pauses == [20, 20]


@pytest.mark.asyncio
async def test_usage_is_accumulated(make_settings):
    client = FakeClient(paragraphs=["Fin. END OF THE BOOK"])
    orch = build(make_settings, client)

    await orch.run()

    assert orch.llm.request_count == 5
    assert orch.llm.usage.total_tokens == 75
    assert orch.llm.usage.get_if_used() == {
        "prompt_tokens": 50,
        "completion_tokens": 25,
        "total_tokens": 75,
    }


@pytest.mark.asyncio
async def test_fatal_status_in_loop_saves_partial_book(make_settings):
    store = MemoryStore()
    client = FakeClient(paragraphs=["Kept paragraph.", http_error(401), "never"])
    orch = build(make_settings, client, store=store, fatal_status_codes={401})

    with pytest.raises(httpx.HTTPStatusError):
        await orch.run()

    assert client.kinds("paragraph") == ["paragraph"] * 2
    assert ("book_partial", "Kept paragraph.") in store.saved


@pytest.mark.asyncio
async def test_body_loop_refuses_to_start_without_setup(make_settings):
    client = FakeClient(paragraphs=["never"])
    orch = build(make_settings, client)
    state = PipelineState(keywords="desert", chapter_count=3, world="A world.")

    with pytest.raises(RuntimeError):
        await orch.run_body_loop(state)

    assert client.calls == []


@pytest.mark.asyncio
async def test_run_context_is_bound_for_every_call(make_settings):
    client = FakeClient(paragraphs=["One. END OF THE CHAPTER", "Two. END OF THE BOOK"])
    orch = build(make_settings, client)

    await orch.run()

    for _kind, context in client.contexts:
        assert context["keywords"] == "desert, exile, prophecy"
        assert context["model"] == "test-model"
    paragraph_chapters = [
        context["chapter"] for kind, context in client.contexts if kind == "paragraph"
    ]
    assert paragraph_chapters == [1, 2]
    assert structlog.contextvars.get_contextvars() == {}
