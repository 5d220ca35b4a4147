"""Tests for streaming synthesis: ordering, indices and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from ensemble_fusion.checkpoints import CheckpointManager, CheckpointStore
from ensemble_fusion.constants import ChunkType
from ensemble_fusion.errors import InvalidArgumentError
from ensemble_fusion.schema.outputs import ModeOutput, Question, Risk
from ensemble_fusion.synthesis.models import SynthesisChunk, SynthesisInput
from ensemble_fusion.synthesis.synthesizer import Synthesizer

MakeOutput = Callable[..., ModeOutput]


@pytest.fixture
def synthesis_input(make_output: MakeOutput) -> SynthesisInput:
    return SynthesisInput(
        outputs=[
            make_output(
                "deductive",
                ["connection pool exhausted", "missing timeout on db calls"],
                thesis="The pool is undersized",
                risks=[Risk(risk="cascading outage", impact="critical", likelihood=0.5)],
                questions_for_user=[Question(question="What is peak QPS?")],
            ),
            make_output("inductive", ["connection pool exhausted"]),
        ],
        original_question="Why is the API slow?",
    )


def _assert_contiguous(chunks: list[SynthesisChunk]) -> None:
    assert [c.index for c in chunks] == list(range(1, len(chunks) + 1))


@pytest.mark.asyncio
async def test_chunks_arrive_in_fixed_order(synthesis_input: SynthesisInput) -> None:
    stream = Synthesizer().stream(synthesis_input)
    chunks, error = await stream.collect()

    assert error is None
    assert [c.type for c in chunks] == [
        ChunkType.STATUS,
        ChunkType.STATUS,
        ChunkType.FINDING,
        ChunkType.FINDING,
        ChunkType.RISK,
        ChunkType.QUESTION,
        ChunkType.EXPLANATION,
        ChunkType.COMPLETE,
    ]
    assert chunks[0].content == "synthesis started"
    assert chunks[1].content == "synthesis merged"
    assert chunks[2].content == "connection pool exhausted"
    assert chunks[-1].content == "The pool is undersized"
    _assert_contiguous(chunks)


@pytest.mark.asyncio
async def test_async_iteration_with_small_buffer(synthesis_input: SynthesisInput) -> None:
    stream = Synthesizer().stream(synthesis_input, buffer_size=1)
    received = [chunk async for chunk in stream]
    await stream.task

    assert received[-1].type is ChunkType.COMPLETE
    _assert_contiguous(received)


@pytest.mark.asyncio
async def test_cancel_before_start(synthesis_input: SynthesisInput) -> None:
    cancel = asyncio.Event()
    cancel.set()
    chunks, error = await Synthesizer().stream(synthesis_input, cancel).collect()

    assert chunks == []
    assert isinstance(error, asyncio.CancelledError)


@pytest.mark.asyncio
async def test_cancel_mid_stream(synthesis_input: SynthesisInput) -> None:
    cancel = asyncio.Event()
    stream = Synthesizer().stream(synthesis_input, cancel, buffer_size=1)

    first = await stream.chunks.get()
    cancel.set()
    await stream.task

    received = [first]
    while not stream.chunks.empty():
        received.append(stream.chunks.get_nowait())

    assert first.index == 1
    assert received[-1].type is not ChunkType.COMPLETE
    _assert_contiguous(received)
    assert isinstance(stream.error(), asyncio.CancelledError)


@pytest.mark.asyncio
async def test_no_outputs_reports_error() -> None:
    chunks, error = await Synthesizer().stream(SynthesisInput(outputs=[])).collect()
    assert chunks == []
    assert isinstance(error, InvalidArgumentError)


@pytest.mark.asyncio
async def test_error_is_sticky(synthesis_input: SynthesisInput) -> None:
    cancel = asyncio.Event()
    cancel.set()
    stream = Synthesizer().stream(synthesis_input, cancel)
    await stream.task
    assert stream.error() is stream.error()


# ── resume ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_resume_skips_already_emitted_chunks(synthesis_input: SynthesisInput) -> None:
    stream = Synthesizer().stream(synthesis_input, resume_after=3)
    chunks, error = await stream.collect()

    assert error is None
    assert [c.index for c in chunks] == [4, 5, 6, 7, 8]
    assert chunks[0].type is ChunkType.FINDING
    assert chunks[0].content == "missing timeout on db calls"
    assert chunks[-1].type is ChunkType.COMPLETE
    assert stream.last_index == 8


@pytest.mark.asyncio
async def test_resume_past_the_end_emits_nothing(synthesis_input: SynthesisInput) -> None:
    stream = Synthesizer().stream(synthesis_input, resume_after=50)
    chunks, error = await stream.collect()
    assert chunks == []
    assert error is None
    assert stream.last_index == 50


@pytest.mark.asyncio
async def test_resume_from_checkpointed_watermark(
    synthesis_input: SynthesisInput, store: CheckpointStore
) -> None:
    manager = CheckpointManager(store, "run-7")
    assert manager.synthesis_resume_index() == 0

    cancel = asyncio.Event()
    stream = Synthesizer().stream(synthesis_input, cancel, buffer_size=1)
    first: list[SynthesisChunk] = []
    async for chunk in stream:
        first.append(chunk)
        if len(first) == 2:
            cancel.set()
    await stream.task
    manager.record_synthesis_progress(stream.last_index, stream.error())
    assert store.load_synthesis_checkpoint("run-7").error == "synthesis stream canceled"

    resumed = Synthesizer().stream(
        synthesis_input, resume_after=manager.synthesis_resume_index()
    )
    rest, error = await resumed.collect()
    assert error is None
    indices = [c.index for c in first + rest]
    assert indices == list(range(1, 9))


def test_chunk_wire_format() -> None:
    chunk = SynthesisChunk(type=ChunkType.FINDING, content="x", index=3)
    wire = chunk.to_wire()
    assert set(wire) == {"type", "content", "index", "timestamp"}
    assert wire["type"] == "finding"
    tagged = SynthesisChunk(type=ChunkType.STATUS, mode_id="deductive", index=1).to_wire()
    assert tagged["mode_id"] == "deductive"
