import asyncio

from voicebuddy.relay.errors import UpstreamError
from voicebuddy.relay.relay import relay_fragments

CONVERSATION = [{"role": "system", "content": "be kind"}]


async def _drain(gen):
    return [chunk async for chunk in gen]


def test_fragments_concatenate_in_arrival_order(fake_client_factory):
    client = fake_client_factory(["Hel", "lo", " there"])
    samples = []

    chunks = asyncio.run(_drain(relay_fragments(client, CONVERSATION, samples.append)))

    assert chunks == ["Hel", "lo", " there"]
    assert "".join(chunks) == "Hello there"
    assert client.conversations == [CONVERSATION]
    assert client.closed
    assert samples[0].outcome == "completed"
    assert samples[0].fragments == 3
    assert samples[0].chars == len("Hello there")
    assert samples[0].ttff_ms is not None


def test_upstream_failure_becomes_final_error_fragment(fake_client_factory):
    client = fake_client_factory(
        ["I hear", " you"], error=UpstreamError("rate limit reached")
    )
    samples = []

    body = "".join(
        asyncio.run(_drain(relay_fragments(client, CONVERSATION, samples.append)))
    )

    assert body == "I hear you\n[Error] rate limit reached"
    assert body.startswith("I hear you")
    assert "[Error]" in body
    assert samples[0].outcome == "upstream_error"


def test_failure_before_any_fragment(fake_client_factory):
    client = fake_client_factory([], error=RuntimeError("connect timeout"))

    body = "".join(asyncio.run(_drain(relay_fragments(client, CONVERSATION))))

    assert body == "\n[Error] connect timeout"


def test_no_fragments_closes_cleanly(fake_client_factory):
    client = fake_client_factory([])
    samples = []

    assert asyncio.run(_drain(relay_fragments(client, CONVERSATION, samples.append))) == []
    assert client.closed
    assert samples[0].outcome == "completed"
    assert samples[0].ttff_ms is None


def test_empty_fragments_are_not_emitted(fake_client_factory):
    client = fake_client_factory(["", "Hi", ""])

    assert asyncio.run(_drain(relay_fragments(client, CONVERSATION))) == ["Hi"]


def test_abandoned_stream_closes_upstream(fake_client_factory):
    client = fake_client_factory(["a", "b", "c"])
    samples = []

    async def read_one_then_disconnect():
        gen = relay_fragments(client, CONVERSATION, samples.append)
        first = await gen.__anext__()
        await gen.aclose()
        return first

    assert asyncio.run(read_one_then_disconnect()) == "a"
    assert client.closed
    assert len(samples) == 1
    assert samples[0].outcome == "cancelled"
    assert samples[0].fragments == 1


def test_report_runs_exactly_once_per_relay(fake_client_factory):
    samples = []
    client = fake_client_factory(["x"], error=UpstreamError("boom"))

    asyncio.run(_drain(relay_fragments(client, CONVERSATION, samples.append)))

    assert len(samples) == 1
